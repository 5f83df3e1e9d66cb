# launchsniper/market_engine.py
import aiohttp
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from .config import PlatformConfig
from .exceptions import CollaboratorUnavailable
from .models import BondingCurveSnapshot, Token, VerificationStatus


def _num(payload: Dict[str, Any], key: str, default: float = 0.0) -> float:
    value = payload.get(key)
    if value is None:
        return default
    return float(value)


def _to_seconds(ts: float) -> float:
    # Platform timestamps are JS-style milliseconds
    return ts / 1000.0 if ts > 1e12 else ts


def parse_token(payload: Dict[str, Any]) -> Token:
    verified = payload.get("verified")
    return Token(
        address=payload["address"],
        symbol=payload.get("symbol", ""),
        name=payload.get("name", ""),
        creator=payload.get("creator", ""),
        launch_time=_to_seconds(_num(payload, "launchTime", time.time())),
        verification=VerificationStatus.VERIFIED if verified is True else VerificationStatus.UNKNOWN,
        bonding_curve_address=payload.get("bondingCurveAddress") or None,
    )


def parse_snapshot(address: str, payload: Dict[str, Any]) -> BondingCurveSnapshot:
    progress = _num(payload, "progress")
    if progress > 1:
        # Contract reports a percentage
        progress = progress / 100
    return BondingCurveSnapshot(
        token_address=address,
        current_price=_num(payload, "currentPrice"),
        total_supply=int(payload.get("totalSupply") or 0),
        circulating_supply=int(payload.get("circulatingSupply") or 0),
        reserve_balance=int(payload.get("reserveBalance") or 0),
        progress=min(max(progress, 0.0), 1.0),
        price_impact=_num(payload, "priceImpact"),
        liquidity=_num(payload, "liquidity"),
        volume_24h=_num(payload, "volume24h"),
        timestamp=time.time(),
    )


class PlatformClient:
    """
    Market Data Adapter for the launch platform's REST API.
    Polling calls return None / [] when data is unavailable; only
    initialize() raises.
    """
    def __init__(self, config: PlatformConfig, logger: logging.Logger):
        self.cfg = config
        self.logger = logger
        self.base_url = config.api_url.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.cfg.api_key:
            headers["Authorization"] = f"Bearer {self.cfg.api_key}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.cfg.request_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout, headers=self._headers())
        return self._session

    async def _get(self, path: str) -> Any:
        session = await self._get_session()
        async with session.get(f"{self.base_url}{path}") as resp:
            resp.raise_for_status()
            return await resp.json()

    async def initialize(self):
        """
        Health check against the API. Failure is fatal for the bot.
        """
        self.logger.info("📡 TESTING PLATFORM API CONNECTION...")
        try:
            await self._get("/health")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await self.shutdown()
            raise CollaboratorUnavailable(f"Platform API health check failed: {e}", url=self.base_url) from e
        self.logger.info(f"   ✅ PLATFORM   | {self.base_url} | OK")

    async def list_new_tokens(self) -> List[Token]:
        try:
            data = await self._get("/tokens/new")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Error fetching new tokens: {e}")
            return []
        tokens = []
        for item in data.get("tokens", []):
            try:
                tokens.append(parse_token(item))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping malformed token payload: {e}")
        return tokens

    async def get_token(self, address: str) -> Optional[Token]:
        try:
            return parse_token(await self._get(f"/tokens/{address}"))
        except (aiohttp.ClientError, asyncio.TimeoutError, KeyError, TypeError, ValueError) as e:
            self.logger.error(f"Error fetching token {address}: {e}")
            return None

    async def get_bonding_curve_snapshot(self, address: str) -> Optional[BondingCurveSnapshot]:
        try:
            payload = await self._get(f"/tokens/{address}/bonding-curve")
            return parse_snapshot(address, payload)
        except (aiohttp.ClientError, asyncio.TimeoutError, TypeError, ValueError) as e:
            self.logger.error(f"Error getting bonding curve data for {address}: {e}")
            return None

    async def verify(self, address: str) -> Optional[bool]:
        """True/False from the platform, None when it could not be asked."""
        try:
            data = await self._get(f"/tokens/{address}/verify")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Error verifying token {address}: {e}")
            return None
        return data.get("verified") is True

    async def shutdown(self):
        """
        Gracefully closes the HTTP session.
        """
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
