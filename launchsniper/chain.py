# launchsniper/chain.py
"""
Chain-side collaborators of the execution pipeline.

The engines only see the narrow base classes below; the Web3 implementations
are wired in by the bot controller.
"""
import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TimeExhausted

from .config import ChainConfig
from .exceptions import CollaboratorUnavailable, SubmissionError
from .models import TradeSide

# Buy/sell entry points of the launch platform's bonding curve contract.
CURVE_ABI: List[Dict[str, Any]] = [
    {
        "name": "buy",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "minTokensOut", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "name": "sell",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "tokenAmount", "type": "uint256"},
            {"name": "minNativeOut", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [],
    },
]


@dataclass(frozen=True)
class TxRequest:
    side: TradeSide
    to: str
    value_wei: int
    token_amount_wei: int
    gas_price_wei: int
    gas_limit: int
    expected_out_wei: int = 0
    min_out_wei: int = 0
    deadline: int = 0
    private: bool = False


@dataclass(frozen=True)
class TxHandle:
    tx_hash: str
    submitted_at: float
    private: bool = False


class BalanceProvider:
    async def available_balance(self) -> float:
        raise NotImplementedError


class GasPriceSource:
    async def current_gas_price(self) -> int:
        raise NotImplementedError

    async def optimal_gas_price(self) -> int:
        raise NotImplementedError


class TransactionProtector:
    def protect(self, tx: TxRequest) -> TxRequest:
        raise NotImplementedError


class TransactionSubmitter:
    async def submit(self, tx: TxRequest) -> TxHandle:
        raise NotImplementedError

    async def await_confirmation(self, handle: TxHandle) -> bool:
        raise NotImplementedError


class StaticBalanceProvider(BalanceProvider):
    """Paper balance for dry runs."""
    def __init__(self, balance: float):
        self.balance = balance

    async def available_balance(self) -> float:
        return self.balance


class Web3BalanceProvider(BalanceProvider):
    def __init__(self, w3: AsyncWeb3, wallet: str):
        self.w3 = w3
        self.wallet = w3.to_checksum_address(wallet)

    async def available_balance(self) -> float:
        wei = await self.w3.eth.get_balance(self.wallet)
        return float(self.w3.from_wei(wei, "ether"))


class MevProtector(TransactionProtector):
    """
    Anti-front-running transform: private relay routing, a slippage-bounded
    minimum output and a short deadline so a delayed inclusion reverts.
    """
    def __init__(self, max_slippage: float, deadline_seconds: int):
        self.max_slippage = max_slippage
        self.deadline_seconds = deadline_seconds

    def protect(self, tx: TxRequest) -> TxRequest:
        min_out = int(tx.expected_out_wei * (1 - self.max_slippage))
        return dataclasses.replace(
            tx,
            min_out_wei=max(min_out, 0),
            deadline=int(time.time()) + self.deadline_seconds,
            private=True,
        )


class Web3Submitter(TransactionSubmitter):
    """
    Signs locally and broadcasts through the private relay when one is
    configured, the public RPC otherwise.
    """
    def __init__(self, w3: AsyncWeb3, account, chain_id: int, confirmation_timeout: float,
                 logger: logging.Logger, relay_w3: Optional[AsyncWeb3] = None):
        self.w3 = w3
        self.relay_w3 = relay_w3
        self.account = account
        self.chain_id = chain_id
        self.confirmation_timeout = confirmation_timeout
        self.logger = logger

    async def _build(self, tx: TxRequest) -> Dict[str, Any]:
        contract = self.w3.eth.contract(address=self.w3.to_checksum_address(tx.to), abi=CURVE_ABI)
        params = {
            "from": self.account.address,
            "nonce": await self.w3.eth.get_transaction_count(self.account.address, "pending"),
            "gas": tx.gas_limit,
            "gasPrice": tx.gas_price_wei,
            "chainId": self.chain_id,
            "value": tx.value_wei,
        }
        if tx.side == TradeSide.BUY:
            fn = contract.functions.buy(tx.min_out_wei, tx.deadline)
        else:
            fn = contract.functions.sell(tx.token_amount_wei, tx.min_out_wei, tx.deadline)
        return await fn.build_transaction(params)

    async def submit(self, tx: TxRequest) -> TxHandle:
        try:
            signed = self.account.sign_transaction(await self._build(tx))
            sender = self.relay_w3 if (tx.private and self.relay_w3 is not None) else self.w3
            tx_hash = await sender.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise SubmissionError(f"Transaction refused: {e}", side=tx.side.value, to=tx.to) from e
        handle = TxHandle(self.w3.to_hex(tx_hash), time.time(), private=sender is self.relay_w3)
        self.logger.info(f"📝 Transaction sent: {handle.tx_hash}")
        return handle

    async def await_confirmation(self, handle: TxHandle) -> bool:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                handle.tx_hash, timeout=self.confirmation_timeout
            )
        except TimeExhausted as e:
            raise asyncio.TimeoutError(f"No receipt for {handle.tx_hash}") from e
        return int(receipt["status"]) == 1


@dataclass
class ChainClients:
    w3: AsyncWeb3
    account: Any = None
    relay_w3: Optional[AsyncWeb3] = None

    @property
    def wallet(self) -> Optional[str]:
        return self.account.address if self.account else None


def _provider(url: str, timeout: float) -> AsyncHTTPProvider:
    return AsyncHTTPProvider(url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)})


async def connect_chain(cfg: ChainConfig, timeout: float, logger: logging.Logger) -> ChainClients:
    """
    Connects the RPC (and optional private relay) and loads the wallet when
    a key is configured.
    Any failure here is fatal: the bot must not start half-wired.
    """
    if not cfg.rpc_url:
        raise CollaboratorUnavailable("RPC_URL is empty")
    w3 = AsyncWeb3(_provider(cfg.rpc_url, timeout))
    try:
        connected = await w3.is_connected()
        block = await w3.eth.block_number if connected else None
    except Exception as e:
        raise CollaboratorUnavailable(f"RPC unreachable: {e}", rpc=cfg.rpc_url) from e
    if not connected:
        raise CollaboratorUnavailable("RPC not connected", rpc=cfg.rpc_url)

    account = None
    if cfg.private_key:
        try:
            account = Account.from_key(cfg.private_key)
        except Exception as e:
            raise CollaboratorUnavailable("PRIVATE_KEY could not be loaded") from e

    relay = None
    if cfg.private_rpc_url:
        relay = AsyncWeb3(_provider(cfg.private_rpc_url, timeout))
        if not await relay.is_connected():
            raise CollaboratorUnavailable("Private relay not connected", rpc=cfg.private_rpc_url)

    logger.info(f"   ✅ CHAIN {cfg.chain_id} | Block: {block} | Wallet: {account.address if account else 'none'}"
                f" | Relay: {'ON' if relay else 'OFF'}")
    return ChainClients(w3=w3, account=account, relay_w3=relay)
