import logging
import time

import pytest

from launchsniper.chain import GasPriceSource
from launchsniper.config import SniperConfig
from launchsniper.gas import gwei_to_wei
from launchsniper.models import (
    BondingCurveSnapshot, Opportunity, Recommendation, Token, VerificationStatus,
)


def make_token(address="0xToken1", symbol="MEME", launch_time=None, **kwargs) -> Token:
    return Token(
        address=address,
        symbol=symbol,
        name=f"{symbol} coin",
        creator="0xCreator",
        launch_time=launch_time if launch_time is not None else time.time() - 60,
        verification=kwargs.pop("verification", VerificationStatus.VERIFIED),
        **kwargs,
    )


def make_snapshot(address="0xToken1", **overrides) -> BondingCurveSnapshot:
    values = dict(
        token_address=address,
        current_price=0.01,
        total_supply=10 ** 27,
        circulating_supply=3 * 10 ** 26,
        reserve_balance=5 * 10 ** 18,
        progress=0.3,
        price_impact=0.01,
        liquidity=20000.0,
        volume_24h=500.0,
        timestamp=time.time(),
    )
    values.update(overrides)
    return BondingCurveSnapshot(**values)


def make_opportunity(token=None, **overrides) -> Opportunity:
    values = dict(
        token=token or make_token(),
        current_price=0.01,
        target_price=0.02,
        bonding_curve_progress=0.3,
        liquidity=20000.0,
        slippage=0.0001,
        gas_cost=0.00075,
        expected_profit=1.0,
        risk_score=0.2,
        recommendation=Recommendation.BUY,
        confidence=0.9,
    )
    values.update(overrides)
    return Opportunity(**values)


class FakeGas(GasPriceSource):
    def __init__(self, gwei: float = 5.0):
        self.price = gwei_to_wei(gwei)

    async def current_gas_price(self) -> int:
        return self.price

    async def optimal_gas_price(self) -> int:
        return self.price


@pytest.fixture
def logger():
    return logging.getLogger("launchsniper-tests")


@pytest.fixture
def sniper_config():
    return SniperConfig()
