# launchsniper/models.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple
import math
import time
import uuid

from .exceptions import InvalidTransition


class VerificationStatus(Enum):
    UNKNOWN = "UNKNOWN"
    VERIFIED = "VERIFIED"
    UNVERIFIED = "UNVERIFIED"
    SUSPICIOUS = "SUSPICIOUS"


class Recommendation(Enum):
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    WAIT = "WAIT"


class TradeStatus(Enum):
    """
    Enum representing the lifecycle states of a trade (a.k.a. snipe).
    """
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    STOPPED = "STOPPED"


class TradeSide(Enum):
    BUY = "BUY"
    SELL = "SELL"


class ExitReason(Enum):
    TAKE_PROFIT = "TAKE_PROFIT"
    STOP_LOSS = "STOP_LOSS"


# Forward-only status graph. COMPLETED and STOPPED are terminal.
ALLOWED_TRANSITIONS = {
    TradeStatus.PENDING: {TradeStatus.ACTIVE, TradeStatus.STOPPED},
    TradeStatus.ACTIVE: {TradeStatus.COMPLETED, TradeStatus.STOPPED},
    TradeStatus.COMPLETED: set(),
    TradeStatus.STOPPED: set(),
}


@dataclass(slots=True)
class Token:
    """
    A token launched on the platform. Only `verification` changes after the
    token has been recorded.
    """
    address: str
    symbol: str
    name: str
    creator: str
    launch_time: float
    verification: VerificationStatus = VerificationStatus.UNKNOWN
    bonding_curve_address: Optional[str] = None

    def launched_for(self, now: Optional[float] = None) -> float:
        """Seconds since launch (negative before launch)."""
        return (now if now is not None else time.time()) - self.launch_time


@dataclass(frozen=True, slots=True)
class BondingCurveSnapshot:
    """
    One poll of a token's bonding curve. Snapshots are superseded, never mutated.
    """
    token_address: str
    current_price: float
    total_supply: int
    circulating_supply: int
    reserve_balance: int
    progress: float
    price_impact: float
    liquidity: float
    volume_24h: float
    timestamp: float

    @property
    def age(self) -> float:
        """Returns the age of the sample in seconds."""
        return time.time() - self.timestamp


@dataclass(frozen=True, slots=True)
class Opportunity:
    """
    Scored snipe candidate passed from the Analyzer to the Risk Gate.
    Ephemeral: consumed once and never persisted.
    """
    token: Token
    current_price: float
    target_price: float
    bonding_curve_progress: float
    liquidity: float
    slippage: float
    gas_cost: float
    expected_profit: float
    risk_score: float
    recommendation: Recommendation
    confidence: float
    timestamp: float = field(default_factory=time.time)

    @property
    def is_profitable(self) -> bool:
        # 10% buffer over the gas bill
        return self.expected_profit > self.gas_cost * 1.1


@dataclass(frozen=True, slots=True)
class PricePrediction:
    predicted_price: float
    time_to_target: float  # seconds, math.inf when unreachable
    probability: float
    factors: Tuple[str, ...] = ()

    @property
    def reachable(self) -> bool:
        return not math.isinf(self.time_to_target)


def new_trade_id() -> str:
    return f"snipe-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


@dataclass(slots=True)
class Trade:
    """
    A position opened by the Execution Engine. Owned by the TradeManager
    after creation.

    stop_loss / take_profit are fixed at creation and never recomputed.
    """
    id: str
    token: Token
    entry_price: float
    amount: float
    stop_loss: float
    take_profit: float
    created_at: float
    status: TradeStatus = TradeStatus.PENDING
    bonding_curve_progress: float = 0.0
    entry_tx_hash: Optional[str] = None
    submitted_at: Optional[float] = None
    exit_tx_hash: Optional[str] = None
    exit_price: Optional[float] = None
    exit_reason: Optional[ExitReason] = None
    realized_pnl: float = 0.0

    @classmethod
    def open(cls, opp: Opportunity, amount: float, stop_loss_percentage: float,
             take_profit_percentage: float) -> "Trade":
        entry = opp.current_price
        return cls(
            id=new_trade_id(),
            token=opp.token,
            entry_price=entry,
            amount=amount,
            stop_loss=entry * (1 - stop_loss_percentage / 100),
            take_profit=entry * (1 + take_profit_percentage / 100),
            created_at=time.time(),
            bonding_curve_progress=opp.bonding_curve_progress,
        )

    @property
    def token_address(self) -> str:
        return self.token.address

    @property
    def quantity(self) -> float:
        """Tokens held for this position, derived from amount and entry price."""
        if self.entry_price <= 0:
            return 0.0
        return self.amount / self.entry_price

    @property
    def is_open(self) -> bool:
        return self.status in (TradeStatus.PENDING, TradeStatus.ACTIVE)

    @property
    def submitted(self) -> bool:
        return self.submitted_at is not None

    def transition(self, new_status: TradeStatus):
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Trade {self.id} cannot move {self.status.value} -> {new_status.value}",
                trade_id=self.id,
            )
        self.status = new_status
