# src/core/models.py

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
)

# Decimals stay exact in memory and go out as plain JSON numbers
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

PRICE_UNAVAILABLE = Decimal("-1")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# HOLDINGS AND VALUATION
# ============================================================================

class AssetKind(str, Enum):
    LEDGER_TOKEN = "ledger_token"
    EQUITY = "equity"
    NATIVE = "native"


class Holding(BaseModel):
    """A quantity of one asset owned by a user, as reported by a single source."""

    model_config = ConfigDict(frozen=True)

    asset_symbol: str
    asset_kind: AssetKind
    quantity: Amount = Decimal("0")
    locked_quantity: Amount = Decimal("0")
    token_id: Optional[str] = None
    name: Optional[str] = None
    equity_code: Optional[str] = None

    @property
    def price_symbol(self) -> str:
        """Symbol to look up on the price source."""
        if self.asset_kind == AssetKind.LEDGER_TOKEN and self.equity_code:
            return self.equity_code
        return self.asset_symbol


class PortfolioHoldings(BaseModel):
    user_id: str
    ledger_tokens: List[Holding] = Field(default_factory=list)
    equities: List[Holding] = Field(default_factory=list)
    native: List[Holding] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=utcnow)

    def all(self) -> List[Holding]:
        return [*self.ledger_tokens, *self.equities, *self.native]

    def is_empty(self) -> bool:
        return not (self.ledger_tokens or self.equities or self.native)


class PricedAsset(BaseModel):
    asset_symbol: str
    asset_kind: AssetKind
    quantity: Amount
    locked_quantity: Amount = Decimal("0")
    unit_price: Amount
    total_value: Amount = Decimal("0")
    locked_value: Amount = Decimal("0")
    priced: bool = True


class PortfolioSnapshot(BaseModel):
    holdings: List[PricedAsset] = Field(default_factory=list)
    total_value: Amount = Decimal("0")
    locked_value: Amount = Decimal("0")
    unpriced_symbols: List[str] = Field(default_factory=list)
    currency: str = "KES"
    as_of: datetime = Field(default_factory=utcnow)


# ============================================================================
# MARKET NEWS
# ============================================================================

class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class NewsItem(BaseModel):
    title: str = ""
    description: str = ""
    url: str = ""
    publish_time: Optional[str] = None
    sentiment: Sentiment = Sentiment.NEUTRAL


class MarketNews(BaseModel):
    symbol: str
    news: List[NewsItem] = Field(default_factory=list)
    overall_sentiment: Sentiment = Sentiment.NEUTRAL
    summary: List[str] = Field(default_factory=list)


# ============================================================================
# TRADING
# ============================================================================

class TradeKind(str, Enum):
    ISSUE = "issue"
    REDEEM = "redeem"
    EXCHANGE = "exchange"
    NOOP = "noop"


TRADE_KIND_ALIASES = {
    "mint": TradeKind.ISSUE,
    "issue": TradeKind.ISSUE,
    "redeem": TradeKind.REDEEM,
    "burn": TradeKind.REDEEM,
    "swap": TradeKind.EXCHANGE,
    "sell": TradeKind.EXCHANGE,
    "exchange": TradeKind.EXCHANGE,
    "noop": TradeKind.NOOP,
    "hold": TradeKind.NOOP,
}


class TradeAction(BaseModel):
    """One caller-chosen action. Accepts both the snake_case and the agent's camelCase/legacy keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: TradeKind = Field(validation_alias=AliasChoices("kind", "type", "action"))
    asset_symbol: str = Field(validation_alias=AliasChoices("asset_symbol", "assetSymbol", "token", "symbol"))
    asset_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("asset_id", "assetId", "tokenId"))
    amount: Amount = Field(gt=0)
    rationale: str = ""
    target_asset: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("target_asset", "targetAsset", "targetToken")
    )

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value):
        if isinstance(value, TradeKind):
            return value
        key = str(value).strip().lower()
        if key not in TRADE_KIND_ALIASES:
            raise ValueError(f"unknown action kind {value!r}")
        return TRADE_KIND_ALIASES[key]

    @field_validator("asset_symbol")
    @classmethod
    def _strip_symbol(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("asset symbol must not be empty")
        return value

    def describe(self) -> str:
        return f"{self.kind.value} {self.amount} {self.asset_symbol}"


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    password: str = Field(repr=False)


class TradingSession(BaseModel):
    """Everything one `execute-trading-actions` call needs to act for a user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    password: str = Field(repr=False)
    account_id: str
    private_key: str = Field(repr=False)


class AuditEntry(BaseModel):
    topic_id: Optional[str] = None
    message: str
    account_id: str
    created_at: datetime = Field(default_factory=utcnow)


class AuditOutcome(BaseModel):
    ok: bool
    topic_id: Optional[str] = None
    topic_created: bool = False
    status: Optional[str] = None
    detail: str = ""


class FeeOutcome(BaseModel):
    attempted: bool = False
    ok: bool = False
    reference: Optional[str] = None
    detail: str = ""


class ActionStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_ATTEMPTED = "not_attempted"


class ActionResult(BaseModel):
    action: TradeAction
    status: ActionStatus
    message: str
    detail: Dict[str, Any] = Field(default_factory=dict)
    audit: Optional[AuditOutcome] = None
    fee: Optional[FeeOutcome] = None

    @property
    def executed(self) -> bool:
        return self.status == ActionStatus.SUCCEEDED


class TradeExecutionReport(BaseModel):
    authenticated: bool = True
    halted: bool = False
    results: List[ActionResult] = Field(default_factory=list)
    message: str = ""

    @property
    def fees_charged(self) -> int:
        return sum(1 for r in self.results if r.fee and r.fee.ok)

    def summary(self) -> str:
        if not self.authenticated:
            return self.message
        counts = {}
        for result in self.results:
            counts[result.status.value] = counts.get(result.status.value, 0) + 1
        parts = ", ".join(f"{n} {status}" for status, n in counts.items()) or "no actions"
        prefix = "Stopped after a failed action" if self.halted else "Executed trading actions"
        return f"{prefix}: {parts}"
