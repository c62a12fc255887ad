# src/core/__init__.py

from .errors import (
    ErrorKind,
    PortfolioAgentError,
    UpstreamUnavailableError,
    MalformedResponseError,
    BusinessValidationError,
    ValuationError,
    LedgerTransactionError,
    AuthenticationError
)

from .models import (
    PRICE_UNAVAILABLE,
    AssetKind,
    Holding,
    PortfolioHoldings,
    PricedAsset,
    PortfolioSnapshot,
    Sentiment,
    NewsItem,
    MarketNews,
    TradeKind,
    TradeAction,
    Credentials,
    TradingSession,
    AuditEntry,
    AuditOutcome,
    FeeOutcome,
    ActionStatus,
    ActionResult,
    TradeExecutionReport
)

__all__ = [
    'ErrorKind',
    'PortfolioAgentError',
    'UpstreamUnavailableError',
    'MalformedResponseError',
    'BusinessValidationError',
    'ValuationError',
    'LedgerTransactionError',
    'AuthenticationError',
    'PRICE_UNAVAILABLE',
    'AssetKind',
    'Holding',
    'PortfolioHoldings',
    'PricedAsset',
    'PortfolioSnapshot',
    'Sentiment',
    'NewsItem',
    'MarketNews',
    'TradeKind',
    'TradeAction',
    'Credentials',
    'TradingSession',
    'AuditEntry',
    'AuditOutcome',
    'FeeOutcome',
    'ActionStatus',
    'ActionResult',
    'TradeExecutionReport'
]
