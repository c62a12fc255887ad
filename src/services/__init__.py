# src/services/__init__.py

from .backend import AccountBackend
from .prices import PriceResolver, canonical_symbol, parse_chart_series
from .balances import BalanceAggregator
from .valuation import ValuationEngine
from .sentiment import MarketSentimentReporter, classify_sentiment
from .audit_log import AuditLog
from .reconciliation import RedemptionJournal
from .trading import TradeOrchestrator
from .container import Services, services_session

__all__ = [
    'AccountBackend',
    'PriceResolver',
    'canonical_symbol',
    'parse_chart_series',
    'BalanceAggregator',
    'ValuationEngine',
    'MarketSentimentReporter',
    'classify_sentiment',
    'AuditLog',
    'RedemptionJournal',
    'TradeOrchestrator',
    'Services',
    'services_session'
]
