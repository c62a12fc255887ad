# src/services/container.py

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx

from src.config import Settings
from src.ledger.base import LedgerGateway, SigningIdentity
from src.ledger.hiero import HieroLedgerGateway
from src.services.audit_log import AuditLog
from src.services.backend import AccountBackend
from src.services.balances import BalanceAggregator
from src.services.prices import PriceResolver
from src.services.reconciliation import RedemptionJournal
from src.services.sentiment import MarketSentimentReporter
from src.services.trading import TradeOrchestrator
from src.services.valuation import ValuationEngine


def default_ledger(settings: Settings) -> LedgerGateway:
    query_identity = None
    if settings.operator_account_id and settings.operator_private_key:
        query_identity = SigningIdentity(settings.operator_account_id, settings.operator_private_key)
    return HieroLedgerGateway(network=settings.network, query_identity=query_identity)


@dataclass
class Services:
    """Everything one tool call needs, sharing a single HTTP client."""

    settings: Settings
    backend: AccountBackend
    prices: PriceResolver
    balances: BalanceAggregator
    valuation: ValuationEngine
    sentiment: MarketSentimentReporter
    audit_log: AuditLog
    journal: RedemptionJournal
    trading: TradeOrchestrator


def build_services(http: httpx.AsyncClient, settings: Settings, ledger: LedgerGateway) -> Services:
    backend = AccountBackend(http, settings.api_base_url)
    prices = PriceResolver(http, settings)
    audit_log = AuditLog(backend, ledger, settings)
    journal = RedemptionJournal(settings.redemption_journal_path)

    return Services(
        settings=settings,
        backend=backend,
        prices=prices,
        balances=BalanceAggregator(backend, settings, ledger=ledger),
        valuation=ValuationEngine(prices, settings),
        sentiment=MarketSentimentReporter(http, settings),
        audit_log=audit_log,
        journal=journal,
        trading=TradeOrchestrator(backend, ledger, audit_log, journal, settings),
    )


@asynccontextmanager
async def services_session(
    settings: Settings,
    ledger: Optional[LedgerGateway] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncIterator[Services]:
    """
    Open one httpx client for the duration of a tool call and wire the services on it.

    `ledger` and `transport` exist for tests; production uses the Hiero gateway
    and the default network transport.
    """
    async with httpx.AsyncClient(
        timeout=settings.http_timeout_seconds, transport=transport
    ) as http:
        yield build_services(http, settings, ledger if ledger is not None else default_ledger(settings))
