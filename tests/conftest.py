# tests/conftest.py

import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

# Add project root to path so `src.` imports resolve without an install
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.config import Settings
from src.ledger.base import AccountBalances, LedgerReceipt, SUCCESS


BACKEND = "http://backend.test/api"
USER_KEY = "302e020100300506032b657004220420" + "ab" * 32
OPERATOR_KEY = "302e020100300506032b657004220420" + "cd" * 32


# ============================================================================
# HTTP stub
# ============================================================================

class Router:
    """
    Routes httpx requests to canned responses by (method, url-without-query).

    A route's response can be a (status, body) tuple, a list of them (served in
    order, last one repeats), or an exception instance to raise.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.prefixes: List[Tuple[str, str, Any]] = []
        self.calls: List[httpx.Request] = []

    def add(self, method: str, url: str, body: Any = None, status: int = 200):
        self.routes[(method.upper(), url)] = (status, body)
        return self

    def add_prefix(self, method: str, prefix: str, body: Any = None, status: int = 200):
        """Answer every url under prefix, for paths that carry a generated id."""
        self.prefixes.append((method.upper(), prefix, (status, body)))
        return self

    def add_sequence(self, method: str, url: str, responses: List[Any]):
        self.routes[(method.upper(), url)] = list(responses)
        return self

    def fail(self, method: str, url: str, error: Exception):
        self.routes[(method.upper(), url)] = error
        return self

    def called(self, method: str, url: str) -> List[httpx.Request]:
        return [
            r for r in self.calls
            if r.method == method.upper() and str(r.url).split("?")[0] == url
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, str(request.url).split("?")[0])
        route = self.routes.get(key)
        if route is None:
            route = next(
                (r for m, prefix, r in self.prefixes if m == key[0] and key[1].startswith(prefix)), None
            )

        if route is None:
            return httpx.Response(404, json={"message": f"no route for {key}"})
        if isinstance(route, Exception):
            raise route
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
            if isinstance(route, Exception):
                raise route

        status, body = route
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())


def request_json(request: httpx.Request) -> Dict[str, Any]:
    return json.loads(request.content.decode()) if request.content else {}


# ============================================================================
# Ledger stub
# ============================================================================

class FakeLedger:
    """In-memory LedgerGateway that records every call."""

    def __init__(
        self,
        transfer_status: str = SUCCESS,
        topic_status: str = SUCCESS,
        message_status: str = SUCCESS,
        balances: Optional[AccountBalances] = None,
    ):
        self.transfer_status = transfer_status
        self.topic_status = topic_status
        self.message_status = message_status
        self.balances = balances or AccountBalances(native=Decimal("0"), tokens={})
        self.balance_error: Optional[Exception] = None
        self.transfer_error: Optional[Exception] = None
        self.transfers: List[Dict[str, Any]] = []
        self.topics: List[Dict[str, Any]] = []
        self.messages: List[Dict[str, Any]] = []

    async def transfer_token(self, token_id, sender, recipient_account_id, amount, max_fee_hbar):
        self.transfers.append({
            "token_id": token_id,
            "sender": sender.account_id,
            "recipient": recipient_account_id,
            "amount": amount,
            "max_fee_hbar": max_fee_hbar,
        })
        if self.transfer_error is not None:
            raise self.transfer_error
        return LedgerReceipt(status=self.transfer_status, transaction_id=f"{sender.account_id}@1700000000.000000001")

    async def create_topic(self, memo, submit_key, fee, payer):
        self.topics.append({"memo": memo, "submit_key": submit_key, "fee": fee, "payer": payer.account_id})
        topic_id = "0.0.7777" if self.topic_status == SUCCESS else None
        return LedgerReceipt(status=self.topic_status, transaction_id="tx-topic", topic_id=topic_id)

    async def submit_message(self, topic_id, message, signer):
        self.messages.append({"topic_id": topic_id, "message": message, "signer": signer.account_id})
        return LedgerReceipt(status=self.message_status, transaction_id="tx-message", topic_id=topic_id)

    async def account_balances(self, account_id):
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings pointing every upstream at a stubbed host, with no retry delay."""
    return Settings(
        api_base_url=BACKEND,
        operator_account_id="0.0.100",
        operator_private_key=OPERATOR_KEY,
        treasury_account_id="0.0.100",
        settlement_token_id="0.0.5000",
        equity_chart_url="http://charts.test/chart/nse",
        crypto_ticker_url="http://ticker.test/api/v3/ticker/price",
        fx_rate_url="http://fx.test/statistics",
        news_search_url="http://news.test/res/v1/news/search",
        news_api_key="test-key",
        read_retries=1,
        retry_base_delay=0.0,
        redemption_journal_path=tmp_path / "redemptions.jsonl",
    )


@pytest.fixture
def router():
    return Router()


@pytest.fixture
def fake_ledger():
    return FakeLedger()
