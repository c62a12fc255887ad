# tests/test_balances.py

from decimal import Decimal

import httpx
import pytest

from conftest import BACKEND, FakeLedger, request_json
from src.core.errors import AuthenticationError, MalformedResponseError, UpstreamUnavailableError
from src.core.models import AssetKind, Credentials
from src.ledger.base import AccountBalances
from src.services.backend import AccountBackend
from src.services.balances import BalanceAggregator, to_decimal


CREDENTIALS = Credentials(email="wanjiru@example.com", password="s3cret")

PROFILE = {
    "user": {
        "tokens": [
            {"tokenId": "0.0.9001", "balance": "25", "symbol": "KCB", "name": "KCB Token", "stockCode": "KCB"},
            {"tokenId": "0.0.9002", "balance": "not-a-number", "symbol": "I&M", "name": "I&M Token", "stockCode": "I&M"},
        ],
        "stockHoldings": [
            {"stockCode": "SCOM", "quantity": 100, "lockedQuantity": "10"},
            {"stockCode": "EQTY", "quantity": None},
        ],
    }
}


def logged_in(router, profile=PROFILE):
    router.add("POST", f"{BACKEND}/auth/login", {"token": "jwt-token"})
    router.add("GET", f"{BACKEND}/auth/me", profile)
    return router


class TestToDecimal:
    """Backend numbers coerce like Number(x) || 0"""

    def test_numeric_strings_and_numbers(self):
        assert to_decimal("25") == Decimal("25")
        assert to_decimal(12.5) == Decimal("12.5")
        assert to_decimal(3) == Decimal("3")

    def test_garbage_becomes_zero(self):
        assert to_decimal(None) == Decimal("0")
        assert to_decimal("abc") == Decimal("0")
        assert to_decimal("NaN") == Decimal("0")
        assert to_decimal(True) == Decimal("0")
        assert to_decimal({"value": 1}) == Decimal("0")


class TestGetPortfolio:

    @pytest.mark.asyncio
    async def test_collects_tokens_and_equities(self, router, settings):
        logged_in(router)

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings)
            holdings = await aggregator.get_portfolio("user-1", CREDENTIALS)

        assert [h.asset_symbol for h in holdings.ledger_tokens] == ["KCB", "I&M"]
        assert holdings.ledger_tokens[0].quantity == Decimal("25")
        assert holdings.ledger_tokens[0].token_id == "0.0.9001"
        assert holdings.ledger_tokens[1].quantity == Decimal("0")
        assert holdings.ledger_tokens[1].asset_kind == AssetKind.LEDGER_TOKEN

        assert [h.asset_symbol for h in holdings.equities] == ["SCOM", "EQTY"]
        assert holdings.equities[0].quantity == Decimal("100")
        assert holdings.equities[0].locked_quantity == Decimal("10")
        assert holdings.equities[1].quantity == Decimal("0")
        assert holdings.native == []

    @pytest.mark.asyncio
    async def test_login_sends_credentials_and_bearer(self, router, settings):
        logged_in(router)

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings)
            await aggregator.get_portfolio("user-1", CREDENTIALS)

        login = router.called("POST", f"{BACKEND}/auth/login")[0]
        assert request_json(login) == {"email": "wanjiru@example.com", "password": "s3cret"}
        profile = router.called("GET", f"{BACKEND}/auth/me")[0]
        assert profile.headers["Authorization"] == "Bearer jwt-token"

    @pytest.mark.asyncio
    async def test_every_call_fetches_afresh(self, router, settings):
        logged_in(router)

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings)
            await aggregator.get_portfolio("user-1", CREDENTIALS)
            await aggregator.get_portfolio("user-1", CREDENTIALS)

        assert len(router.called("POST", f"{BACKEND}/auth/login")) == 2
        assert len(router.called("GET", f"{BACKEND}/auth/me")) == 2

    @pytest.mark.asyncio
    async def test_non_list_collections_degrade_in_lenient_mode(self, router, settings):
        logged_in(router, {"user": {"tokens": "oops", "stockHoldings": None}})

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings)
            holdings = await aggregator.get_portfolio("user-1", CREDENTIALS)

        assert holdings.is_empty()

    @pytest.mark.asyncio
    async def test_non_list_collection_raises_in_strict_mode(self, router, settings):
        logged_in(router, {"user": {"tokens": [], "stockHoldings": {"SCOM": 1}}})

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings)
            with pytest.raises(MalformedResponseError):
                await aggregator.get_portfolio("user-1", CREDENTIALS, strict=True)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("profile", [{}, {"user": None}, {"user": ["KCB"]}])
    async def test_missing_user_object_raises_in_strict_mode(self, router, settings, profile):
        logged_in(router, profile)

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings)
            with pytest.raises(MalformedResponseError, match="no user object"):
                await aggregator.get_portfolio("user-1", CREDENTIALS, strict=True)

    @pytest.mark.asyncio
    async def test_missing_user_object_degrades_in_lenient_mode(self, router, settings):
        logged_in(router, {"user": "unknown"})

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings)
            holdings = await aggregator.get_portfolio("user-1", CREDENTIALS)

        assert holdings.is_empty()

    @pytest.mark.asyncio
    async def test_bad_credentials_lenient_gives_empty(self, router, settings):
        router.add("POST", f"{BACKEND}/auth/login", {"message": "Invalid credentials"}, status=401)

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings)
            holdings = await aggregator.get_portfolio("user-1", CREDENTIALS)

        assert holdings.is_empty()
        assert router.called("GET", f"{BACKEND}/auth/me") == []

    @pytest.mark.asyncio
    async def test_bad_credentials_strict_raises(self, router, settings):
        router.add("POST", f"{BACKEND}/auth/login", {"message": "Invalid credentials"}, status=401)

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings)
            with pytest.raises(AuthenticationError):
                await aggregator.get_portfolio("user-1", CREDENTIALS, strict=True)

    @pytest.mark.asyncio
    async def test_login_without_token_is_an_auth_failure(self, router, settings):
        router.add("POST", f"{BACKEND}/auth/login", {"message": "ok"})

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings)
            with pytest.raises(AuthenticationError):
                await aggregator.get_portfolio("user-1", CREDENTIALS, strict=True)

    @pytest.mark.asyncio
    async def test_profile_outage(self, router, settings):
        router.add("POST", f"{BACKEND}/auth/login", {"token": "jwt-token"})
        router.fail("GET", f"{BACKEND}/auth/me", httpx.ConnectError("down"))

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings)
            lenient = await aggregator.get_portfolio("user-1", CREDENTIALS)
            with pytest.raises(UpstreamUnavailableError):
                await aggregator.get_portfolio("user-1", CREDENTIALS, strict=True)

        assert lenient.is_empty()


class TestNativeBalances:

    @pytest.mark.asyncio
    async def test_ledger_balances_added_when_account_given(self, router, settings):
        logged_in(router)
        ledger = FakeLedger(balances=AccountBalances(
            native=Decimal("150.5"),
            tokens={"0.0.5000": Decimal("12"), "0.0.9001": Decimal("25")},
        ))

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings, ledger=ledger)
            holdings = await aggregator.get_portfolio("user-1", CREDENTIALS, account_id="0.0.4242")

        assert [(h.asset_symbol, h.quantity) for h in holdings.native] == [
            ("HBAR", Decimal("150.5")),
            ("USDC", Decimal("12")),
        ]
        assert all(h.asset_kind == AssetKind.NATIVE for h in holdings.native)

    @pytest.mark.asyncio
    async def test_ledger_failure_degrades_or_raises(self, router, settings):
        logged_in(router)
        ledger = FakeLedger()
        ledger.balance_error = RuntimeError("mirror node unreachable")

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings, ledger=ledger)
            holdings = await aggregator.get_portfolio("user-1", CREDENTIALS, account_id="0.0.4242")
            assert holdings.native == []
            assert len(holdings.ledger_tokens) == 2

            with pytest.raises(UpstreamUnavailableError):
                await aggregator.get_portfolio("user-1", CREDENTIALS, strict=True, account_id="0.0.4242")

    @pytest.mark.asyncio
    async def test_settlement_balance(self, router, settings):
        ledger = FakeLedger(balances=AccountBalances(native=Decimal("1"), tokens={"0.0.5000": Decimal("42")}))

        async with router.client() as http:
            aggregator = BalanceAggregator(AccountBackend(http, BACKEND), settings, ledger=ledger)
            assert await aggregator.settlement_balance("0.0.4242") == Decimal("42")
