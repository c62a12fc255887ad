# src/services/balances.py

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from src.config import Settings
from src.core.errors import (
    AuthenticationError,
    BusinessValidationError,
    MalformedResponseError,
    PortfolioAgentError,
    UpstreamUnavailableError,
)
from src.core.models import AssetKind, Credentials, Holding, PortfolioHoldings
from src.ledger.base import LedgerGateway
from src.services.backend import AccountBackend
from src.utils.tracing import setup_logger_with_tracing

LOGGER = setup_logger_with_tracing(__name__, service_name="balance-aggregator")


def to_decimal(value: Any) -> Decimal:
    """Coerce a backend number to Decimal; anything unparseable counts as 0."""
    if value is None or isinstance(value, bool):
        return Decimal("0")
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")
    if not result.is_finite():
        return Decimal("0")
    return result


def parse_token_holdings(raw: List[Dict[str, Any]]) -> List[Holding]:
    holdings = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        symbol = item.get("symbol") or item.get("stockCode") or ""
        if not symbol:
            LOGGER.warning(f"Skipping token entry without a symbol: {item.get('tokenId')}")
            continue
        holdings.append(Holding(
            asset_symbol=symbol,
            asset_kind=AssetKind.LEDGER_TOKEN,
            quantity=to_decimal(item.get("balance")),
            token_id=item.get("tokenId") or None,
            name=item.get("name") or None,
            equity_code=item.get("stockCode") or None,
        ))
    return holdings


def parse_equity_holdings(raw: List[Dict[str, Any]]) -> List[Holding]:
    holdings = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("stockCode"):
            continue
        holdings.append(Holding(
            asset_symbol=item["stockCode"],
            asset_kind=AssetKind.EQUITY,
            quantity=to_decimal(item.get("quantity")),
            locked_quantity=to_decimal(item.get("lockedQuantity")),
        ))
    return holdings


class BalanceAggregator:
    """
    Collects a user's holdings from the account backend and, when an account id
    is known, the native balances held directly on the ledger.

    Lenient mode (get-balances) degrades every failure to an empty section.
    Strict mode (get-portfolio-value) raises typed errors instead.
    """

    def __init__(self, backend: AccountBackend, settings: Settings, ledger: Optional[LedgerGateway] = None):
        self.backend = backend
        self.settings = settings
        self.ledger = ledger

    async def get_portfolio(
        self,
        user_id: str,
        credentials: Credentials,
        strict: bool = False,
        account_id: Optional[str] = None,
    ) -> PortfolioHoldings:
        """
        Fetch holdings afresh: log in, read the profile, then the ledger.

        Args:
            user_id: backend user id
            credentials: email/password used to log in for this call only
            strict: raise instead of returning empty sections
            account_id: ledger account to read native balances from

        Returns:
            PortfolioHoldings with ledger_tokens, equities and native sections
        """
        holdings = PortfolioHoldings(user_id=user_id)

        try:
            token = await self.backend.login(credentials.email, credentials.password)
        except AuthenticationError as e:
            if strict:
                raise
            LOGGER.warning(f"Login failed for user {user_id}: {e.message}")
            return holdings

        try:
            profile = await self.backend.get_profile(token)
        except (UpstreamUnavailableError, MalformedResponseError) as e:
            if strict:
                raise
            LOGGER.warning(f"Profile lookup failed for user {user_id}: {e.message}")
            profile = {}

        user = profile.get("user")
        if not isinstance(user, dict):
            if strict:
                raise MalformedResponseError("Profile response has no user object", upstream="account-backend")
            if profile:
                LOGGER.warning(f"Profile for user {user_id} has no user object; treating as empty")
            user = {}
        holdings.ledger_tokens = parse_token_holdings(self._collection(user, "tokens", strict))
        holdings.equities = parse_equity_holdings(self._collection(user, "stockHoldings", strict))

        if account_id and self.ledger is not None:
            holdings.native = await self.native_holdings(account_id, strict=strict)

        LOGGER.info(
            f"User {user_id}: {len(holdings.ledger_tokens)} tokens, "
            f"{len(holdings.equities)} equities, {len(holdings.native)} native balances"
        )
        return holdings

    @staticmethod
    def _collection(user: Dict[str, Any], key: str, strict: bool) -> List[Dict[str, Any]]:
        value = user.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            if strict:
                raise MalformedResponseError(
                    f"Profile field '{key}' is not a list", upstream="account-backend"
                )
            LOGGER.warning(f"Profile field '{key}' is not a list; treating as empty")
            return []
        return value

    async def native_holdings(self, account_id: str, strict: bool = False) -> List[Holding]:
        """Reserve-currency and settlement-token balances read from the ledger."""
        try:
            balances = await self.ledger.account_balances(account_id)
        except Exception as e:
            if strict and isinstance(e, PortfolioAgentError):
                raise
            if strict:
                raise UpstreamUnavailableError(
                    f"Ledger balance lookup failed for {account_id}: {e}", upstream="ledger"
                ) from e
            LOGGER.warning(f"Ledger balance lookup failed for {account_id}: {e}")
            return []

        native = [Holding(
            asset_symbol=self.settings.native_symbol,
            asset_kind=AssetKind.NATIVE,
            quantity=balances.native,
        )]
        settlement_id = self.settings.settlement_token_id
        if settlement_id and settlement_id in balances.tokens:
            native.append(Holding(
                asset_symbol=self.settings.settlement_symbol,
                asset_kind=AssetKind.NATIVE,
                quantity=balances.tokens[settlement_id],
                token_id=settlement_id,
            ))
        return native

    async def settlement_balance(self, account_id: str) -> Decimal:
        """Settlement-token balance of one account. Raises on ledger failure."""
        if self.ledger is None:
            raise UpstreamUnavailableError("No ledger gateway configured", upstream="ledger")
        if not self.settings.settlement_token_id:
            raise BusinessValidationError("SETTLEMENT_TOKEN_ID is not configured")
        balances = await self.ledger.account_balances(account_id)
        return balances.tokens.get(self.settings.settlement_token_id, Decimal("0"))
