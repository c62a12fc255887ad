# src/config.py

import os
from dataclasses import dataclass, field, replace
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

FEE_POLICY_ON_SUCCESS = "on_success"
FEE_POLICY_ALWAYS = "always"
FEE_POLICIES = (FEE_POLICY_ON_SUCCESS, FEE_POLICY_ALWAYS)

FEE_REFERENCE_UUID = "uuid"
FEE_REFERENCE_LEGACY = "legacy"
FEE_REFERENCE_STYLES = (FEE_REFERENCE_UUID, FEE_REFERENCE_LEGACY)

# Token symbols whose ticker contains '&' are listed under a different code
DEFAULT_SYMBOL_ALIASES = {
    "I&M": "IMH",
}

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def load_env_file(path: Optional[Path] = None) -> bool:
    """Load a .env file (project root by default) without overriding the real environment."""
    env_path = path or PROJECT_ROOT / ".env"
    if not env_path.exists():
        return False
    return load_dotenv(env_path, override=False)


def parse_aliases(raw: Optional[str]) -> Dict[str, str]:
    """
    Parse "I&M=IMH,A&B=ABC" into a symbol -> listing code map.

    Malformed pairs are ignored; keys are upper-cased.
    """
    aliases = {}
    if not raw:
        return aliases
    for pair in raw.split(","):
        symbol, sep, code = pair.partition("=")
        if not sep or not symbol.strip() or not code.strip():
            continue
        aliases[symbol.strip().upper()] = code.strip().upper()
    return aliases


def _env_decimal(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read from the environment by `Settings.from_env()`."""

    api_base_url: str = "http://localhost:5004/api"

    # Ledger
    network: str = "testnet"
    operator_account_id: str = ""
    operator_private_key: str = ""
    treasury_account_id: str = ""
    settlement_token_id: str = ""
    settlement_symbol: str = "USDC"
    native_symbol: str = "HBAR"
    topic_fee: Decimal = Decimal("1")
    max_transaction_fee_hbar: Decimal = Decimal("10")
    agent_name: str = "Neo"

    # Upstream market data
    equity_chart_url: str = "https://afx.kwayisi.org/chart/nse"
    crypto_ticker_url: str = "https://api.binance.com/api/v3/ticker/price"
    fx_rate_url: str = "https://www.xe.com/api/protected/statistics/?from=USD&to=KES"
    fx_fallback_rate: Decimal = Decimal("129.65")
    reporting_currency: str = "KES"
    symbol_aliases: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SYMBOL_ALIASES))

    # News search
    news_search_url: str = "https://api.search.brave.com/res/v1/news/search"
    news_api_key: str = ""
    news_exchange_prefix: str = "NSE"
    news_exchange_name: str = "Nairobi Securities Exchange"
    news_jurisdiction: str = "Kenya"

    # HTTP behaviour
    http_timeout_seconds: float = 10.0
    read_retries: int = 2
    retry_base_delay: float = 0.5

    # Billing
    fee_policy: str = FEE_POLICY_ON_SUCCESS
    fee_reference_style: str = FEE_REFERENCE_UUID

    redemption_journal_path: Path = PROJECT_ROOT / "logs" / "redemptions.jsonl"

    # Server
    mcp_transport: str = "stdio"
    mcp_port: int = 8006

    def __post_init__(self):
        if self.fee_policy not in FEE_POLICIES:
            raise ValueError(f"FEE_POLICY must be one of {FEE_POLICIES}, got {self.fee_policy!r}")
        if self.fee_reference_style not in FEE_REFERENCE_STYLES:
            raise ValueError(
                f"FEE_REFERENCE_STYLE must be one of {FEE_REFERENCE_STYLES}, got {self.fee_reference_style!r}"
            )

    @property
    def charges_failed_actions(self) -> bool:
        return self.fee_policy == FEE_POLICY_ALWAYS

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)

    @classmethod
    def from_env(cls) -> "Settings":
        aliases = dict(DEFAULT_SYMBOL_ALIASES)
        aliases.update(parse_aliases(os.getenv("SYMBOL_ALIASES")))

        operator_account = os.getenv("OPERATOR_ACCOUNT_ID", "")
        journal_path = os.getenv("REDEMPTION_JOURNAL_PATH")

        return cls(
            api_base_url=os.getenv("API_BASE_URL", cls.api_base_url).rstrip("/"),
            network=os.getenv("NETWORK", cls.network),
            operator_account_id=operator_account,
            operator_private_key=os.getenv("OPERATOR_PRIVATE_KEY", ""),
            # The operator account doubles as treasury unless told otherwise
            treasury_account_id=os.getenv("TREASURY_ACCOUNT_ID", operator_account),
            settlement_token_id=os.getenv("SETTLEMENT_TOKEN_ID", os.getenv("MOCK_USDC", "")),
            settlement_symbol=os.getenv("SETTLEMENT_SYMBOL", cls.settlement_symbol),
            native_symbol=os.getenv("NATIVE_SYMBOL", cls.native_symbol),
            topic_fee=_env_decimal("TOPIC_FEE", os.getenv("CUSTOM_FEE", "1")),
            max_transaction_fee_hbar=_env_decimal("MAX_TRANSACTION_FEE_HBAR", "10"),
            agent_name=os.getenv("AGENT_NAME", cls.agent_name),
            equity_chart_url=os.getenv("EQUITY_CHART_URL", cls.equity_chart_url).rstrip("/"),
            crypto_ticker_url=os.getenv("CRYPTO_TICKER_URL", cls.crypto_ticker_url),
            fx_rate_url=os.getenv("FX_RATE_URL", cls.fx_rate_url),
            fx_fallback_rate=_env_decimal("FX_FALLBACK_RATE", "129.65"),
            reporting_currency=os.getenv("REPORTING_CURRENCY", cls.reporting_currency),
            symbol_aliases=aliases,
            news_search_url=os.getenv("NEWS_SEARCH_URL", cls.news_search_url),
            news_api_key=os.getenv("BRAVE_API_KEY", ""),
            news_exchange_prefix=os.getenv("NEWS_EXCHANGE_PREFIX", cls.news_exchange_prefix),
            news_exchange_name=os.getenv("NEWS_EXCHANGE_NAME", cls.news_exchange_name),
            news_jurisdiction=os.getenv("NEWS_JURISDICTION", cls.news_jurisdiction),
            http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "10")),
            read_retries=int(os.getenv("READ_RETRIES", "2")),
            retry_base_delay=float(os.getenv("RETRY_BASE_DELAY", "0.5")),
            fee_policy=os.getenv("FEE_POLICY", FEE_POLICY_ON_SUCCESS),
            fee_reference_style=os.getenv("FEE_REFERENCE_STYLE", FEE_REFERENCE_UUID),
            redemption_journal_path=Path(journal_path) if journal_path else cls.redemption_journal_path,
            mcp_transport=os.getenv("MCP_TRANSPORT", cls.mcp_transport),
            mcp_port=int(os.getenv("MCP_PORT", "8006")),
        )
