# src/mcp/portfolio_mcp.py

import json
from contextlib import AbstractAsyncContextManager
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP
from mcp.types import TextContent

from src.config import Settings, load_env_file
from src.core.errors import PortfolioAgentError
from src.core.models import Credentials, TradingSession
from src.services.container import services_session
from src.utils.logging import resolve_level, setup_global_logging
from src.utils.tracing import annotate, setup_logger_with_tracing, setup_tracing, traced

# Setup environment, tracing and logging
load_env_file()
setup_tracing("mcp-server-portfolio")
LOGGER = setup_logger_with_tracing(__name__, service_name="mcp-server-portfolio")

# Initialize FastMCP
mcp = FastMCP("Neo Portfolio Server")


def get_settings() -> Settings:
    return Settings.from_env()


def open_services() -> AbstractAsyncContextManager:
    """One service graph (and one HTTP client) per tool call."""
    return services_session(get_settings())


def text(message: str) -> TextContent:
    return TextContent(type="text", text=message)


def json_text(payload: Any) -> TextContent:
    return text(json.dumps(payload, default=str))


def error_text(prefix: str, error: Exception) -> List[TextContent]:
    message = error.message if isinstance(error, PortfolioAgentError) else str(error)
    return [text(f"{prefix}: {message}")]


# ============================================================================
# BALANCES AND VALUATION
# ============================================================================

@mcp.tool(name="get-balances", output_schema=None)
@traced("tool.get-balances")
async def get_balances(
    user_id: str,
    email: str,
    password: str,
    account_id: Optional[str] = None,
) -> List[TextContent]:
    """
    Get the balances of all token holdings, stocks and native ledger balances for a user.

    Best effort: an unreachable backend or bad credentials give empty sections.

    Args:
        user_id: Unique identifier of the user on the account backend
        email: User's email for authentication
        password: User's password for authentication
        account_id: Ledger account id, to include HBAR and settlement-token balances

    Returns:
        A status line and a JSON block with a summary and the holding details
    """
    LOGGER.info(f"get-balances called: user_id={user_id}, account_id={account_id}")

    try:
        async with open_services() as services:
            holdings = await services.balances.get_portfolio(
                user_id, Credentials(email=email, password=password), strict=False, account_id=account_id
            )
    except Exception as e:
        LOGGER.error(f"Error fetching balances: {e}")
        return error_text("Error fetching balances", e)

    details = holdings.model_dump(mode="json")
    return [
        text("Successfully fetched portfolio balances"),
        json_text({
            "summary": {
                "totalTokens": len(holdings.ledger_tokens),
                "totalStocks": len(holdings.equities),
                "totalNative": len(holdings.native),
                "lastUpdated": details["fetched_at"],
            },
            "details": details,
        }),
    ]


@mcp.tool(name="get-portfolio-value", output_schema=None)
@traced("tool.get-portfolio-value")
async def get_portfolio_value(
    user_id: str,
    email: str,
    password: str,
    account_id: Optional[str] = None,
) -> List[TextContent]:
    """
    Get the current value of the user's portfolio in the reporting currency (KES).

    Holdings are fetched strictly: a backend failure is reported instead of
    valuing an incomplete portfolio. Assets with no available price are left
    out of the total and listed under `unpriced_symbols`.

    Args:
        user_id: Unique identifier of the user on the account backend
        email: User's email for authentication
        password: User's password for authentication
        account_id: Ledger account id, to include HBAR and settlement-token balances

    Returns:
        A JSON block with per-asset values and a total-value line
    """
    LOGGER.info(f"get-portfolio-value called: user_id={user_id}")

    try:
        async with open_services() as services:
            holdings = await services.balances.get_portfolio(
                user_id, Credentials(email=email, password=password), strict=True, account_id=account_id
            )
            snapshot = await services.valuation.snapshot(holdings)
    except Exception as e:
        LOGGER.error(f"Error valuing portfolio: {e}")
        return error_text("Error fetching portfolio value", e)

    content = [
        json_text(snapshot.model_dump(mode="json")),
        text(f"Total value of the portfolio is {snapshot.total_value} {snapshot.currency}"),
    ]
    if snapshot.unpriced_symbols:
        content.append(text(
            f"No price available for: {', '.join(snapshot.unpriced_symbols)} (excluded from the total)"
        ))
    return content


@mcp.tool(name="get-settlement-balance", output_schema=None)
@traced("tool.get-settlement-balance")
async def get_settlement_balance(account_id: str) -> List[TextContent]:
    """
    Get the settlement-token (USDC) balance of a ledger account.

    Args:
        account_id: Ledger account id, e.g. "0.0.12345"
    """
    LOGGER.info(f"get-settlement-balance called: account_id={account_id}")

    try:
        async with open_services() as services:
            balance = await services.balances.settlement_balance(account_id)
            symbol = services.settings.settlement_symbol
    except Exception as e:
        LOGGER.error(f"Error fetching settlement balance: {e}")
        return error_text("Error fetching settlement balance", e)

    return [
        text(f"{symbol} balance for {account_id} is {balance}"),
        json_text({"accountId": account_id, "symbol": symbol, "balance": float(balance)}),
    ]


# ============================================================================
# NEWS AND REPORTS
# ============================================================================

@mcp.tool(name="compare-portfolio-with-trends", output_schema=None)
@traced("tool.compare-portfolio-with-trends")
async def compare_portfolio_with_trends(stock_codes: List[str]) -> List[TextContent]:
    """
    Get the latest news and sentiment for the stocks and tokens a user owns.

    Args:
        stock_codes: Stock codes owned by the user, e.g. ["KCB", "SCOM"]

    Returns:
        A status line and a JSON map of stock code -> news, sentiment and summary
    """
    LOGGER.info(f"compare-portfolio-with-trends called: {stock_codes}")

    try:
        async with open_services() as services:
            report = await services.sentiment.generate_report(stock_codes)
    except Exception as e:
        LOGGER.error(f"Error fetching trends: {e}")
        return error_text("Error fetching user portfolio and their trends", e)

    return [
        text("Successfully fetched user portfolio and their trends"),
        json_text({code: news.model_dump(mode="json") for code, news in report.items()}),
    ]


@mcp.tool(name="generate-report", output_schema=None)
@traced("tool.generate-report")
async def generate_report(stock_codes: List[str]) -> List[TextContent]:
    """
    Generate the news/sentiment report that trading recommendations are based on.

    The calling agent turns this report into actions (issue, redeem or exchange
    for the settlement asset) with a rationale and an amount for each, then
    passes them to execute-trading-actions.

    Args:
        stock_codes: Stock codes to report on

    Returns:
        One JSON block mapping every stock code to its news and sentiment
    """
    LOGGER.info(f"generate-report called: {stock_codes}")

    try:
        async with open_services() as services:
            report = await services.sentiment.generate_report(stock_codes)
    except Exception as e:
        LOGGER.error(f"Error generating report: {e}")
        return error_text("Error generating report", e)

    return [json_text({code: news.model_dump(mode="json") for code, news in report.items()})]


# ============================================================================
# TRADING
# ============================================================================

@mcp.tool(name="execute-trading-actions", output_schema=None)
@traced("tool.execute-trading-actions")
async def execute_trading_actions(
    actions: List[Dict[str, Any]],
    user_id: str,
    email: str,
    password: str,
    private_key: str,
    account_id: str,
) -> List[TextContent]:
    """
    Execute trading actions chosen from the report or by the user's request.

    Each action is an object with:
        type: "issue" (or "mint"), "redeem", "exchange" (or "swap"), "noop"
        token: token symbol to issue, redeem or exchange
        tokenId: ledger token id (required for redeem)
        amount: positive amount (whole units for redeem)
        rationale: why the action is taken
        targetToken: token to exchange into (defaults to the settlement asset)

    Actions run in order and stop at the first failure. Every action is
    recorded on the user's audit topic; executed actions are charged the usage fee.

    Args:
        actions: The actions to be executed
        user_id: Unique identifier of the user on the account backend
        email: User's email for authentication
        password: User's password for authentication
        private_key: DER encoded private key of the user, signs ledger transactions
        account_id: Ledger account id of the user

    Returns:
        A summary line and a JSON block with the per-action results
    """
    LOGGER.info(f"execute-trading-actions called: user_id={user_id}, {len(actions)} actions")
    annotate(user_id=user_id, account_id=account_id, action_count=len(actions))

    try:
        session = TradingSession(
            user_id=user_id,
            email=email,
            password=password,
            account_id=account_id,
            private_key=private_key,
        )
        async with open_services() as services:
            report = await services.trading.execute_actions(actions, session)
    except Exception as e:
        LOGGER.error(f"Error executing trading actions: {e}")
        return error_text("Error executing trading actions", e)

    if not report.authenticated:
        return [text(report.message)]

    return [
        text(report.message),
        json_text(report.model_dump(mode="json")),
    ]


@mcp.tool(name="list-pending-redemptions", output_schema=None)
@traced("tool.list-pending-redemptions")
async def list_pending_redemptions() -> List[TextContent]:
    """
    List redemptions whose tokens reached the treasury but were never burned,
    and transfers that ended without a receipt.

    These need manual reconciliation with the ledger and the account backend.
    """
    LOGGER.info("list-pending-redemptions called")

    try:
        async with open_services() as services:
            pending = services.journal.pending()
    except Exception as e:
        LOGGER.error(f"Error reading redemption journal: {e}")
        return error_text("Error listing pending redemptions", e)

    if not pending:
        return [text("No redemptions awaiting reconciliation")]
    return [
        text(f"{len(pending)} redemptions awaiting reconciliation"),
        json_text([event.model_dump(mode="json") for event in pending]),
    ]


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == "__main__":
    # Library loggers (httpx, fastmcp) go to stderr through the root handler
    setup_global_logging(resolve_level())
    settings = get_settings()
    if settings.mcp_transport == "stdio":
        LOGGER.info("Starting Neo Portfolio MCP Server on stdio")
        mcp.run(transport="stdio")
    else:
        LOGGER.info(f"Starting Neo Portfolio MCP Server on port {settings.mcp_port}")
        mcp.run(transport=settings.mcp_transport, port=settings.mcp_port)
