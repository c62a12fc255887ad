# src/services/trading.py

import json
import time
import uuid
from typing import Any, Dict, List, Sequence, Union

from pydantic import ValidationError

from src.config import FEE_REFERENCE_LEGACY, Settings
from src.core.errors import (
    AuthenticationError,
    BusinessValidationError,
    LedgerTransactionError,
    MalformedResponseError,
    PortfolioAgentError,
)
from src.core.models import (
    ActionResult,
    ActionStatus,
    AuditEntry,
    FeeOutcome,
    TradeAction,
    TradeExecutionReport,
    TradeKind,
    TradingSession,
)
from src.ledger.base import LedgerGateway, SigningIdentity
from src.services.audit_log import AuditLog
from src.services.backend import AccountBackend
from src.services.reconciliation import (
    BURN_FAILED,
    COMPLETED,
    LEDGER_CONFIRMED,
    LEDGER_FAILED,
    LEDGER_UNKNOWN,
    RedemptionJournal,
)
from src.utils.tracing import annotate, setup_logger_with_tracing, traced

LOGGER = setup_logger_with_tracing(__name__, service_name="trade-orchestrator")

AUTH_FAILED_MESSAGE = "Couldn't safely authenticate you with the email provided."


def validate_actions(raw_actions: Sequence[Union[TradeAction, Dict[str, Any]]]) -> List[TradeAction]:
    """
    Parse and check every action before anything touches the network.

    Raises:
        BusinessValidationError: unknown kind, amount <= 0, fractional redeem,
            redeem without a token id
    """
    actions = []
    for index, raw in enumerate(raw_actions):
        try:
            action = raw if isinstance(raw, TradeAction) else TradeAction.model_validate(raw)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'action'}: {err['msg']}" for err in e.errors()
            )
            raise BusinessValidationError(f"Action {index + 1} is invalid: {problems}") from e

        if action.kind == TradeKind.REDEEM:
            if not action.asset_id:
                raise BusinessValidationError(f"Action {index + 1}: redeem needs the token id to transfer")
            if action.amount != action.amount.to_integral_value():
                raise BusinessValidationError(
                    f"Action {index + 1}: redeem amount must be a whole number of tokens, got {action.amount}"
                )
        actions.append(action)
    return actions


class TradeOrchestrator:
    """
    Executes caller-chosen trade actions for one user, in order.

    Each action runs its branch (issue, redeem, exchange, noop), then the
    bookkeeping: audit entry on the user's topic, then the usage fee. The
    first failed action stops the run.
    """

    def __init__(
        self,
        backend: AccountBackend,
        ledger: LedgerGateway,
        audit_log: AuditLog,
        journal: RedemptionJournal,
        settings: Settings,
    ):
        self.backend = backend
        self.ledger = ledger
        self.audit_log = audit_log
        self.journal = journal
        self.settings = settings

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    @traced("trading.execute_actions")
    async def execute_actions(
        self,
        actions: Sequence[Union[TradeAction, Dict[str, Any]]],
        session: TradingSession,
    ) -> TradeExecutionReport:
        """
        Validate, authenticate once, then run each action.

        Args:
            actions: TradeAction models or raw dicts (camelCase keys accepted)
            session: user identity, credentials and signing key

        Returns:
            TradeExecutionReport with one ActionResult per submitted action

        Raises:
            BusinessValidationError: an action failed validation (nothing ran)
        """
        parsed = validate_actions(actions)

        try:
            token = await self.backend.login(session.email, session.password)
        except AuthenticationError as e:
            LOGGER.warning(f"Authentication failed for user {session.user_id}: {e.message}")
            return TradeExecutionReport(authenticated=False, message=AUTH_FAILED_MESSAGE)

        report = TradeExecutionReport()
        for index, action in enumerate(parsed):
            result = await self._run_action(action, session, token)
            report.results.append(result)

            if result.status == ActionStatus.FAILED:
                report.halted = True
                for remaining in parsed[index + 1:]:
                    report.results.append(ActionResult(
                        action=remaining,
                        status=ActionStatus.NOT_ATTEMPTED,
                        message="Not attempted: an earlier action failed",
                    ))
                break

        report.message = report.summary()
        LOGGER.info(f"User {session.user_id}: {report.message}, {report.fees_charged} fees charged")
        return report

    @traced("trading.action")
    async def _run_action(self, action: TradeAction, session: TradingSession, token: str) -> ActionResult:
        annotate(action_kind=action.kind.value, asset=action.asset_symbol, amount=action.amount)
        LOGGER.info(f"Executing {action.describe()} for user {session.user_id}")
        try:
            result = await self._execute_branch(action, session, token)
        except PortfolioAgentError as e:
            LOGGER.error(f"{action.describe()} failed: {e.message}")
            result = ActionResult(
                action=action, status=ActionStatus.FAILED, message=e.message, detail=e.to_dict()
            )

        annotate(action_status=result.status.value)
        result.audit, result.fee = await self._bookkeeping(action, result, session, token)
        annotate(audit_ok=result.audit.ok, fee_charged=result.fee.ok)
        return result

    async def _execute_branch(self, action: TradeAction, session: TradingSession, token: str) -> ActionResult:
        if action.kind == TradeKind.ISSUE:
            return await self._issue(action, token)
        if action.kind == TradeKind.REDEEM:
            return await self._redeem(action, session, token)
        if action.kind == TradeKind.EXCHANGE:
            return await self._exchange(action, session, token)
        return ActionResult(
            action=action, status=ActionStatus.SKIPPED, message="No action executed"
        )

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    async def _issue(self, action: TradeAction, token: str) -> ActionResult:
        response = await self.backend.mint(action.asset_symbol, action.amount, token)
        transaction = response.get("transaction") if isinstance(response, dict) else None
        if not transaction:
            raise MalformedResponseError(
                "Failed to mint tokens: response has no transaction record", upstream="account-backend"
            )
        return ActionResult(
            action=action,
            status=ActionStatus.SUCCEEDED,
            message=f"Successfully minted {action.amount} {action.asset_symbol} tokens",
            detail={"transaction": transaction},
        )

    async def _redeem(self, action: TradeAction, session: TradingSession, token: str) -> ActionResult:
        entry = self.journal.begin(
            user_id=session.user_id,
            account_id=session.account_id,
            asset_symbol=action.asset_symbol,
            asset_id=action.asset_id,
            amount=action.amount,
        )

        try:
            receipt = await self.ledger.transfer_token(
                token_id=action.asset_id,
                sender=SigningIdentity(account_id=session.account_id, private_key=session.private_key),
                recipient_account_id=self.settings.treasury_account_id,
                amount=int(action.amount),
                max_fee_hbar=self.settings.max_transaction_fee_hbar,
            )
        except Exception as e:
            # No receipt: the transfer may still have been applied
            self.journal.mark(entry, LEDGER_UNKNOWN, detail=f"{type(e).__name__}: {e}")
            raise LedgerTransactionError(
                f"Token transfer outcome unknown: {e}", status="UNKNOWN"
            ) from e

        if not receipt.succeeded:
            self.journal.mark(entry, LEDGER_FAILED, transaction_id=receipt.transaction_id, detail=receipt.status)
            raise LedgerTransactionError(
                f"Token transfer failed: {receipt.status}",
                status=receipt.status,
                transaction_id=receipt.transaction_id,
            )

        entry = self.journal.mark(entry, LEDGER_CONFIRMED, transaction_id=receipt.transaction_id)

        try:
            burn = await self.backend.burn(action.asset_symbol, action.amount, receipt.transaction_id, token)
        except PortfolioAgentError as e:
            self.journal.mark(entry, BURN_FAILED, detail=e.message)
            LOGGER.error(f"Burn after transfer {receipt.transaction_id} failed: {e.message}")
            return ActionResult(
                action=action,
                status=ActionStatus.FAILED,
                message=f"Tokens transferred in {receipt.transaction_id} but the burn failed: {e.message}",
                detail={**e.to_dict(), "transaction_id": receipt.transaction_id, "redemption_id": entry.redemption_id},
            )

        self.journal.mark(entry, COMPLETED)
        return ActionResult(
            action=action,
            status=ActionStatus.SUCCEEDED,
            message=f"Successfully redeemed {action.amount} {action.asset_symbol} tokens",
            detail={"transaction_id": receipt.transaction_id, "burn": burn},
        )

    async def _exchange(self, action: TradeAction, session: TradingSession, token: str) -> ActionResult:
        target = action.target_asset or self.settings.settlement_symbol
        response = await self.backend.sell(
            action.asset_symbol, action.amount, session.account_id, session.private_key, token
        )
        return ActionResult(
            action=action,
            status=ActionStatus.SUCCEEDED,
            message=f"Successfully swapped {action.amount} {action.asset_symbol} tokens for {target}",
            detail={"result": response},
        )

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def fee_reference(self, account_id: str) -> str:
        if self.settings.fee_reference_style == FEE_REFERENCE_LEGACY:
            now = time.time()
            return f"{account_id}@{int(now)}.{int(now * 1000) % 1000:03d}"
        return f"{account_id}-{uuid.uuid4()}"

    def should_charge(self, result: ActionResult) -> bool:
        return result.executed or self.settings.charges_failed_actions

    @staticmethod
    def audit_message(action: TradeAction, result: ActionResult, session: TradingSession) -> str:
        return json.dumps({
            "action": action.kind.value,
            "asset": action.asset_symbol,
            "amount": str(action.amount),
            "status": result.status.value,
            "message": result.message,
            "rationale": action.rationale,
            "accountId": session.account_id,
        })

    async def _bookkeeping(self, action: TradeAction, result: ActionResult, session: TradingSession, token: str):
        topic_id = await self.audit_log.main_topic_id(session.user_id, token)
        entry = AuditEntry(
            topic_id=topic_id,
            message=self.audit_message(action, result, session),
            account_id=session.account_id,
        )
        audit = await self.audit_log.append(entry, session, token)
        if not audit.ok:
            LOGGER.warning(f"Audit entry for {action.describe()} not recorded: {audit.detail}")

        fee = await self._deduct_fee(result, session, token)
        return audit, fee

    async def _deduct_fee(self, result: ActionResult, session: TradingSession, token: str) -> FeeOutcome:
        if not self.should_charge(result):
            return FeeOutcome(attempted=False, detail=f"No fee: action {result.status.value}")

        reference = self.fee_reference(session.account_id)
        try:
            await self.backend.deduct_fee(reference, token)
        except PortfolioAgentError as e:
            LOGGER.error(f"Fee deduction {reference} failed: {e.message}")
            return FeeOutcome(attempted=True, ok=False, reference=reference, detail=e.message)

        LOGGER.info(f"✅ Fee deducted with reference {reference}")
        return FeeOutcome(attempted=True, ok=True, reference=reference, detail="Fee deducted")
