# src/services/reconciliation.py

import json
import uuid
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from src.core.models import Amount, utcnow
from src.utils.tracing import setup_logger_with_tracing

LOGGER = setup_logger_with_tracing(__name__, service_name="redemption-journal")

PENDING = "pending"
LEDGER_CONFIRMED = "ledger_confirmed"
COMPLETED = "completed"
LEDGER_FAILED = "ledger_failed"
BURN_FAILED = "burn_failed"
LEDGER_UNKNOWN = "ledger_unknown"

# Tokens left, or may have left, the user's account and were never burned
NEEDS_RECONCILIATION = {BURN_FAILED, LEDGER_UNKNOWN}


class RedemptionEvent(BaseModel):
    redemption_id: str
    state: str
    user_id: str = ""
    account_id: str = ""
    asset_symbol: str = ""
    asset_id: Optional[str] = None
    amount: Amount = Decimal("0")
    transaction_id: Optional[str] = None
    detail: str = ""
    recorded_at: datetime = Field(default_factory=utcnow)


class RedemptionJournal:
    """
    Append-only JSONL record of redemptions.

    A redemption moves pending -> ledger_confirmed -> completed; a rejected
    transfer ends in ledger_failed and a transfer whose burn failed ends in
    burn_failed. A transfer that raised without a receipt ends in
    ledger_unknown, since it may still have reached consensus. The last event per redemption id is its current state.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _append(self, event: RedemptionEvent) -> RedemptionEvent:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(event.model_dump_json() + "\n")
        return event

    def begin(
        self,
        user_id: str,
        account_id: str,
        asset_symbol: str,
        asset_id: Optional[str],
        amount: Decimal,
    ) -> RedemptionEvent:
        event = RedemptionEvent(
            redemption_id=str(uuid.uuid4()),
            state=PENDING,
            user_id=user_id,
            account_id=account_id,
            asset_symbol=asset_symbol,
            asset_id=asset_id,
            amount=amount,
        )
        return self._append(event)

    def mark(
        self,
        previous: RedemptionEvent,
        state: str,
        transaction_id: Optional[str] = None,
        detail: str = "",
    ) -> RedemptionEvent:
        event = previous.model_copy(update={
            "state": state,
            "transaction_id": transaction_id or previous.transaction_id,
            "detail": detail,
            "recorded_at": utcnow(),
        })
        if state in NEEDS_RECONCILIATION:
            LOGGER.warning(
                f"Redemption {event.redemption_id} needs reconciliation: "
                f"{event.amount} {event.asset_symbol} ({event.state}, transaction {event.transaction_id}): {detail}"
            )
        return self._append(event)

    def iter_events(self, redemption_id: Optional[str] = None) -> List[RedemptionEvent]:
        if not self.path.exists():
            return []
        events = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = RedemptionEvent.model_validate(json.loads(line))
                except (json.JSONDecodeError, ValidationError):
                    continue
                if redemption_id and event.redemption_id != redemption_id:
                    continue
                events.append(event)
        return events

    def latest(self, redemption_id: str) -> Optional[RedemptionEvent]:
        events = self.iter_events(redemption_id=redemption_id)
        return events[-1] if events else None

    def current_states(self) -> Dict[str, RedemptionEvent]:
        states = {}
        for event in self.iter_events():
            states[event.redemption_id] = event
        return states

    def pending(self) -> List[RedemptionEvent]:
        """Redemptions whose tokens were, or may have been, transferred but not burned."""
        return [e for e in self.current_states().values() if e.state in NEEDS_RECONCILIATION]
