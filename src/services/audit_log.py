# src/services/audit_log.py

from decimal import Decimal
from typing import Optional

from src.config import Settings
from src.core.errors import PortfolioAgentError
from src.core.models import AuditEntry, AuditOutcome, TradingSession
from src.ledger.base import LedgerGateway, SigningIdentity, TopicFee
from src.services.backend import AccountBackend
from src.utils.tracing import setup_logger_with_tracing, traced

LOGGER = setup_logger_with_tracing(__name__, service_name="audit-log")


class AuditLog:
    """
    Per-user conversation topic on the ledger, mirrored on the backend.

    Topic creation and the first message are two separate transactions; a
    topic can exist with no message if the second one fails.
    """

    def __init__(self, backend: AccountBackend, ledger: LedgerGateway, settings: Settings):
        self.backend = backend
        self.ledger = ledger
        self.settings = settings

    def topic_name(self, user_id: str, account_id: str) -> str:
        return f"{user_id}-{account_id}"

    def topic_description(self, account_id: str) -> str:
        return f"{account_id} conversation with {self.settings.agent_name}"

    def operator_identity(self) -> SigningIdentity:
        return SigningIdentity(
            account_id=self.settings.operator_account_id,
            private_key=self.settings.operator_private_key,
        )

    def topic_fee(self) -> Optional[TopicFee]:
        if not self.settings.settlement_token_id or self.settings.topic_fee <= Decimal("0"):
            return None
        return TopicFee(
            token_id=self.settings.settlement_token_id,
            amount=self.settings.topic_fee,
            collector_account_id=self.settings.operator_account_id,
        )

    async def main_topic_id(self, user_id: str, token: str) -> Optional[str]:
        """First topic registered for the user, or None (lookup failures included)."""
        try:
            topics = await self.backend.list_user_topics(user_id, token)
        except PortfolioAgentError as e:
            LOGGER.warning(f"Topic lookup failed for user {user_id}: {e.message}")
            return None

        if not topics:
            return None
        first = topics[0]
        if not isinstance(first, dict):
            return None
        topic_id = first.get("hederaTopicId") or first.get("hederaTopicID")
        return topic_id or None

    async def _create_topic(self, session: TradingSession, token: str) -> str:
        name = self.topic_name(session.user_id, session.account_id)
        description = self.topic_description(session.account_id)

        receipt = await self.ledger.create_topic(
            memo=f"{name}: {description}",
            submit_key=session.private_key,
            fee=self.topic_fee(),
            payer=self.operator_identity(),
        )
        if not receipt.succeeded or not receipt.topic_id:
            raise PortfolioAgentError(
                f"Failed to create topic: {receipt.status}", upstream="ledger"
            )

        await self.backend.create_topic(name, description, description, receipt.topic_id, token)
        LOGGER.info(f"✅ Created topic {receipt.topic_id} for user {session.user_id}")
        return receipt.topic_id

    @traced("audit_log.append")
    async def append(self, entry: AuditEntry, session: TradingSession, token: str) -> AuditOutcome:
        """
        Write one audit message, creating the user's topic first if needed.

        Args:
            entry: message and (optional) existing topic id
            session: user identity; the user's key signs the message
            token: bearer token for the backend mirror calls

        Returns:
            AuditOutcome; failures are reported in it, never raised
        """
        topic_id = entry.topic_id
        created = False

        try:
            if not topic_id:
                topic_id = await self._create_topic(session, token)
                created = True

            receipt = await self.ledger.submit_message(
                topic_id=topic_id,
                message=entry.message,
                signer=SigningIdentity(account_id=session.account_id, private_key=session.private_key),
            )
            if not receipt.succeeded:
                LOGGER.error(f"Failed to submit message to {topic_id}: {receipt.status}")
                return AuditOutcome(
                    ok=False,
                    topic_id=topic_id,
                    topic_created=created,
                    status=receipt.status,
                    detail=f"Failed to submit message: {receipt.status}",
                )

            await self.backend.add_topic_message(topic_id, entry.message, token)
        except PortfolioAgentError as e:
            LOGGER.error(f"Audit write failed for user {session.user_id}: {e.message}")
            return AuditOutcome(ok=False, topic_id=topic_id, topic_created=created, detail=e.message)
        except Exception as e:
            LOGGER.error(f"Audit write failed for user {session.user_id}: {e}")
            return AuditOutcome(ok=False, topic_id=topic_id, topic_created=created, detail=str(e))

        return AuditOutcome(
            ok=True,
            topic_id=topic_id,
            topic_created=created,
            status=receipt.status,
            detail="Topic created and message recorded" if created else "Message recorded",
        )
