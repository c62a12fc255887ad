# src/ledger/base.py

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Optional, Protocol

SUCCESS = "SUCCESS"


@dataclass(frozen=True)
class SigningIdentity:
    """Account and key that pay for and sign one ledger operation."""

    account_id: str
    private_key: str = field(repr=False)


@dataclass(frozen=True)
class LedgerReceipt:
    """Terminal receipt of a submitted transaction."""

    status: str
    transaction_id: Optional[str] = None
    topic_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCESS


@dataclass(frozen=True)
class TopicFee:
    """Fixed per-message fee attached to a topic, in units of `token_id`."""

    token_id: str
    amount: Decimal
    collector_account_id: str


@dataclass(frozen=True)
class AccountBalances:
    native: Decimal
    tokens: Dict[str, Decimal]


class LedgerGateway(Protocol):
    """
    The slice of the ledger SDK the services rely on.

    Implementations must not keep operator state between calls: every method
    receives the identity it signs with.
    """

    async def transfer_token(
        self,
        token_id: str,
        sender: SigningIdentity,
        recipient_account_id: str,
        amount: int,
        max_fee_hbar: Decimal,
    ) -> LedgerReceipt:
        ...

    async def create_topic(
        self,
        memo: str,
        submit_key: str,
        fee: Optional[TopicFee],
        payer: SigningIdentity,
    ) -> LedgerReceipt:
        ...

    async def submit_message(
        self,
        topic_id: str,
        message: str,
        signer: SigningIdentity,
    ) -> LedgerReceipt:
        ...

    async def account_balances(self, account_id: str) -> AccountBalances:
        ...
