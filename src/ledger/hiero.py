# src/ledger/hiero.py

import asyncio
from decimal import Decimal
from typing import Optional

from hiero_sdk_python import (
    AccountId,
    Client,
    CryptoGetAccountBalanceQuery,
    Network,
    PrivateKey,
    ResponseCode,
    TokenId,
    TopicCreateTransaction,
    TopicId,
    TopicMessageSubmitTransaction,
    TransferTransaction,
)
from hiero_sdk_python.exceptions import PrecheckError, ReceiptStatusError
from hiero_sdk_python.tokens.custom_fixed_fee import CustomFixedFee

from src.ledger.base import AccountBalances, LedgerReceipt, SigningIdentity, TopicFee
from src.utils.tracing import annotate, setup_logger_with_tracing

LOGGER = setup_logger_with_tracing(__name__, service_name="ledger-hiero")

TINYBARS_PER_HBAR = 100_000_000


def _status_name(status) -> str:
    try:
        return ResponseCode(status).name
    except ValueError:
        return str(status)


class HieroLedgerGateway:
    """
    LedgerGateway backed by the Hiero (Hedera) Python SDK.

    A fresh client is built for every operation and configured with the
    identity passed in, so no operator credentials survive between calls.
    SDK calls are blocking and run on a worker thread.
    """

    def __init__(self, network: str = "testnet", query_identity: Optional[SigningIdentity] = None):
        self.network = network
        self.query_identity = query_identity

    def _client_for(self, identity: Optional[SigningIdentity]) -> Client:
        client = Client(Network(self.network))
        if identity is not None:
            client.set_operator(
                AccountId.from_string(identity.account_id),
                PrivateKey.from_string(identity.private_key),
            )
        return client

    # ------------------------------------------------------------------
    # Token transfers
    # ------------------------------------------------------------------

    def _transfer_token(self, token_id, sender, recipient_account_id, amount, max_fee_hbar) -> LedgerReceipt:
        client = self._client_for(sender)
        try:
            token = TokenId.from_string(token_id)
            tx = (
                TransferTransaction()
                .add_token_transfer(token, AccountId.from_string(sender.account_id), -amount)
                .add_token_transfer(token, AccountId.from_string(recipient_account_id), amount)
            )
            tx.transaction_fee = int(Decimal(max_fee_hbar) * TINYBARS_PER_HBAR)
            tx.freeze_with(client)
            tx.sign(PrivateKey.from_string(sender.private_key))
            try:
                receipt = tx.execute(client)
            except (PrecheckError, ReceiptStatusError) as e:
                # The network answered with a definite status
                LOGGER.warning(f"Transfer rejected by the network: {e}")
                return LedgerReceipt(status=_status_name(e.status), transaction_id=str(tx.transaction_id))
            return LedgerReceipt(
                status=_status_name(receipt.status),
                transaction_id=str(tx.transaction_id),
            )
        finally:
            client.close()

    async def transfer_token(self, token_id, sender, recipient_account_id, amount, max_fee_hbar) -> LedgerReceipt:
        LOGGER.info(f"Transferring {amount} of {token_id} from {sender.account_id} to {recipient_account_id}")
        receipt = await asyncio.to_thread(
            self._transfer_token, token_id, sender, recipient_account_id, amount, max_fee_hbar
        )
        LOGGER.info(f"Transfer {receipt.transaction_id} finished with {receipt.status}")
        annotate(ledger_status=receipt.status, ledger_transaction_id=receipt.transaction_id)
        return receipt

    # ------------------------------------------------------------------
    # Consensus topics
    # ------------------------------------------------------------------

    def _create_topic(self, memo: str, submit_key: str, fee: Optional[TopicFee], payer: SigningIdentity) -> LedgerReceipt:
        client = self._client_for(payer)
        try:
            tx = (
                TopicCreateTransaction()
                .set_memo(memo)
                .set_submit_key(PrivateKey.from_string(submit_key).public_key())
            )
            if fee is not None:
                tx.set_custom_fees([
                    CustomFixedFee(
                        amount=int(fee.amount),
                        denominating_token_id=TokenId.from_string(fee.token_id),
                        fee_collector_account_id=AccountId.from_string(fee.collector_account_id),
                    )
                ])
            tx.freeze_with(client)
            tx.sign(PrivateKey.from_string(payer.private_key))
            receipt = tx.execute(client)
            topic_id = getattr(receipt, "topic_id", None)
            return LedgerReceipt(
                status=_status_name(receipt.status),
                transaction_id=str(tx.transaction_id),
                topic_id=str(topic_id) if topic_id else None,
            )
        finally:
            client.close()

    async def create_topic(self, memo, submit_key, fee, payer) -> LedgerReceipt:
        LOGGER.info(f"Creating topic '{memo}'")
        return await asyncio.to_thread(self._create_topic, memo, submit_key, fee, payer)

    def _submit_message(self, topic_id: str, message: str, signer: SigningIdentity) -> LedgerReceipt:
        client = self._client_for(signer)
        try:
            tx = TopicMessageSubmitTransaction(topic_id=TopicId.from_string(topic_id), message=message)
            tx.freeze_with(client)
            tx.sign(PrivateKey.from_string(signer.private_key))
            receipt = tx.execute(client)
            return LedgerReceipt(
                status=_status_name(receipt.status),
                transaction_id=str(tx.transaction_id),
                topic_id=topic_id,
            )
        finally:
            client.close()

    async def submit_message(self, topic_id, message, signer) -> LedgerReceipt:
        LOGGER.info(f"Submitting message to topic {topic_id}")
        return await asyncio.to_thread(self._submit_message, topic_id, message, signer)

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def _account_balances(self, account_id: str) -> AccountBalances:
        client = self._client_for(self.query_identity)
        try:
            balance = (
                CryptoGetAccountBalanceQuery()
                .set_account_id(AccountId.from_string(account_id))
                .execute(client)
            )
            native = Decimal(balance.hbars.to_tinybars()) / TINYBARS_PER_HBAR
            tokens = {str(token): Decimal(units) for token, units in (balance.token_balances or {}).items()}
            return AccountBalances(native=native, tokens=tokens)
        finally:
            client.close()

    async def account_balances(self, account_id: str) -> AccountBalances:
        return await asyncio.to_thread(self._account_balances, account_id)
