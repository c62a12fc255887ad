# src/ledger/__init__.py

from .base import (
    SUCCESS,
    SigningIdentity,
    LedgerReceipt,
    TopicFee,
    AccountBalances,
    LedgerGateway
)

__all__ = [
    'SUCCESS',
    'SigningIdentity',
    'LedgerReceipt',
    'TopicFee',
    'AccountBalances',
    'LedgerGateway'
]
