"""
Transaction ownership resolution.

A transaction is attributed to exactly one user before any per-user analysis
runs. An explicit owner on the row wins; otherwise the account's family decides,
and only a single-member family resolves unambiguously.
"""

from dataclasses import dataclass
from typing import Union

from models import Transaction
from repository import Repository
from .observability import logger


@dataclass(frozen=True)
class OwnerFound:
    user_id: int


@dataclass(frozen=True)
class OwnerAmbiguous:
    user_ids: tuple


@dataclass(frozen=True)
class NoOwner:
    pass


OwnerResolution = Union[OwnerFound, OwnerAmbiguous, NoOwner]


def resolve_owner(repo: Repository, transaction: Transaction) -> OwnerResolution:
    if transaction.user_id is not None:
        return OwnerFound(transaction.user_id)

    account = repo.get_account(transaction.account_id)
    if account is None:
        return NoOwner()

    members = repo.family_user_ids(account.family_id)
    if not members:
        return NoOwner()
    if len(members) == 1:
        return OwnerFound(members[0])
    return OwnerAmbiguous(tuple(members))


def claim_transaction(repo: Repository, transaction: Transaction) -> OwnerResolution:
    """Resolve the owner and stamp it on an unclaimed transaction."""
    resolution = resolve_owner(repo, transaction)
    if isinstance(resolution, OwnerFound) and transaction.user_id is None:
        repo.assign_transaction_owner(transaction, resolution.user_id)
        logger.info("Transaction claimed", transaction_id=transaction.id, user_id=resolution.user_id)
    return resolution
