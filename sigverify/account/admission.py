"""Account registration, verification submission and status lookup.

Submission writes the pending record and then enqueues the request. The
two writes are not atomic: a crash between them leaves a pending record
that no worker will ever pick up. Resubmitting a pending transaction
rewrites the record and enqueues it again; only a completed transaction
is refused.
"""
import json
import logging

from sigverify.errors import AccountNotFound, RecordNotFound, TransactionConflict
from sigverify.models import VerificationRecord, VerificationRequest
from sigverify.store import Store

logger = logging.getLogger(__name__)


def register(store: Store, account_id: str, public_key: str):
    store.set_account(account_id, public_key)

    logger.info(json.dumps({
        "event": "account.register",
        "account_id": account_id
    }))


def submit_verification(store: Store, account_id: str, transaction_id: str,
                        payload: str, signature: str) -> VerificationRecord:
    public_key = store.get_account_key(account_id)
    if public_key is None:
        logger.info(json.dumps({
            "event": "verification.submit.fail",
            "reason": "account_not_found",
            "account_id": account_id,
            "transaction_id": transaction_id
        }))
        raise AccountNotFound(account_id)

    record = VerificationRecord.pending(transaction_id)
    if not store.open_record(record):
        logger.info(json.dumps({
            "event": "verification.submit.fail",
            "reason": "transaction_complete",
            "account_id": account_id,
            "transaction_id": transaction_id
        }))
        raise TransactionConflict(transaction_id)

    request = VerificationRequest(
        transaction_id=transaction_id,
        payload=payload,
        signature=signature,
        pub_key=public_key,
    )
    store.enqueue(request.to_json())

    logger.info(json.dumps({
        "event": "verification.submit",
        "account_id": account_id,
        "transaction_id": transaction_id
    }))
    return record


def get_status(store: Store, transaction_id: str) -> VerificationRecord:
    raw = store.get_record(transaction_id)
    if raw is None:
        raise RecordNotFound(transaction_id)
    return VerificationRecord.decode(raw)
