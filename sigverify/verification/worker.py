"""Reliable consumer for the verification queue.

Each cycle moves the queue head onto this worker's staging list in one
atomic step, verifies it, writes the terminal record and only then drops
the staged copy. An entry is therefore always in the queue, in a staging
list, or covered by a committed record. Entries left staged by a crash or
a failed commit are reprocessed from the staging list at start-up and
after any store failure, so delivery is at-least-once.
"""
import json
import logging
import secrets
import threading
from enum import Enum
from typing import Optional

from sigverify import config, crypto
from sigverify.errors import IdentityClaimError, MalformedEntry, StoreError
from sigverify.models import PoisonEntry, VerificationRecord, VerificationRequest, WorkerIdentity
from sigverify.store import Store

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    COMMITTED = "committed"
    QUARANTINED = "quarantined"


class Worker:
    def __init__(self, store: Store, identity: WorkerIdentity,
                 block_timeout: float = config.BLOCK_TIMEOUT,
                 lease_ttl_ms: int = config.LEASE_TTL_MS,
                 retry_delay: float = config.RETRY_DELAY):
        self.store = store
        self.identity = identity
        self.block_timeout = block_timeout
        self.lease_ttl_ms = lease_ttl_ms
        self.retry_delay = retry_delay
        self._token = secrets.token_urlsafe(16)
        self._stopping = threading.Event()

    def stop(self):
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def handle(self, entry: str) -> Outcome:
        """Verify one staged entry, commit its record and acknowledge it.

        StoreError propagates and leaves the entry staged.
        """
        try:
            request = VerificationRequest.decode(entry)
        except MalformedEntry as e:
            self.store.quarantine(PoisonEntry(entry=entry, reason=e.reason, worker_id=self.identity.name))
            self.store.acknowledge(self.identity, entry)
            logger.warning(json.dumps({
                "event": "worker.poison",
                "worker_id": self.identity.name,
                "reason": e.reason
            }))
            return Outcome.QUARANTINED

        verdict = crypto.evaluate(request.signature, request.payload, request.pub_key)
        record = VerificationRecord(
            transaction_id=request.transaction_id,
            complete=True,
            valid=verdict.valid,
            reason=verdict.reason,
        )
        self.store.put_record(record)
        self.store.acknowledge(self.identity, entry)

        logger.info(json.dumps({
            "event": "worker.commit",
            "worker_id": self.identity.name,
            "transaction_id": request.transaction_id,
            "valid": verdict.valid,
            "reason": verdict.reason
        }))
        return Outcome.COMMITTED

    def recover(self) -> int:
        """Reprocess whatever is still on this worker's staging list"""
        staged = self.store.staged_entries(self.identity)
        for entry in staged:
            self.handle(entry)
        if staged:
            logger.info(json.dumps({
                "event": "worker.recover",
                "worker_id": self.identity.name,
                "count": len(staged)
            }))
        return len(staged)

    def run_once(self) -> Optional[Outcome]:
        entry = self.store.stage_next(self.identity, self.block_timeout)
        if entry is None:
            return None
        return self.handle(entry)

    def claim(self):
        if not self.store.claim_identity(self.identity, self._token, self.lease_ttl_ms):
            raise IdentityClaimError(f"worker identity {self.identity} is held by another instance")

    def release(self):
        self.store.release_identity(self.identity, self._token)

    def run(self):
        """Consume until stop() is called.

        Claiming the identity happens first and is fatal on failure.
        """
        self.claim()
        logger.info(json.dumps({
            "event": "worker.start",
            "worker_id": self.identity.name,
            "queue": self.store.queue_key,
            "stage": self.identity.stage_key
        }))

        needs_recovery = True
        try:
            while not self.stopping:
                try:
                    if not self.store.refresh_identity(self.identity, self._token, self.lease_ttl_ms):
                        raise IdentityClaimError(f"lease for worker identity {self.identity} was lost")
                    if needs_recovery:
                        self.recover()
                        needs_recovery = False
                    self.run_once()
                except StoreError as e:
                    logger.error(json.dumps({
                        "event": "worker.store_error",
                        "worker_id": self.identity.name,
                        "error": str(e),
                        "retry_in": self.retry_delay
                    }))
                    needs_recovery = True
                    self._stopping.wait(self.retry_delay)
        finally:
            try:
                self.release()
            except StoreError as e:
                # The lease expires on its own after lease_ttl_ms
                logger.warning(json.dumps({
                    "event": "worker.release_failed",
                    "worker_id": self.identity.name,
                    "error": str(e)
                }))
            logger.info(json.dumps({
                "event": "worker.stop",
                "worker_id": self.identity.name
            }))
