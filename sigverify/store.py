import json
import logging
from contextlib import contextmanager
from typing import List, Optional

import redis
from pydantic import ValidationError

from sigverify import config
from sigverify.errors import RecordDecodeError, StoreError
from sigverify.models import PoisonEntry, VerificationRecord, WorkerIdentity

logger = logging.getLogger(__name__)

# Compare-and-act on a lease key; a lease taken over by another instance is left alone
REFRESH_LEASE = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return 0
"""

RELEASE_LEASE = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


@contextmanager
def _command(op: str):
    try:
        yield
    except redis.RedisError as e:
        logger.error(json.dumps({
            "event": "store.error",
            "op": op,
            "error": str(e)
        }))
        raise StoreError(f"{op} failed: {e}") from e


class Store:
    """Accounts, verification records and the work queue, kept in Redis.

    The client is backed by a connection pool and is safe to share between
    threads; Redis serialises commands on a key, so a read always observes
    a write that completed before it was issued.
    """

    def __init__(self, client: redis.Redis, queue_key: str = config.QUEUE_KEY,
                 poison_key: str = config.POISON_KEY):
        self.client = client
        self.queue_key = queue_key
        self.poison_key = poison_key
        self._refresh_lease = client.register_script(REFRESH_LEASE)
        self._release_lease = client.register_script(RELEASE_LEASE)

    @classmethod
    def from_url(cls, url: str = config.REDIS_URL,
                 max_connections: int = config.REDIS_MAX_CONNECTIONS) -> "Store":
        pool = redis.ConnectionPool.from_url(
            url, max_connections=max_connections, decode_responses=True
        )
        return cls(redis.Redis(connection_pool=pool))

    def close(self):
        self.client.close()

    def ping(self) -> bool:
        with _command("ping"):
            return bool(self.client.ping())

    # Accounts

    def set_account(self, account_id: str, public_key: str):
        with _command("set_account"):
            self.client.set(config.ACCOUNT_PREFIX + account_id, public_key)

    def get_account_key(self, account_id: str) -> Optional[str]:
        with _command("get_account_key"):
            return self.client.get(config.ACCOUNT_PREFIX + account_id)

    # Verification records

    def open_record(self, record: VerificationRecord) -> bool:
        """Write a pending record unless the transaction already completed.

        Returns False, leaving the stored record untouched, when it is
        complete. A pending record is overwritten so a submission whose
        enqueue failed can be retried.
        """
        key = config.RECORD_PREFIX + record.transaction_id

        def write_unless_complete(pipe) -> bool:
            current = pipe.get(key)
            if current is not None and VerificationRecord.decode(current).complete:
                return False
            pipe.multi()
            pipe.set(key, record.to_json())
            return True

        with _command("open_record"):
            return self.client.transaction(write_unless_complete, key, value_from_callable=True)

    def put_record(self, record: VerificationRecord):
        with _command("put_record"):
            self.client.set(config.RECORD_PREFIX + record.transaction_id, record.to_json())

    def get_record(self, transaction_id: str) -> Optional[str]:
        with _command("get_record"):
            return self.client.get(config.RECORD_PREFIX + transaction_id)

    # Work queue

    def enqueue(self, entry: str):
        with _command("enqueue"):
            self.client.rpush(self.queue_key, entry)

    def queue_length(self) -> int:
        with _command("queue_length"):
            return self.client.llen(self.queue_key)

    def stage_next(self, identity: WorkerIdentity, timeout: float) -> Optional[str]:
        """Atomically move the queue head onto the worker's staging list.

        Blocks up to ``timeout`` seconds (0 waits forever) and returns None
        if the queue stayed empty.
        """
        with _command("stage_next"):
            return self.client.blmove(
                self.queue_key, identity.stage_key, timeout, src="LEFT", dest="RIGHT"
            )

    def acknowledge(self, identity: WorkerIdentity, entry: str) -> bool:
        with _command("acknowledge"):
            removed = self.client.lrem(identity.stage_key, 1, entry)
        return removed > 0

    def staged_entries(self, identity: WorkerIdentity) -> List[str]:
        with _command("staged_entries"):
            return self.client.lrange(identity.stage_key, 0, -1)

    def requeue_staged(self, identity: WorkerIdentity) -> int:
        """Move a staging list back onto the tail of the global queue"""
        moved = 0
        with _command("requeue_staged"):
            while self.client.lmove(identity.stage_key, self.queue_key, "LEFT", "RIGHT") is not None:
                moved += 1
        return moved

    def quarantine(self, entry: PoisonEntry):
        with _command("quarantine"):
            self.client.rpush(self.poison_key, entry.to_json())

    def poison_entries(self) -> List[PoisonEntry]:
        """Quarantined entries, oldest first, for operator inspection"""
        with _command("poison_entries"):
            raw = self.client.lrange(self.poison_key, 0, -1)
        try:
            return [PoisonEntry.model_validate_json(r) for r in raw]
        except ValidationError as e:
            raise RecordDecodeError(f"unreadable poison entry: {e}") from e

    # Worker identity leases

    def claim_identity(self, identity: WorkerIdentity, token: str, ttl_ms: int) -> bool:
        with _command("claim_identity"):
            return bool(self.client.set(identity.lease_key, token, nx=True, px=ttl_ms))

    def refresh_identity(self, identity: WorkerIdentity, token: str, ttl_ms: int) -> bool:
        with _command("refresh_identity"):
            return bool(self._refresh_lease(keys=[identity.lease_key], args=[token, ttl_ms]))

    def release_identity(self, identity: WorkerIdentity, token: str):
        with _command("release_identity"):
            self._release_lease(keys=[identity.lease_key], args=[token])

    def identity_claimed(self, identity: WorkerIdentity) -> bool:
        with _command("identity_claimed"):
            return bool(self.client.exists(identity.lease_key))
