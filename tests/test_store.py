from unittest.mock import MagicMock

import pytest
import redis

from sigverify.errors import RecordDecodeError, StoreError
from sigverify.models import PoisonEntry, VerificationRecord, WorkerIdentity
from sigverify.store import Store


def test_account_last_write_wins(store):
    store.set_account("alice", "key-1")
    store.set_account("alice", "key-2")
    assert store.get_account_key("alice") == "key-2"
    assert store.get_account_key("nobody") is None


def test_account_and_record_keys_do_not_collide(store):
    store.set_account("same-id", "key")
    store.put_record(VerificationRecord.pending("same-id"))
    assert store.get_account_key("same-id") == "key"
    assert VerificationRecord.decode(store.get_record("same-id")).complete is False


def test_open_record_overwrites_pending_but_not_complete(store):
    assert store.open_record(VerificationRecord.pending("tx-1")) is True
    assert store.open_record(VerificationRecord.pending("tx-1")) is True
    store.put_record(VerificationRecord(transaction_id="tx-1", complete=True, valid=True))
    assert store.open_record(VerificationRecord.pending("tx-1")) is False
    assert VerificationRecord.decode(store.get_record("tx-1")).complete is True


def test_open_record_refuses_unreadable_record(store):
    store.client.set("verification:tx-1", "{broken")
    with pytest.raises(RecordDecodeError):
        store.open_record(VerificationRecord.pending("tx-1"))
    assert store.get_record("tx-1") == "{broken"


def test_queue_is_fifo(store, identity):
    for entry in ("first", "second", "third"):
        store.enqueue(entry)
    assert store.stage_next(identity, 1) == "first"
    assert store.stage_next(identity, 1) == "second"
    assert store.staged_entries(identity) == ["first", "second"]
    assert store.queue_length() == 1


def test_stage_moves_entry_out_of_queue(store, identity):
    store.enqueue("entry")
    assert store.stage_next(identity, 1) == "entry"
    assert store.queue_length() == 0
    assert store.staged_entries(identity) == ["entry"]


def test_staging_lists_are_per_identity(store, identity):
    other = WorkerIdentity(name="worker-b")
    store.enqueue("one")
    store.enqueue("two")
    store.stage_next(identity, 1)
    store.stage_next(other, 1)
    assert store.staged_entries(identity) == ["one"]
    assert store.staged_entries(other) == ["two"]


def test_acknowledge_removes_only_that_entry(store, identity):
    store.enqueue("one")
    store.enqueue("two")
    store.stage_next(identity, 1)
    store.stage_next(identity, 1)
    assert store.acknowledge(identity, "one") is True
    assert store.staged_entries(identity) == ["two"]
    assert store.acknowledge(identity, "one") is False


def test_requeue_staged_appends_to_queue_tail(store, identity):
    store.enqueue("a")
    store.enqueue("b")
    store.stage_next(identity, 1)
    store.stage_next(identity, 1)
    store.enqueue("c")
    assert store.requeue_staged(identity) == 2
    assert store.staged_entries(identity) == []
    assert store.client.lrange(store.queue_key, 0, -1) == ["c", "a", "b"]


def test_quarantine(store):
    store.quarantine(PoisonEntry(entry="garbage", reason="invalid_entry: entry", worker_id="w"))
    [entry] = store.poison_entries()
    assert entry.entry == "garbage"
    assert entry.reason == "invalid_entry: entry"
    assert entry.quarantined_at.endswith("Z")


def test_unreadable_poison_entry_is_typed(store):
    store.client.rpush(store.poison_key, "not json")
    with pytest.raises(RecordDecodeError):
        store.poison_entries()


class TestIdentityLease:
    def test_claim_is_exclusive(self, store, identity):
        assert store.claim_identity(identity, "token-1", 10_000) is True
        assert store.claim_identity(identity, "token-2", 10_000) is False
        assert store.identity_claimed(identity) is True

    def test_refresh_requires_matching_token(self, store, identity):
        store.claim_identity(identity, "token-1", 10_000)
        assert store.refresh_identity(identity, "token-1", 10_000) is True
        assert store.refresh_identity(identity, "token-2", 10_000) is False

    def test_release_ignores_foreign_token(self, store, identity):
        store.claim_identity(identity, "token-1", 10_000)
        store.release_identity(identity, "token-2")
        assert store.identity_claimed(identity) is True
        store.release_identity(identity, "token-1")
        assert store.identity_claimed(identity) is False

    def test_expired_lease_taken_over_is_left_alone(self, store, identity):
        store.claim_identity(identity, "token-1", 10_000)
        # Lease expires and another instance claims the identity
        store.client.delete(identity.lease_key)
        assert store.claim_identity(identity, "token-2", 10_000) is True

        assert store.refresh_identity(identity, "token-1", 60_000) is False
        assert store.client.pttl(identity.lease_key) <= 10_000
        store.release_identity(identity, "token-1")
        assert store.client.get(identity.lease_key) == "token-2"

    def test_refresh_extends_ttl(self, store, identity):
        store.claim_identity(identity, "token-1", 1_000)
        assert store.refresh_identity(identity, "token-1", 60_000) is True
        assert store.client.pttl(identity.lease_key) > 1_000


def test_redis_errors_become_store_errors(identity):
    client = MagicMock()
    client.get.side_effect = redis.ConnectionError("connection refused")
    client.blmove.side_effect = redis.TimeoutError("timed out")
    store = Store(client)

    with pytest.raises(StoreError):
        store.get_account_key("alice")
    with pytest.raises(StoreError):
        store.stage_next(identity, 1)
