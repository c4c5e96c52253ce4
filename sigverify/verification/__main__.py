import argparse
import json
import logging
import signal
import sys
from typing import List, Optional

from pydantic import ValidationError

from sigverify import config
from sigverify.errors import IdentityClaimError, SigVerifyError, StoreError
from sigverify.models import WorkerIdentity
from sigverify.store import Store
from sigverify.verification.worker import Worker

logger = logging.getLogger("sigverify.verification")


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Signature verification queue worker")
    ap.add_argument("--worker-id", dest="worker_id", default=config.WORKER_ID or "")
    ap.add_argument("--redis-url", dest="redis_url", default=config.REDIS_URL)
    ap.add_argument("--block-timeout", dest="block_timeout", type=float, default=config.BLOCK_TIMEOUT)
    ap.add_argument("--lease-ttl-ms", dest="lease_ttl_ms", type=int, default=config.LEASE_TTL_MS)
    ap.add_argument("--retry-delay", dest="retry_delay", type=float, default=config.RETRY_DELAY)
    ap.add_argument(
        "--requeue-stale",
        dest="requeue_stale",
        default="",
        metavar="IDENTITY",
        help="move a retired worker's staging list back onto the queue and exit",
    )
    ap.add_argument(
        "--show-poison",
        dest="show_poison",
        action="store_true",
        help="print quarantined queue entries as JSON lines and exit",
    )
    return ap.parse_args(argv)


def _identity(name: str) -> Optional[WorkerIdentity]:
    try:
        return WorkerIdentity(name=name)
    except ValidationError as e:
        print(f"ERROR: invalid worker identity {name!r}: {e.errors()[0]['msg']}", file=sys.stderr)
        return None


def requeue_stale(store: Store, identity: WorkerIdentity) -> int:
    if store.identity_claimed(identity):
        print(f"ERROR: worker identity {identity} is live; stop it before requeueing", file=sys.stderr)
        return 1
    moved = store.requeue_staged(identity)
    logger.info(json.dumps({
        "event": "worker.requeue_stale",
        "worker_id": identity.name,
        "count": moved
    }))
    return 0


def show_poison(store: Store) -> int:
    for entry in store.poison_entries():
        print(entry.to_json())
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=config.LOG_LEVEL, format='%(message)s')
    args = _parse_args(argv)

    if args.block_timeout <= 0:
        print("ERROR: --block-timeout must be positive", file=sys.stderr)
        return 2
    if args.block_timeout * 1000 >= args.lease_ttl_ms:
        print("ERROR: --lease-ttl-ms must exceed the block timeout", file=sys.stderr)
        return 2

    if args.show_poison:
        store = Store.from_url(args.redis_url)
        try:
            return show_poison(store)
        except SigVerifyError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1
        finally:
            store.close()

    name = args.requeue_stale or args.worker_id
    if not name:
        print("ERROR: --worker-id (or SIGVERIFY_WORKER_ID) is required", file=sys.stderr)
        return 2
    identity = _identity(name)
    if identity is None:
        return 2

    store = Store.from_url(args.redis_url)
    try:
        store.ping()
    except StoreError as e:
        logger.error(json.dumps({
            "event": "worker.fatal",
            "reason": "store_unavailable",
            "error": str(e)
        }))
        return 1

    try:
        if args.requeue_stale:
            return requeue_stale(store, identity)

        worker = Worker(
            store,
            identity,
            block_timeout=args.block_timeout,
            lease_ttl_ms=args.lease_ttl_ms,
            retry_delay=args.retry_delay,
        )
        signal.signal(signal.SIGTERM, lambda signum, frame: worker.stop())
        signal.signal(signal.SIGINT, lambda signum, frame: worker.stop())
        worker.run()
        return 0
    except (IdentityClaimError, StoreError) as e:
        logger.error(json.dumps({
            "event": "worker.fatal",
            "worker_id": identity.name,
            "error": str(e)
        }))
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
