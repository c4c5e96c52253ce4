import os

from dotenv import load_dotenv

load_dotenv()

REDIS_URL = os.getenv("SIGVERIFY_REDIS_URL", "redis://127.0.0.1:6379/0")
REDIS_MAX_CONNECTIONS = int(os.getenv("SIGVERIFY_REDIS_MAX_CONNECTIONS", "50"))

API_HOST = os.getenv("SIGVERIFY_API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("SIGVERIFY_API_PORT", "8080"))

# Worker
WORKER_ID = os.getenv("SIGVERIFY_WORKER_ID")
BLOCK_TIMEOUT = float(os.getenv("SIGVERIFY_BLOCK_TIMEOUT", "1.0"))
LEASE_TTL_MS = int(os.getenv("SIGVERIFY_LEASE_TTL_MS", "30000"))
RETRY_DELAY = float(os.getenv("SIGVERIFY_RETRY_DELAY", "2.0"))

LOG_LEVEL = os.getenv("SIGVERIFY_LOG_LEVEL", "INFO").upper()

# Redis keys
QUEUE_KEY = "queue:verification_request"
POISON_KEY = "poison:verification_request"
ACCOUNT_PREFIX = "account:"
RECORD_PREFIX = "verification:"
STAGE_PREFIX = "stage:"
LEASE_PREFIX = "worker:"
