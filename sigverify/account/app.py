import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Response
from fastapi.responses import JSONResponse

from sigverify import config
from sigverify.account import admission
from sigverify.errors import NotFoundError, SigVerifyError, TransactionConflict
from sigverify.models import RegistrationRequest, SubmissionRequest
from sigverify.store import Store

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL, format='%(message)s')
logger = logging.getLogger(__name__)

# Shared, pooled store client
redis_store: Optional[Store] = None


def get_store() -> Store:
    if redis_store is None:
        raise HTTPException(status_code=503, detail={
            "error": "unavailable",
            "detail": "Store not initialised"
        })
    return redis_store


def _http_error(op: str, e: SigVerifyError) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail={"error": e.code, "detail": str(e)})
    if isinstance(e, TransactionConflict):
        return HTTPException(status_code=409, detail={"error": e.code, "detail": str(e)})
    logger.error(json.dumps({
        "event": "account_api.error",
        "op": op,
        "error": str(e)
    }))
    return HTTPException(status_code=500, detail={
        "error": "internal_error",
        "detail": f"Failed to {op}"
    })


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    global redis_store
    redis_store = Store.from_url(config.REDIS_URL, config.REDIS_MAX_CONNECTIONS)
    redis_store.ping()

    logger.info(json.dumps({
        "event": "account_api.start",
        "port": config.API_PORT
    }))

    yield

    # Shutdown
    redis_store.close()
    redis_store = None


app = FastAPI(title="Signature Verification Account Service", lifespan=lifespan)


@app.post("/accounts/{account_id}", status_code=202)
def register(account_id: str, request: RegistrationRequest, store: Store = Depends(get_store)):
    """Register or replace an account's public key"""
    try:
        admission.register(store, account_id, request.pub_key)
    except SigVerifyError as e:
        raise _http_error("register account", e)
    return Response(status_code=202)


@app.post("/accounts/{account_id}/sign/{transaction_id}", status_code=202)
def submit_verification(account_id: str, transaction_id: str, request: SubmissionRequest,
                        store: Store = Depends(get_store)):
    """Queue a signature for verification under the account's current key"""
    try:
        admission.submit_verification(
            store, account_id, transaction_id, request.payload, request.signature
        )
    except SigVerifyError as e:
        raise _http_error("submit verification", e)
    return Response(status_code=202)


@app.get("/accounts/{account_id}/sign/{transaction_id}", status_code=202)
def verification_status(account_id: str, transaction_id: str, store: Store = Depends(get_store)):
    try:
        record = admission.get_status(store, transaction_id)
    except SigVerifyError as e:
        raise _http_error("read verification status", e)
    return JSONResponse(
        status_code=202,
        content=record.model_dump(mode="json", by_alias=True, exclude_none=True)
    )


def main():
    import uvicorn
    uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)


if __name__ == "__main__":
    main()
