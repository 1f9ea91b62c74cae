# main.py
import logging
from contextlib import asynccontextmanager
from typing import Iterator, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from config import (
    CAP_RATIO,
    CHAIN_HTTP_TIMEOUT,
    CLAIM_DEADLINE,
    DATABASE_URL,
    NODE_HOST,
    PORT,
    PUBLIC_BASE_URL,
    SNAPSHOT_BLOCK_HEIGHT,
    TOTAL_SUPPLY,
    UNIT_SCALE,
)
from chain.node_client import ChainClient
from claim_store import ClaimStore
from db import get_db, init_db
from errors import ClaimRejected, OperationalFault
from redistribution import compute_redistribution, format_units
from verifier import ClaimVerifier, SnapshotClaimRequest
from views.csv_export import compact_csv, detailed_csv

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@asynccontextmanager
async def lifespan(app):
    if DATABASE_URL:
        init_db()
        logger.info("Snapshot tables ready")
    else:
        logger.warning("DATABASE_URL not set; skipping table creation")
    yield


app = FastAPI(
    title="Snapshot Verification API",
    version="1.0.0",
    description="API for verifying and storing snapshot information",
    docs_url="/api-docs",
    servers=[{"url": PUBLIC_BASE_URL}] if PUBLIC_BASE_URL else None,
    lifespan=lifespan,
)


@app.exception_handler(ClaimRejected)
async def claim_rejected_handler(request: Request, exc: ClaimRejected):
    return JSONResponse(status_code=400, content={"error": exc.message, "reason": exc.reason})


@app.exception_handler(OperationalFault)
async def operational_fault_handler(request: Request, exc: OperationalFault):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ────────────────────────────────────────────────────────────
# Dependencies
# ────────────────────────────────────────────────────────────

def get_chain_client() -> Iterator[ChainClient]:
    # one client (and requests.Session) per request; sessions are not shared across threads
    client = ChainClient(NODE_HOST, timeout=CHAIN_HTTP_TIMEOUT)
    try:
        yield client
    finally:
        client.close()


def get_store(db: Session = Depends(get_db)) -> ClaimStore:
    return ClaimStore(db)


def get_verifier(
    chain: ChainClient = Depends(get_chain_client),
    store: ClaimStore = Depends(get_store),
) -> ClaimVerifier:
    return ClaimVerifier(
        chain,
        store,
        snapshot_height=SNAPSHOT_BLOCK_HEIGHT,
        claim_deadline=CLAIM_DEADLINE,
    )


def _parse_positive_int(value: Optional[str], default: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


def _redistribute(store: ClaimStore):
    claims = store.load_for_redistribution()
    result = compute_redistribution(claims, TOTAL_SUPPLY, CAP_RATIO, UNIT_SCALE)
    return claims, result


# ────────────────────────────────────────────────────────────
# Routes
# ────────────────────────────────────────────────────────────

@app.get("/healthz")
def healthz():
    return {"ok": "true"}


@app.get("/check-balance")
def check_balance(
    address: Optional[str] = Query(None),
    chain: ChainClient = Depends(get_chain_client),
):
    """Indexed balance (base units, 1 confirmation) of an x42 address."""
    if not address:
        raise HTTPException(400, "Address is required")
    balance = chain.get_balance(address, 1)
    if balance is None:
        raise HTTPException(400, "Unable to retrieve balance for the given address")
    return {"balance": balance}


@app.post(
    "/verify-snapshot",
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": SnapshotClaimRequest.model_json_schema()}},
        }
    },
)
async def verify_snapshot(
    request: Request,
    background_tasks: BackgroundTasks,
    signature: Optional[str] = Header(None),
    verifier: ClaimVerifier = Depends(get_verifier),
):
    """
    Verify and store a snapshot claim.

    Body: {x42_address, epix_address, snapshot_balance}; header `signature`
    signs the body as compact JSON. 400 responses carry a `reason` code.
    The body is read raw so that undecodable JSON is a 400, not a 422.
    """
    body = await request.body()
    await run_in_threadpool(verifier.verify_raw, body, signature, background_tasks.add_task)
    return {"message": "Snapshot verified and stored successfully"}


@app.get("/verify-address")
def verify_address(
    address: Optional[str] = Query(None),
    chain: ChainClient = Depends(get_chain_client),
):
    if not address:
        raise HTTPException(400, "Address is required")
    v = chain.validate_address(address)
    return {"isvalid": v.is_valid, "iswitness": v.is_witness}


@app.get("/total-claimed")
def total_claimed(store: ClaimStore = Depends(get_store)):
    return {
        "total_claimed": store.sum_balances(),
        "total_claims": store.count(),
    }


@app.get("/claims")
def list_claims(
    page: Optional[str] = Query(None),
    pageSize: Optional[str] = Query(None),
    store: ClaimStore = Depends(get_store),
):
    """Raw JSON and signature of stored claims, newest first."""
    page_n = _parse_positive_int(page, 1)
    size = min(_parse_positive_int(pageSize, DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
    rows = store.list_all("newest", offset=(page_n - 1) * size, limit=size)
    return [{"raw_json": r.raw_json, "signature": r.signature} for r in rows]


@app.get("/get-blockheight")
def get_blockheight(chain: ChainClient = Depends(get_chain_client)):
    tip = chain.get_tip()
    return {"tipHash": tip.tip_hash, "tipHeight": tip.tip_height}


@app.get("/redistribution")
def redistribution_summary(store: ClaimStore = Depends(get_store)):
    _, result = _redistribute(store)
    return {
        "target_cap": format_units(result.target_cap_units, result.scale),
        "total_original": format_units(result.total_original_units, result.scale),
        "total_final": format_units(result.total_final_units, result.scale),
        "multiplier": format_units(result.multiplier, result.scale),
        "deduction_percentage": result.deduction_percentage,
        "destinations": len(result.destinations),
        "warnings": result.warnings,
    }


@app.get("/download-csv")
def download_csv(
    detailed: Optional[str] = Query(None),
    store: ClaimStore = Depends(get_store),
):
    claims, result = _redistribute(store)
    if detailed and detailed.lower() in ("1", "true", "yes"):
        body = detailed_csv(result, claims)
        filename = "snapshots_detailed.csv"
    else:
        body = compact_csv(result)
        filename = "snapshots.csv"
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PORT)
