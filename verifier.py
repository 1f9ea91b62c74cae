# verifier.py
"""
Snapshot claim verification.

Pattern: check signature header -> validate body -> snapshot height ->
deadline -> duplicate fast path -> on-chain balance -> signature on node ->
insert (unique constraint decides) -> schedule notification.

Each step either passes or ends the submission: ClaimRejected for anything
the client can fix, an OperationalFault for node/store trouble. Nothing is
retried.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

import errors
from chain.node_client import ChainClient
from claim_store import ClaimStore, Snapshot
from errors import ClaimRejected
from notifications import send_snapshot_verification_notification

logger = logging.getLogger(__name__)

MIN_CONFIRMATIONS = 1


class SnapshotClaimRequest(BaseModel):
    x42_address: str = Field(..., min_length=1)
    epix_address: str = Field(..., min_length=1)
    snapshot_balance: int = Field(..., ge=0, strict=True)


def signed_message(payload: Dict[str, Any]) -> str:
    """The exact text clients sign: compact JSON, keys in submitted order."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClaimVerifier:
    def __init__(
        self,
        chain: ChainClient,
        store: ClaimStore,
        *,
        snapshot_height: int,
        claim_deadline: Optional[datetime] = None,
        notifier: Callable[[str, str, int], Any] = send_snapshot_verification_notification,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.chain = chain
        self.store = store
        self.snapshot_height = snapshot_height
        self.claim_deadline = claim_deadline
        self.notifier = notifier
        self.now = now

    def verify_raw(
        self,
        body: bytes,
        signature: Optional[str],
        schedule: Optional[Callable[..., Any]] = None,
    ) -> Snapshot:
        """verify() for an undecoded request body; bad JSON is a rejection, not a 422."""
        if not signature:
            raise ClaimRejected(errors.SIGNATURE_REQUIRED, "Signature is required")
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as e:
            raise ClaimRejected(errors.INVALID_PAYLOAD, "Request body is not valid JSON") from e
        return self.verify(payload, signature, schedule)

    def verify(
        self,
        payload: Any,
        signature: Optional[str],
        schedule: Optional[Callable[..., Any]] = None,
    ) -> Snapshot:
        """
        Run one submission through every check and store it.

        `schedule(fn, *args)` queues the notification so it runs outside the
        request; FastAPI's BackgroundTasks.add_task fits. Without it no
        notification is sent.
        """
        if not signature:
            raise ClaimRejected(errors.SIGNATURE_REQUIRED, "Signature is required")

        if not isinstance(payload, dict):
            raise ClaimRejected(errors.INVALID_PAYLOAD, "Request body must be a JSON object")
        try:
            req = SnapshotClaimRequest.model_validate(payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            raise ClaimRejected(errors.INVALID_PAYLOAD, f"Invalid fields: {fields}") from e

        self._check_height()
        self._check_deadline()

        if self.store.find_by_source_address(req.x42_address) is not None:
            raise errors.DuplicateClaimError(req.x42_address)

        self._check_balance(req.x42_address, req.snapshot_balance)
        self._check_signature(req.x42_address, payload, signature)

        claim = self.store.insert(
            x42_address=req.x42_address,
            epix_address=req.epix_address,
            snapshot_balance=req.snapshot_balance,
            signature=signature,
            raw_json=payload,
        )
        logger.info(
            "Verified snapshot claim %s -> %s balance=%d",
            req.x42_address, req.epix_address, req.snapshot_balance,
        )

        if schedule is not None:
            schedule(self._notify, req.x42_address, req.epix_address, req.snapshot_balance)
        return claim

    # ────────────────────────────────────────────────────────
    # Checks
    # ────────────────────────────────────────────────────────

    def _check_height(self):
        tip_height = self.chain.get_tip_height()
        if tip_height != self.snapshot_height:
            logger.info("Rejecting claim: indexer tip %d != snapshot %d", tip_height, self.snapshot_height)
            raise ClaimRejected(
                errors.WRONG_BLOCK_HEIGHT,
                f"Block height must be at {self.snapshot_height:,} blocks",
            )

    def _check_deadline(self):
        if self.claim_deadline is not None and self.now() > self.claim_deadline:
            raise ClaimRejected(
                errors.CLAIM_PERIOD_ENDED,
                f"Claim period ended at {self.claim_deadline.isoformat()}",
            )

    def _check_balance(self, x42_address: str, claimed: int):
        balance = self.chain.get_balance(x42_address, MIN_CONFIRMATIONS)
        if balance is None or balance != claimed:
            logger.info("Balance mismatch for %s: claimed=%d node=%s", x42_address, claimed, balance)
            raise ClaimRejected(errors.BALANCE_MISMATCH, "Balance verification failed")

    def _check_signature(self, x42_address: str, payload: Dict[str, Any], signature: str):
        if not self.chain.verify_signature(x42_address, signed_message(payload), signature):
            raise ClaimRejected(errors.SIGNATURE_VERIFICATION_FAILED, "Signature verification failed")

    def _notify(self, x42_address: str, epix_address: str, snapshot_balance: int):
        try:
            self.notifier(x42_address, epix_address, snapshot_balance)
        except Exception:
            logger.exception("Claim notification failed for %s", x42_address)
