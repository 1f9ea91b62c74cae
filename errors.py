"""
Error kinds raised by the claim pipeline.

ValidationRejection (ClaimRejected) is client-correctable and carries a
machine-readable reason. OperationalFault covers chain-node and storage
failures; the client only ever sees a generic message for those.
"""
from __future__ import annotations

from typing import Optional


class SnapshotClaimError(Exception):
    """Base class for every error raised by this service."""


# ────────────────────────────────────────────────────────────
# Validation rejections (HTTP 400)
# ────────────────────────────────────────────────────────────

SIGNATURE_REQUIRED = "signature_required"
INVALID_PAYLOAD = "invalid_payload"
WRONG_BLOCK_HEIGHT = "wrong_block_height"
CLAIM_PERIOD_ENDED = "claim_period_ended"
DUPLICATE_ADDRESS = "duplicate_address"
BALANCE_MISMATCH = "balance_mismatch"
SIGNATURE_VERIFICATION_FAILED = "signature_verification_failed"


class ClaimRejected(SnapshotClaimError):
    def __init__(self, reason: str, message: str):
        self.reason = reason
        self.message = message
        super().__init__(f"{reason}: {message}")


class DuplicateClaimError(ClaimRejected):
    def __init__(self, x42_address: str):
        self.x42_address = x42_address
        super().__init__(
            DUPLICATE_ADDRESS,
            "Duplicate address. Snapshot was already verified.",
        )


# ────────────────────────────────────────────────────────────
# Operational faults (HTTP 500)
# ────────────────────────────────────────────────────────────

class OperationalFault(SnapshotClaimError):
    """Internal failure; never the client's fault, never retried."""


class ChainUnavailable(OperationalFault):
    def __init__(self, operation: str, detail: str, status_code: Optional[int] = None):
        self.operation = operation
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"chain node {operation} failed: {detail}")


class StoreError(OperationalFault):
    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"claim store {operation} failed: {detail}")


class RedistributionConsistencyError(OperationalFault):
    def __init__(self, message: str, target_cap_units: int, total_final_units: int):
        self.target_cap_units = target_cap_units
        self.total_final_units = total_final_units
        super().__init__(message)
