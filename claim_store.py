"""
Durable table of verified snapshot claims.

One row per x42 source address, ever. The UNIQUE constraint on x42_address is
what enforces that; find_by_source_address() is only a fast path for callers
that want to reject early.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import BigInteger, DateTime, Integer, JSON, String, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Mapped, Session, mapped_column

from db import Base
from errors import DuplicateClaimError, StoreError

logger = logging.getLogger(__name__)


class Snapshot(Base):
    __tablename__ = "snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    raw_json: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    signature: Mapped[str] = mapped_column(String, nullable=False)
    x42_address: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    epix_address: Mapped[str] = mapped_column(String, nullable=False, index=True)
    snapshot_balance: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Snapshot {self.x42_address} -> {self.epix_address} {self.snapshot_balance}>"


@dataclass(frozen=True)
class ClaimRecord:
    """Detached, read-only copy of a stored claim."""
    x42_address: str
    epix_address: str
    snapshot_balance: int
    signature: str
    raw_json: Dict[str, Any]


_ORDERINGS = {
    "newest": (Snapshot.id.desc(),),
    "oldest": (Snapshot.id.asc(),),
    "destination": (Snapshot.epix_address.asc(), Snapshot.x42_address.asc()),
}


class ClaimStore:
    def __init__(self, session: Session):
        self.session = session

    def _fault(self, operation: str, error: Exception) -> StoreError:
        logger.error("claim store %s failed: %s", operation, error, exc_info=True)
        self.session.rollback()
        return StoreError(operation, str(error))

    def find_by_source_address(self, x42_address: str) -> Optional[Snapshot]:
        try:
            return self.session.execute(
                select(Snapshot).where(Snapshot.x42_address == x42_address)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._fault("find_by_source_address", e)

    def insert(
        self,
        *,
        x42_address: str,
        epix_address: str,
        snapshot_balance: int,
        signature: str,
        raw_json: Dict[str, Any],
    ) -> Snapshot:
        row = Snapshot(
            x42_address=x42_address,
            epix_address=epix_address,
            snapshot_balance=snapshot_balance,
            signature=signature,
            raw_json=raw_json,
        )
        try:
            self.session.add(row)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            logger.info("Rejected duplicate insert for %s: %s", x42_address, e.orig)
            raise DuplicateClaimError(x42_address) from e
        except SQLAlchemyError as e:
            raise self._fault("insert", e)
        self.session.refresh(row)
        return row

    def list_all(
        self,
        order_by: str = "newest",
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Snapshot]:
        if order_by not in _ORDERINGS:
            raise ValueError(f"unknown ordering: {order_by}")
        stmt = select(Snapshot).order_by(*_ORDERINGS[order_by])
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            return list(self.session.execute(stmt).scalars())
        except SQLAlchemyError as e:
            raise self._fault("list_all", e)

    def sum_balances(self) -> int:
        try:
            total = self.session.execute(
                select(func.coalesce(func.sum(Snapshot.snapshot_balance), 0))
            ).scalar_one()
        except SQLAlchemyError as e:
            raise self._fault("sum_balances", e)
        return int(total)

    def count(self) -> int:
        try:
            return int(self.session.execute(select(func.count(Snapshot.id))).scalar_one())
        except SQLAlchemyError as e:
            raise self._fault("count", e)

    def load_for_redistribution(self) -> List[ClaimRecord]:
        """Whole claim set from a single SELECT, so it reflects one point in time."""
        stmt = select(
            Snapshot.x42_address,
            Snapshot.epix_address,
            Snapshot.snapshot_balance,
            Snapshot.signature,
            Snapshot.raw_json,
        ).order_by(*_ORDERINGS["destination"])
        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError as e:
            raise self._fault("load_for_redistribution", e)
        return [
            ClaimRecord(
                x42_address=r.x42_address,
                epix_address=r.epix_address,
                snapshot_balance=int(r.snapshot_balance),
                signature=r.signature,
                raw_json=r.raw_json,
            )
            for r in rows
        ]
