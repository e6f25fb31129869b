"""Persistence layer for loans and their payment plans.

The store keeps the current loan snapshot and the plan last generated from it
as JSON documents. It defaults to SQLite for local development, but accepts
any SQLAlchemy-compatible URL (e.g. PostgreSQL/MySQL).

Recompute triggers (rate review, bonification status change, prepayment)
must be serialized per loan: callers wrap the read, compute and replace
sequence in ``with store.locked(loan_id):``.
"""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import Column, DateTime, String, Text, create_engine, select
from sqlalchemy.orm import declarative_base, sessionmaker

from loan_engine.data_models import Loan, PaymentPlan
from loan_engine.exceptions import LoanNotFoundError
from loan_engine.logging import get_logger
from loan_engine.serialization import loan_from_dict, loan_to_dict, plan_from_dict, plan_to_dict

logger = get_logger(__name__)

Base = declarative_base()


class LoanModel(Base):
    __tablename__ = "loans"

    id = Column(String(64), primary_key=True)
    property_id = Column(String(64), index=True, nullable=True)
    name = Column(String(255), nullable=False)
    loan_json = Column(Text, nullable=False)
    plan_json = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class LoanStore:
    """Database-backed loan store."""

    def __init__(self, url: str) -> None:
        self._engine = create_engine(url, future=True)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def locked(self, loan_id: str) -> Iterator[None]:
        """Hold the per-loan lock for the duration of the block."""
        with self._locks_guard:
            lock = self._locks.setdefault(loan_id, threading.Lock())
        with lock:
            yield

    def get(self, loan_id: str) -> Loan:
        with self._session_factory() as session:
            row = session.get(LoanModel, loan_id)
            if row is None:
                raise LoanNotFoundError(f"Loan {loan_id} not found")
            return loan_from_dict(json.loads(row.loan_json))

    def get_plan(self, loan_id: str) -> Optional[PaymentPlan]:
        """The plan stored with the loan, or ``None`` if none was stored."""
        with self._session_factory() as session:
            row = session.get(LoanModel, loan_id)
            if row is None:
                raise LoanNotFoundError(f"Loan {loan_id} not found")
            if not row.plan_json:
                return None
            return plan_from_dict(json.loads(row.plan_json))

    def put(self, loan: Loan, plan: Optional[PaymentPlan] = None) -> None:
        """Insert or replace ``loan`` together with its current plan."""
        loan_json = json.dumps(loan_to_dict(loan))
        plan_json = json.dumps(plan_to_dict(plan)) if plan is not None else None
        with self._session_factory() as session:
            row = session.get(LoanModel, loan.id)
            if row is None:
                row = LoanModel(id=loan.id)
                session.add(row)
            row.property_id = loan.property_id
            row.name = loan.name
            row.loan_json = loan_json
            row.plan_json = plan_json
            row.updated_at = datetime.utcnow()
            session.commit()
        logger.info("Stored loan %s", loan.id, extra={"loan_id": loan.id})

    def delete(self, loan_id: str) -> None:
        with self._session_factory() as session:
            row = session.get(LoanModel, loan_id)
            if row is None:
                raise LoanNotFoundError(f"Loan {loan_id} not found")
            session.delete(row)
            session.commit()
        with self._locks_guard:
            self._locks.pop(loan_id, None)
        logger.info("Deleted loan %s", loan_id, extra={"loan_id": loan_id})

    def list_loans(self, property_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Stored loans as short listings, optionally for one property."""
        with self._session_factory() as session:
            query = select(LoanModel).order_by(LoanModel.id.asc())
            if property_id:
                query = query.where(LoanModel.property_id == property_id)
            rows: Iterable[LoanModel] = session.execute(query).scalars()
            return [self._to_dict(row) for row in rows]

    @staticmethod
    def _to_dict(row: LoanModel) -> Dict[str, Any]:
        return {
            "id": row.id,
            "name": row.name,
            "property_id": row.property_id,
            "has_plan": bool(row.plan_json),
            "updated_at": row.updated_at.isoformat(),
        }


def create_store_from_env(url: Optional[str]) -> LoanStore:
    return LoanStore(url or "sqlite:///loan_engine.sqlite3")
