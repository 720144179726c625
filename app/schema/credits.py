"""SQLAlchemy models for credit balances and the append-only ledger."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class CreditAccount(Base):
  __tablename__ = "credit_accounts"
  __table_args__ = (CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),)

  owner_id: Mapped[str] = mapped_column(String, primary_key=True)
  balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class LedgerEntry(Base):
  __tablename__ = "ledger_entries"
  __table_args__ = (
    # One debit per job, enforced by the database as well as the service.
    Index("ux_ledger_entries_job_debit", "job_id", unique=True, postgresql_where=text("category = 'debit-for-job'")),
  )

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  delta: Mapped[int] = mapped_column(Integer, nullable=False)
  balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
  category: Mapped[str] = mapped_column(String, nullable=False)
  job_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
