"""
Operational data models.

Jobs, shifts, payments and compliance records are owned by the rest of the
workforce platform. The detection engine only reads them to build its
per-pass snapshot.
"""
from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey, Text
from sqlalchemy.sql import func

from issue_engine.database import Base
from issue_engine.data.base import generate_id


class Job(Base):
    """Job posting - a role the business is trying to fill."""

    __tablename__ = "jobs"

    id = Column(String, primary_key=True, default=lambda: generate_id("job"))
    title = Column(String, nullable=False)
    status = Column(String, nullable=False, default="draft", index=True)
    # Options: "draft", "active", "filled", "closed"
    job_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Shift(Base):
    """Shift - a scheduled block of work, optionally assigned to a worker."""

    __tablename__ = "shifts"

    id = Column(String, primary_key=True, default=lambda: generate_id("shift"))
    job_id = Column(String, ForeignKey("jobs.id", ondelete="SET NULL"), nullable=True, index=True)
    worker_id = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    status = Column(String, nullable=False, default="draft", index=True)
    # Options: "draft", "published", "in_progress", "completed", "cancelled"
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Payment(Base):
    """Payment owed to a worker."""

    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: generate_id("pay"))
    worker_id = Column(String, nullable=True, index=True)
    amount = Column(Numeric(precision=15, scale=2), nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    # Options: "pending", "processing", "paid", "failed"
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class ComplianceRecord(Base):
    """Compliance report - regulatory or social compliance status for a requirement."""

    __tablename__ = "compliance_records"

    id = Column(String, primary_key=True, default=lambda: generate_id("comp"))
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    report_type = Column(String, nullable=True)
    compliance_status = Column(String, nullable=False, default="compliant", index=True)
    # Options: "compliant", "at_risk", "non_compliant", "pending_review"
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
