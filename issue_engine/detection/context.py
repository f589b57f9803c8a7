"""
Context Loader

Builds the read-only DetectionContext for one pass. A collection that
cannot be read degrades to empty; only a total read failure aborts the pass.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from issue_engine.data.models import ComplianceRecord, Job, Payment, Shift
from .exceptions import DataUnavailable
from .types import (
    ComplianceSnapshot,
    DetectionContext,
    JobSnapshot,
    PaymentSnapshot,
    ShiftSnapshot,
    as_utc,
)

logger = logging.getLogger(__name__)


class OperationalDataSource(Protocol):
    """Read access to the operational entities the detectors inspect."""

    async def get_jobs(self) -> Sequence[Any]: ...

    async def get_shifts(self) -> Sequence[Any]: ...

    async def get_payments(self) -> Sequence[Any]: ...

    async def get_compliance_records(self) -> Sequence[Any]: ...


class SQLAlchemyDataSource:
    """OperationalDataSource reading the platform tables, one session per read."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _all(self, model) -> List[Any]:
        async with self.session_factory() as db:  # type: AsyncSession
            result = await db.execute(select(model))
            return list(result.scalars().all())

    async def get_jobs(self) -> List[Job]:
        return await self._all(Job)

    async def get_shifts(self) -> List[Shift]:
        return await self._all(Shift)

    async def get_payments(self) -> List[Payment]:
        return await self._all(Payment)

    async def get_compliance_records(self) -> List[ComplianceRecord]:
        return await self._all(ComplianceRecord)


class ContextLoader:
    """Loads a DetectionContext snapshot from an OperationalDataSource."""

    def __init__(self, source: OperationalDataSource):
        self.source = source

    async def load(self, as_of: Optional[datetime] = None) -> DetectionContext:
        """
        Snapshot every collection.

        Raises:
            DataUnavailable: if no collection could be read at all
        """
        as_of = as_utc(as_of) or datetime.now(timezone.utc)
        missing = []

        async def read(name: str, fetch: Callable[[], Awaitable[Sequence[Any]]], snapshot) -> tuple:
            try:
                rows = await fetch()
                return tuple(snapshot.from_row(row) for row in rows)
            except Exception as e:
                logger.warning(f"Could not load {name} for detection context: {e}")
                missing.append(name)
                return ()

        jobs = await read("jobs", self.source.get_jobs, JobSnapshot)
        shifts = await read("shifts", self.source.get_shifts, ShiftSnapshot)
        payments = await read("payments", self.source.get_payments, PaymentSnapshot)
        compliance = await read(
            "compliance_records", self.source.get_compliance_records, ComplianceSnapshot
        )

        if len(missing) == 4:
            raise DataUnavailable("Detection context could not be loaded: all collections failed")

        context = DetectionContext(
            as_of=as_of,
            jobs=jobs,
            shifts=shifts,
            payments=payments,
            compliance_records=compliance,
            missing=tuple(missing),
        )
        logger.debug(
            f"Loaded detection context: {len(jobs)} jobs, {len(shifts)} shifts, "
            f"{len(payments)} payments, {len(compliance)} compliance records"
        )
        return context
