"""Tests for the detection context loader."""

from datetime import datetime, timezone

import pytest

from issue_engine.detection.context import ContextLoader
from issue_engine.detection.exceptions import DataUnavailable

from conftest import AS_OF, StaticDataSource, at, payment_row, shift_row


class TestContextLoader:

    @pytest.mark.asyncio
    async def test_loads_every_collection(self, loader):
        context = await loader.load(as_of=AS_OF)

        assert context.as_of == AS_OF
        assert len(context.jobs) == 1
        assert len(context.shifts) == 3
        assert len(context.payments) == 1
        assert len(context.compliance_records) == 1
        assert context.missing == ()
        assert context.record_count == 6

    @pytest.mark.asyncio
    async def test_failed_collection_degrades_to_empty(self):
        source = StaticDataSource(
            shifts=[shift_row("s1", at(9), at(13))],
            payments=[payment_row("pay_1", days_old=3)],
            failing={"payments"},
        )

        context = await ContextLoader(source).load(as_of=AS_OF)

        assert context.payments == ()
        assert len(context.shifts) == 1
        assert context.missing == ("payments",)

    @pytest.mark.asyncio
    async def test_total_failure_raises(self):
        source = StaticDataSource(failing={"jobs", "shifts", "payments", "compliance_records"})

        with pytest.raises(DataUnavailable):
            await ContextLoader(source).load()

    @pytest.mark.asyncio
    async def test_naive_timestamps_are_treated_as_utc(self):
        naive = shift_row("s1", datetime(2026, 3, 3, 9), datetime(2026, 3, 3, 13))

        context = await ContextLoader(StaticDataSource(shifts=[naive])).load(as_of=datetime(2026, 3, 2))

        assert context.shifts[0].start_time.tzinfo == timezone.utc
        assert context.as_of == datetime(2026, 3, 2, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_defaults_as_of_to_now(self, loader):
        before = datetime.now(timezone.utc)

        context = await loader.load()

        assert context.as_of >= before
