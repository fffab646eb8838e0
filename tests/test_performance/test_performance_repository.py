"""Tests for PerformanceRepository."""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.performance.repository import PerformanceRepository
from src.performance.schemas import PageSpeedResult, PerfSnapshot

DAY = date(2026, 3, 2)


def _snapshot_row(device: str, hour: int, score: int, lcp: float | None, field_lcp=None) -> dict:
    return {
        "id": f"{device}-{hour}",
        "site_id": "site-1",
        "url": "https://example.com",
        "device": device,
        "perf_score": score,
        "lcp_ms": lcp,
        "inp_ms": None,
        "cls": 0.05,
        "ttfb_ms": 300.0,
        "fcp_ms": 1200.0,
        "speed_index_ms": 2000.0,
        "field_lcp_p75": field_lcp,
        "field_inp_p75": None,
        "field_cls_p75": None,
        "lighthouse_version": "12.0.0",
        "taken_at": datetime(2026, 3, 2, hour, tzinfo=timezone.utc),
    }


def _transaction(mock_db) -> AsyncMock:
    conn = AsyncMock()
    ctx = MagicMock()
    ctx.__aenter__.return_value = conn
    ctx.__aexit__.return_value = False
    mock_db.transaction = MagicMock(return_value=ctx)
    return conn


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_insert_snapshot_keeps_missing_metrics_null(self, mock_db):
        snapshot = PerfSnapshot(
            site_id="site-1",
            result=PageSpeedResult(url="https://example.com", strategy="MOBILE", score=70),
        )

        await PerformanceRepository(mock_db).insert_snapshot(snapshot)

        sql, *args = mock_db.execute.call_args.args
        assert "ON CONFLICT (id) DO NOTHING" in sql
        assert args[3] == "MOBILE"
        assert args[4] == 70
        assert args[5:14] == [None] * 9

    @pytest.mark.asyncio
    async def test_snapshots_for_day_uses_utc_bounds(self, mock_db):
        mock_db.fetch.return_value = [_snapshot_row("MOBILE", 9, 80, 2100.0)]

        snapshots = await PerformanceRepository(mock_db).snapshots_for_day(
            "site-1", DAY, "MOBILE"
        )

        assert snapshots[0].device == "MOBILE"
        assert snapshots[0].result.lcp_ms == 2100.0
        _, site_id, device, start, end = mock_db.fetch.call_args.args
        assert (site_id, device) == ("site-1", "MOBILE")
        assert start == datetime(2026, 3, 2, tzinfo=timezone.utc)
        assert end == datetime(2026, 3, 3, tzinfo=timezone.utc)


class TestUpsertDaily:
    @pytest.mark.asyncio
    async def test_writes_device_and_all_rows(self, mock_db):
        mock_db.fetch.return_value = [
            _snapshot_row("DESKTOP", 10, 95, 1200.0),
            _snapshot_row("MOBILE", 9, 70, 3100.0, field_lcp=2800.0),
        ]
        conn = _transaction(mock_db)

        points = await PerformanceRepository(mock_db).upsert_daily("site-1", DAY, "MOBILE")

        mobile, combined = points
        assert mobile.device == "MOBILE"
        assert mobile.lcp_pctl == 2800.0
        assert mobile.perf_score_avg == 70
        assert mobile.pages_measured == 1
        assert combined.device == "ALL"
        assert combined.pages_measured == 2
        assert combined.perf_score_avg == round((95 + 70) / 2)
        assert conn.execute.await_count == 2
        assert [c.args[3] for c in conn.execute.call_args_list] == ["MOBILE", "ALL"]


class TestReads:
    @pytest.mark.asyncio
    async def test_latest_snapshot_at_for_any_device(self, mock_db):
        mock_db.fetchval.return_value = None

        assert await PerformanceRepository(mock_db).latest_snapshot_at("site-1", None) is None
        assert mock_db.fetchval.call_args.args[1:] == ("site-1",)

    @pytest.mark.asyncio
    async def test_series_grouped_per_site(self, mock_db):
        mock_db.fetch.return_value = [
            {
                "site_id": "site-1",
                "date": DAY,
                "device": "MOBILE",
                "perf_score_avg": 80.0,
                "lcp_pctl": 2400.0,
                "inp_pctl": None,
                "cls_pctl": 0.02,
                "pages_measured": 1,
            }
        ]

        series = await PerformanceRepository(mock_db).get_series_for_sites(
            ["site-1", "site-2"], date(2026, 2, 20)
        )

        assert len(series["site-1"]) == 1
        assert series["site-1"][0].lcp_pctl == 2400.0
        assert series["site-2"] == []

    @pytest.mark.asyncio
    async def test_series_empty_ids(self, mock_db):
        assert await PerformanceRepository(mock_db).get_series_for_sites([], DAY) == {}
        mock_db.fetch.assert_not_called()
