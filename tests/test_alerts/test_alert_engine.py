"""Tests for the alert evaluation cycle and event lifecycle."""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.alerts.schemas import AlertEvent, AlertRule
from src.alerts.service import DUPLICATE_RULE, OPEN_RECENT, AlertEngine, format_value
from src.notifications.schemas import DispatchResult

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
D = date(2026, 3, 2)
D_1 = date(2026, 3, 1)


class FakeAlertRepository:
    """In-memory alert store honoring the one-open-event-per-day constraint."""

    def __init__(self, rules):
        self.rules = rules
        self.events: list[AlertEvent] = []

    async def list_enabled_rules(self):
        return [r for r in self.rules if r.enabled]

    async def find_open_on_date(self, site_id, metric, device, day):
        for e in self.events:
            if (e.site_id, e.metric, e.device, e.date, e.status) == (
                site_id, metric, device, day, "OPEN"
            ):
                return e
        return None

    async def list_open(self, site_id, metric, device):
        return [
            e for e in self.events
            if (e.site_id, e.metric, e.device, e.status) == (site_id, metric, device, "OPEN")
        ]

    async def create_event(self, event):
        if await self.find_open_on_date(event.site_id, event.metric, event.device, event.date):
            return False
        self.events.append(event)
        return True

    async def resolve_events(self, ids, resolved_at):
        count = 0
        for e in self.events:
            if e.id in ids and e.status == "OPEN":
                e.status = "RESOLVED"
                e.resolved_at = resolved_at
                count += 1
        return count


def _rule(rule_id="r1", metric="LCP", threshold=2500.0, device="MOBILE", **kwargs):
    defaults = {
        "site_id": "site-1",
        "organization_id": "org-1",
        "site_name": "Example",
        "site_url": "https://example.com",
    }
    return AlertRule(
        id=rule_id, metric=metric, threshold=threshold, device=device, **{**defaults, **kwargs}
    )


def _performance(series_by_site):
    perf = MagicMock()
    perf.get_series_for_sites = AsyncMock(return_value=series_by_site)
    return perf


def _dispatcher(result=None):
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value=result or DispatchResult(total=1, failed=0))
    return dispatcher


class TestViolation:

    @pytest.mark.asyncio
    async def test_creates_event_and_notifies(self, make_point):
        repo = FakeAlertRepository([_rule()])
        series = {"site-1": [make_point(D_1, lcp=2400), make_point(D, lcp=2700)]}
        dispatcher = _dispatcher()
        engine = AlertEngine(repo, _performance(series), dispatcher)

        summary = await engine.run_cycle(now=NOW)

        assert summary.created == 1
        assert len(repo.events) == 1
        event = repo.events[0]
        assert (event.date, event.value, event.status) == (D, 2700, "OPEN")
        assert summary.outcomes[0].event_id == event.id

        dispatcher.dispatch.assert_awaited_once()
        org_id, payload = dispatcher.dispatch.await_args.args
        assert org_id == "org-1"
        assert payload.event == "alert"
        assert payload.title == "Largest Contentful Paint alert: Example"
        assert payload.severity == "warning"
        assert payload.url == "https://app.sitepulse.io/sites/site-1/alerts"
        assert summary.notifications == DispatchResult(total=1, failed=0)

    @pytest.mark.asyncio
    async def test_same_day_rerun_is_debounced(self, make_point):
        repo = FakeAlertRepository([_rule()])
        series = {"site-1": [make_point(D, lcp=2700)]}
        dispatcher = _dispatcher()
        engine = AlertEngine(repo, _performance(series), dispatcher)

        await engine.run_cycle(now=NOW)
        summary = await engine.run_cycle(now=NOW)

        assert summary.created == 0
        assert summary.outcomes[0].action == "skipped"
        assert summary.outcomes[0].reason == OPEN_RECENT
        assert len(repo.events) == 1
        assert dispatcher.dispatch.await_count == 1

    @pytest.mark.asyncio
    async def test_lost_insert_race_is_skipped(self, make_point):
        repo = FakeAlertRepository([_rule()])
        repo.create_event = AsyncMock(return_value=False)
        dispatcher = _dispatcher()
        engine = AlertEngine(repo, _performance({"site-1": [make_point(D, lcp=2700)]}), dispatcher)

        summary = await engine.run_cycle(now=NOW)

        assert summary.outcomes[0].reason == OPEN_RECENT
        dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_rule_for_same_tuple(self, make_point):
        repo = FakeAlertRepository([_rule("r1"), _rule("r2", threshold=2000.0)])
        engine = AlertEngine(repo, _performance({"site-1": [make_point(D, lcp=2700)]}))

        summary = await engine.run_cycle(now=NOW)

        assert [o.action for o in summary.outcomes] == ["created", "skipped"]
        assert summary.outcomes[1].reason == DUPLICATE_RULE
        assert len(repo.events) == 1


class TestResolution:

    @pytest.mark.asyncio
    async def test_clean_later_day_resolves(self, make_point):
        repo = FakeAlertRepository([_rule()])
        repo.events.append(
            AlertEvent(rule_id="r1", site_id="site-1", metric="LCP", device="MOBILE", date=D_1, value=2700)
        )
        engine = AlertEngine(repo, _performance({"site-1": [make_point(D, lcp=2000)]}))

        summary = await engine.run_cycle(now=NOW)

        assert summary.outcomes[0].action == "resolved"
        assert summary.resolved == 1
        assert repo.events[0].status == "RESOLVED"
        assert repo.events[0].resolved_at == NOW

    @pytest.mark.asyncio
    async def test_same_day_recovery_does_not_resolve(self, make_point):
        repo = FakeAlertRepository([_rule()])
        repo.events.append(
            AlertEvent(rule_id="r1", site_id="site-1", metric="LCP", device="MOBILE", date=D, value=2700)
        )
        engine = AlertEngine(repo, _performance({"site-1": [make_point(D, lcp=2000)]}))

        summary = await engine.run_cycle(now=NOW)

        assert summary.outcomes[0].action == "none"
        assert repo.events[0].status == "OPEN"

    @pytest.mark.asyncio
    async def test_missing_data_leaves_events_open(self, make_point):
        repo = FakeAlertRepository([_rule()])
        repo.events.append(
            AlertEvent(rule_id="r1", site_id="site-1", metric="LCP", device="MOBILE", date=D_1, value=2700)
        )
        engine = AlertEngine(repo, _performance({}))

        summary = await engine.run_cycle(now=NOW)

        assert summary.outcomes[0].action == "none"
        assert summary.outcomes[0].reason == "no-latest"
        assert repo.events[0].status == "OPEN"

    @pytest.mark.asyncio
    async def test_null_metric_on_later_day_leaves_event_open(self, make_point):
        repo = FakeAlertRepository([_rule()])
        engine = AlertEngine(repo, _performance({"site-1": [make_point(D_1, lcp=2700)]}))
        await engine.run_cycle(now=NOW)
        assert repo.events[0].status == "OPEN"

        engine = AlertEngine(
            repo,
            _performance({"site-1": [make_point(D_1, lcp=2700), make_point(D, lcp=None, score=80)]}),
        )
        summary = await engine.run_cycle(now=NOW)

        assert summary.outcomes[0].action == "none"
        assert summary.outcomes[0].reason == "no-lcp"
        assert summary.resolved == 0
        assert repo.events[0].status == "OPEN"

    @pytest.mark.asyncio
    async def test_score_drop_without_baseline_leaves_event_open(self, make_point):
        repo = FakeAlertRepository([_rule(metric="SCORE_DROP", threshold=10.0)])
        repo.events.append(
            AlertEvent(
                rule_id="r1", site_id="site-1", metric="SCORE_DROP", device="MOBILE", date=D_1, value=20
            )
        )
        engine = AlertEngine(repo, _performance({"site-1": [make_point(D, score=70)]}))

        summary = await engine.run_cycle(now=NOW)

        assert summary.outcomes[0].reason == "no-prev"
        assert repo.events[0].status == "OPEN"


class TestCycle:

    @pytest.mark.asyncio
    async def test_no_rules(self):
        perf = _performance({})
        engine = AlertEngine(FakeAlertRepository([]), perf)

        summary = await engine.run_cycle(now=NOW)

        assert summary.outcomes == []
        perf.get_series_for_sites.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_points_outside_window_are_ignored(self, make_point):
        repo = FakeAlertRepository([_rule()])
        engine = AlertEngine(repo, _performance({"site-1": [make_point(date(2026, 2, 20), lcp=9000)]}))

        summary = await engine.run_cycle(now=NOW)

        assert summary.outcomes[0].reason == "no-latest"
        assert repo.events == []

    @pytest.mark.asyncio
    async def test_rule_error_does_not_stop_cycle(self, make_point):
        repo = FakeAlertRepository([_rule("r1"), _rule("r2", site_id="site-2")])
        original = repo.find_open_on_date

        async def flaky(site_id, *args):
            if site_id == "site-1":
                raise RuntimeError("db down")
            return await original(site_id, *args)

        repo.find_open_on_date = flaky
        series = {
            "site-1": [make_point(D, lcp=2700)],
            "site-2": [make_point(D, lcp=2700)],
        }
        engine = AlertEngine(repo, _performance(series))

        summary = await engine.run_cycle(now=NOW)

        assert [o.action for o in summary.outcomes] == ["error", "created"]
        assert summary.to_dict()["errors"] == 1

    @pytest.mark.asyncio
    async def test_notification_tally_across_organizations(self, make_point):
        repo = FakeAlertRepository(
            [_rule("r1"), _rule("r2", site_id="site-2", organization_id="org-2")]
        )
        series = {
            "site-1": [make_point(D, lcp=2700)],
            "site-2": [make_point(D, lcp=2700)],
        }
        dispatcher = _dispatcher(DispatchResult(total=2, failed=1))
        engine = AlertEngine(repo, _performance(series), dispatcher)

        summary = await engine.run_cycle(now=NOW)

        assert summary.notifications == DispatchResult(total=4, failed=2)
        orgs = sorted(call.args[0] for call in dispatcher.dispatch.await_args_list)
        assert orgs == ["org-1", "org-2"]

    @pytest.mark.asyncio
    async def test_dispatch_exception_is_contained(self, make_point):
        repo = FakeAlertRepository([_rule()])
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(side_effect=RuntimeError("boom"))
        engine = AlertEngine(repo, _performance({"site-1": [make_point(D, lcp=2700)]}), dispatcher)

        summary = await engine.run_cycle(now=NOW)

        assert summary.created == 1
        assert summary.notifications == DispatchResult()


class TestFormatValue:

    def test_units(self):
        assert format_value("LCP", 2700.4) == "2700 ms"
        assert format_value("CLS", 0.25) == "0.250"
        assert format_value("SCORE_DROP", 18.0) == "18 points"
