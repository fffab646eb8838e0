"""Alert rule reads and alert event lifecycle writes."""

import logging
from datetime import date, datetime

from src.alerts.schemas import AlertEvent, AlertRule
from src.storage.database import Database

logger = logging.getLogger(__name__)

_EVENT_COLUMNS = (
    "id, rule_id, site_id, metric, device, date, value, status, created_at, resolved_at"
)


def _row_to_rule(row) -> AlertRule:
    return AlertRule(
        id=row["id"],
        site_id=row["site_id"],
        metric=row["metric"],
        device=row["device"],
        threshold=float(row["threshold"]),
        window_days=row["window_days"],
        enabled=row["enabled"],
        recipients=list(row["recipients"] or []),
        organization_id=row["organization_id"],
        site_name=row["site_name"] or "",
        site_url=row["site_url"],
    )


def _row_to_event(row) -> AlertEvent:
    return AlertEvent(
        id=row["id"],
        rule_id=row["rule_id"],
        site_id=row["site_id"],
        metric=row["metric"],
        device=row["device"],
        date=row["date"],
        value=float(row["value"]),
        status=row["status"],
        created_at=row["created_at"],
        resolved_at=row["resolved_at"],
    )


def _affected_rows(status: str) -> int:
    # asyncpg returns e.g. "UPDATE 3"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class AlertRepository:
    """Repository for alert rules and events.

    The ``uq_alert_events_open_per_day`` partial unique index backs the
    debounce check: a concurrent insert of a second OPEN event for the
    same (site, metric, device, date) becomes a no-op.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def list_enabled_rules(self) -> list[AlertRule]:
        """Enabled rules of active sites, joined with the owning organization."""
        rows = await self._db.fetch(
            """
            SELECT r.id, r.site_id, r.metric, r.device, r.threshold, r.window_days,
                   r.enabled, r.recipients, s.organization_id,
                   s.name AS site_name, s.url AS site_url
            FROM alert_rules r
            JOIN sites s ON s.id = r.site_id
            WHERE r.enabled = TRUE AND s.is_active = TRUE
            ORDER BY r.site_id, r.created_at, r.id
            """
        )
        return [_row_to_rule(r) for r in rows]

    async def find_open_on_date(
        self, site_id: str, metric: str, device: str, day: date
    ) -> AlertEvent | None:
        row = await self._db.fetchrow(
            f"SELECT {_EVENT_COLUMNS} FROM alert_events "
            "WHERE site_id = $1 AND metric = $2 AND device = $3 "
            "AND date = $4 AND status = 'OPEN' LIMIT 1",
            site_id,
            metric,
            device,
            day,
        )
        return _row_to_event(row) if row else None

    async def list_open(self, site_id: str, metric: str, device: str) -> list[AlertEvent]:
        rows = await self._db.fetch(
            f"SELECT {_EVENT_COLUMNS} FROM alert_events "
            "WHERE site_id = $1 AND metric = $2 AND device = $3 AND status = 'OPEN' "
            "ORDER BY date",
            site_id,
            metric,
            device,
        )
        return [_row_to_event(r) for r in rows]

    async def create_event(self, event: AlertEvent) -> bool:
        """
        Insert an OPEN event.

        Returns:
            False when an OPEN event already exists for the tuple and day.
        """
        inserted = await self._db.fetchval(
            f"""
            INSERT INTO alert_events ({_EVENT_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, 'OPEN', NOW(), NULL)
            ON CONFLICT (site_id, metric, device, date) WHERE status = 'OPEN'
            DO NOTHING
            RETURNING id
            """,
            event.id,
            event.rule_id,
            event.site_id,
            event.metric,
            event.device,
            event.date,
            event.value,
        )
        return inserted is not None

    async def resolve_events(self, event_ids: list[str], resolved_at: datetime) -> int:
        """Mark OPEN events RESOLVED. Returns how many rows changed."""
        if not event_ids:
            return 0
        status = await self._db.execute(
            "UPDATE alert_events SET status = 'RESOLVED', resolved_at = $2 "
            "WHERE id = ANY($1::text[]) AND status = 'OPEN'",
            event_ids,
            resolved_at,
        )
        return _affected_rows(status)
