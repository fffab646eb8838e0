"""Notification channel lookups."""

import logging

from src.notifications.schemas import ChannelRecord
from src.storage.database import Database

logger = logging.getLogger(__name__)

_CHANNEL_COLUMNS = "id, organization_id, type, name, config, events, enabled, created_at"


class ChannelRepository:
    """Reads ``notification_channels`` rows for one organization."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def list_enabled_for_event(self, organization_id: str, event: str) -> list[ChannelRecord]:
        """Enabled channels of the organization subscribed to ``event``."""
        rows = await self._db.fetch(
            f"SELECT {_CHANNEL_COLUMNS} FROM notification_channels "
            "WHERE organization_id = $1 AND enabled = TRUE AND $2 = ANY(events) "
            "ORDER BY created_at, id",
            organization_id,
            event,
        )
        return [ChannelRecord.from_row(r) for r in rows]

    async def get(self, channel_id: str) -> ChannelRecord | None:
        row = await self._db.fetchrow(
            f"SELECT {_CHANNEL_COLUMNS} FROM notification_channels WHERE id = $1",
            channel_id,
        )
        return ChannelRecord.from_row(row) if row else None
