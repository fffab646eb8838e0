"""DDL for every table the pipeline reads or writes.

Applied by ``site-pulse init-db``. Statements are idempotent so the
command can be re-run against an existing database.
"""

import logging

from src.storage.database import Database

logger = logging.getLogger(__name__)

_SITES_SQL = """
CREATE TABLE IF NOT EXISTS sites (
    id                    TEXT PRIMARY KEY,
    organization_id       TEXT NOT NULL,
    name                  TEXT NOT NULL DEFAULT '',
    url                   TEXT NOT NULL,
    is_active             BOOLEAN NOT NULL DEFAULT TRUE,
    search_property_url   TEXT,
    search_last_synced_at TIMESTAMPTZ,
    last_crawled_at       TIMESTAMPTZ,
    seo_score             INTEGER,
    seo_grade             TEXT,
    score_updated_at      TIMESTAMPTZ,
    created_at            TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_sites_org_active
    ON sites(organization_id) WHERE is_active = TRUE;
"""

_SEARCH_STATS_SQL = """
CREATE TABLE IF NOT EXISTS search_stats_daily (
    site_id     TEXT NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
    date        DATE NOT NULL,
    page        TEXT NOT NULL,
    query       TEXT NOT NULL,
    device      TEXT NOT NULL,
    country     TEXT NOT NULL,
    clicks      INTEGER NOT NULL DEFAULT 0,
    impressions INTEGER NOT NULL DEFAULT 0,
    ctr         DOUBLE PRECISION NOT NULL DEFAULT 0,
    position    DOUBLE PRECISION NOT NULL DEFAULT 0,
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (site_id, date, page, query, device, country)
);
"""

_PERF_SQL = """
CREATE TABLE IF NOT EXISTS perf_snapshots (
    id                 TEXT PRIMARY KEY,
    site_id            TEXT NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
    url                TEXT NOT NULL,
    device             TEXT NOT NULL,
    perf_score         INTEGER,
    lcp_ms             DOUBLE PRECISION,
    inp_ms             DOUBLE PRECISION,
    cls                DOUBLE PRECISION,
    ttfb_ms            DOUBLE PRECISION,
    fcp_ms             DOUBLE PRECISION,
    speed_index_ms     DOUBLE PRECISION,
    field_lcp_p75      DOUBLE PRECISION,
    field_inp_p75      DOUBLE PRECISION,
    field_cls_p75      DOUBLE PRECISION,
    lighthouse_version TEXT,
    taken_at           TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_perf_snapshots_site_device_taken
    ON perf_snapshots(site_id, device, taken_at DESC);

CREATE TABLE IF NOT EXISTS site_perf_daily (
    site_id        TEXT NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
    date           DATE NOT NULL,
    device         TEXT NOT NULL,
    perf_score_avg INTEGER,
    lcp_pctl       DOUBLE PRECISION,
    inp_pctl       DOUBLE PRECISION,
    cls_pctl       DOUBLE PRECISION,
    pages_measured INTEGER NOT NULL DEFAULT 0,
    updated_at     TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (site_id, date, device)
);
"""

_CRAWL_SQL = """
CREATE TABLE IF NOT EXISTS crawl_reports (
    id              TEXT PRIMARY KEY,
    site_id         TEXT NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
    job_id          TEXT,
    status          TEXT NOT NULL DEFAULT 'RUNNING',
    seed_url        TEXT NOT NULL,
    max_pages       INTEGER NOT NULL,
    pages_crawled   INTEGER NOT NULL DEFAULT 0,
    health_score    INTEGER,
    totals          JSONB NOT NULL DEFAULT '{}',
    top_issues      JSONB NOT NULL DEFAULT '[]',
    recommendations JSONB NOT NULL DEFAULT '[]',
    error           TEXT,
    started_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    finished_at     TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_crawl_reports_site_completed
    ON crawl_reports(site_id, finished_at DESC) WHERE status = 'COMPLETED';
"""

_SCORES_SQL = """
CREATE TABLE IF NOT EXISTS seo_scores (
    site_id    TEXT NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
    date       DATE NOT NULL,
    score      INTEGER NOT NULL,
    grade      TEXT NOT NULL,
    components JSONB NOT NULL DEFAULT '{}',
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (site_id, date)
);
"""

_ALERTS_SQL = """
CREATE TABLE IF NOT EXISTS alert_rules (
    id          TEXT PRIMARY KEY,
    site_id     TEXT NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
    metric      TEXT NOT NULL,
    device      TEXT NOT NULL DEFAULT 'ALL',
    threshold   DOUBLE PRECISION NOT NULL,
    window_days INTEGER NOT NULL DEFAULT 1,
    enabled     BOOLEAN NOT NULL DEFAULT TRUE,
    recipients  TEXT[] NOT NULL DEFAULT '{}',
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS alert_events (
    id          TEXT PRIMARY KEY,
    rule_id     TEXT NOT NULL REFERENCES alert_rules(id) ON DELETE CASCADE,
    site_id     TEXT NOT NULL REFERENCES sites(id) ON DELETE CASCADE,
    metric      TEXT NOT NULL,
    device      TEXT NOT NULL,
    date        DATE NOT NULL,
    value       DOUBLE PRECISION NOT NULL,
    status      TEXT NOT NULL DEFAULT 'OPEN',
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    resolved_at TIMESTAMPTZ
);

-- At most one OPEN event per (site, metric, device, day)
CREATE UNIQUE INDEX IF NOT EXISTS uq_alert_events_open_per_day
    ON alert_events(site_id, metric, device, date) WHERE status = 'OPEN';
"""

_CHANNELS_SQL = """
CREATE TABLE IF NOT EXISTS notification_channels (
    id              TEXT PRIMARY KEY,
    organization_id TEXT NOT NULL,
    type            TEXT NOT NULL,
    name            TEXT NOT NULL DEFAULT '',
    config          JSONB NOT NULL,
    events          TEXT[] NOT NULL DEFAULT '{alert}',
    enabled         BOOLEAN NOT NULL DEFAULT TRUE,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_notification_channels_org_enabled
    ON notification_channels(organization_id) WHERE enabled = TRUE;
"""

# Order matters: referenced tables first
TABLE_DDL = (
    ("sites", _SITES_SQL),
    ("search_stats_daily", _SEARCH_STATS_SQL),
    ("perf", _PERF_SQL),
    ("crawl_reports", _CRAWL_SQL),
    ("seo_scores", _SCORES_SQL),
    ("alerts", _ALERTS_SQL),
    ("notification_channels", _CHANNELS_SQL),
)


async def create_tables(db: Database) -> None:
    """Create all tables and indexes if they do not exist."""
    for name, ddl in TABLE_DDL:
        await db.execute(ddl)
        logger.info("Ensured schema for %s", name)
