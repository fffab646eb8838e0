"""Persistence for daily SEO scores."""

import json
import logging

from src.scoring.schemas import SeoScore
from src.storage.database import Database

logger = logging.getLogger(__name__)

_UPSERT_SCORE_SQL = """
INSERT INTO seo_scores (site_id, date, score, grade, components)
VALUES ($1, $2, $3, $4, $5)
ON CONFLICT (site_id, date) DO UPDATE SET
    score = EXCLUDED.score,
    grade = EXCLUDED.grade,
    components = EXCLUDED.components,
    updated_at = NOW()
"""


class ScoreRepository:
    """Upserts into ``seo_scores``; one row per site and day."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def upsert(self, score: SeoScore) -> None:
        components = {
            **score.component_scores(),
            "improvements": score.improvements,
            "strengths": score.strengths,
        }
        await self._db.execute(
            _UPSERT_SCORE_SQL,
            score.site_id,
            score.score_date,
            score.overall,
            score.grade,
            json.dumps(components),
        )
        logger.debug(
            "Stored SEO score %d (%s) for site %s on %s",
            score.overall,
            score.grade,
            score.site_id,
            score.score_date,
        )
