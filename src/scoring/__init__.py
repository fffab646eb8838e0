"""Weighted SEO score: calculation and storage."""

from src.scoring.calculator import WEIGHTS, calculate_score, grade_for
from src.scoring.repository import ScoreRepository
from src.scoring.schemas import ComponentScore, ScoreInputs, SeoScore

__all__ = [
    "ComponentScore",
    "ScoreInputs",
    "ScoreRepository",
    "SeoScore",
    "WEIGHTS",
    "calculate_score",
    "grade_for",
]
