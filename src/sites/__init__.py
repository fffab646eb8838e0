"""Monitored sites and their tenant-scoped lookups."""

from src.sites.repository import SiteRepository
from src.sites.schemas import Site

__all__ = ["Site", "SiteRepository"]
