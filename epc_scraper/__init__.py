# epc_scraper/__init__.py
"""Public API for the EPC parts-diagram scraper."""

__all__ = [
    "config",
    "session",
    "datamodel",
    "exceptions",
    "store",
    "catalogue",
    "listing",
    "parts",
    "pages",
    "scheduler",
    "reconcile",
    "repairs",
    "pipeline",
    "ScrapingPipeline",
]

__version__ = "0.1.0"

from .pipeline import ScrapingPipeline  # convenient import: from epc_scraper import ScrapingPipeline
