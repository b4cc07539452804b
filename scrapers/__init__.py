"""
Scrapers Module
"""
from .base import BaseScrapeClient, BaseSearchClient
from .google_search import GoogleSearchClient
from .scrape_service import ScrapeServiceClient
from .direct import DirectScraper, extract_text


def create_scrape_client(settings=None) -> BaseScrapeClient:
    """Remote service when ``SCRAPER_SERVICE_URL`` is set, in-process otherwise."""
    from config import get_scraper_settings

    settings = settings or get_scraper_settings()
    if settings.service_url:
        return ScrapeServiceClient(settings=settings)
    return DirectScraper()


__all__ = [
    # Base
    "BaseScrapeClient",
    "BaseSearchClient",
    # Search
    "GoogleSearchClient",
    # Scrape
    "ScrapeServiceClient",
    "DirectScraper",
    "extract_text",
    "create_scrape_client",
]
