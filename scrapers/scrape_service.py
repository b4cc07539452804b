"""
Scrape Service
Client for the external extraction service (``POST {base}/scrape``).
"""
from typing import Optional
import logging

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import ScraperSettings, get_scraper_settings
from utils.exceptions import ConfigurationError, ScraperError
from .base import BaseScrapeClient


logger = logging.getLogger(__name__)


class ScrapeServiceClient(BaseScrapeClient):
    """
    Remote scraper.

    Request ``{"url": ...}``, response ``{"text": ...}``. Transport errors are
    retried; a timeout or an empty ``text`` fails the URL.
    """

    def __init__(
        self,
        settings: Optional[ScraperSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
    ):
        self.settings = settings or get_scraper_settings()
        self.base_url = (base_url or self.settings.service_url or "").rstrip("/")
        if not self.base_url:
            raise ConfigurationError("ScrapeServiceClient needs SCRAPER_SERVICE_URL")
        self._init_client(client)

    @property
    def name(self) -> str:
        return "scrape-service"

    async def scrape(self, url: str, timeout: float) -> str:
        client = self._get_client()
        endpoint = f"{self.base_url}/scrape"
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self.settings.max_retries)),
                wait=wait_exponential(multiplier=1, min=1, max=5),
                retry=retry_if_exception_type((httpx.ConnectError, httpx.RemoteProtocolError)),
                reraise=True,
            ):
                with attempt:
                    response = await client.post(
                        endpoint,
                        json={"url": url},
                        timeout=httpx.Timeout(timeout),
                    )
        except httpx.TimeoutException as exc:
            raise ScraperError(f"Scraper timed out after {timeout:.0f}s", url=url) from exc
        except httpx.HTTPError as exc:
            raise ScraperError(f"Scraper request failed: {exc}", url=url) from exc

        if response.status_code != 200:
            raise ScraperError(
                f"Scraper returned HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ScraperError("Scraper returned invalid JSON", url=url) from exc

        text = payload.get("text") if isinstance(payload, dict) else None
        if not text:
            raise ScraperError("Invalid scraper response: no text", url=url)
        return str(text)
