"""
Base Scraper
Abstract collaborators for web search and page extraction.
"""
from abc import ABC, abstractmethod
from typing import List, Optional
import logging

import httpx

from core import SearchResult


logger = logging.getLogger(__name__)


class _HttpClientMixin:
    """Owns an ``httpx.AsyncClient`` unless one was injected."""

    _client: Optional[httpx.AsyncClient]
    _owns_client: bool

    def _init_client(self, client: Optional[httpx.AsyncClient]) -> None:
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class BaseSearchClient(_HttpClientMixin, ABC):
    """
    Web search collaborator.

    Paging past the last result is a normal stop, not an error.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def search(
        self,
        query: str,
        language: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> List[SearchResult]:
        """
        Run a query.

        Args:
            query: search terms
            language: two-letter interface language hint
            max_results: upper bound on collected results

        Returns:
            Ordered results, possibly empty
        """
        pass

    def is_configured(self) -> bool:
        return True

    def _log_search(self, query: str, count: int):
        logger.info("search_done client=%s query=%r results=%s", self.name, query, count)


class BaseScrapeClient(_HttpClientMixin, ABC):
    """
    Page-extraction collaborator.

    ``scrape`` returns the extracted text or raises ``ScraperError``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def scrape(self, url: str, timeout: float) -> str:
        """
        Extract readable text from one URL.

        Args:
            url: page or uploaded-document URL
            timeout: caller-supplied bound in seconds

        Returns:
            Extracted text
        """
        pass
