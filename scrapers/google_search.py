"""
Google Search
Google Custom Search JSON API client with paging.
API docs: https://developers.google.com/custom-search/v1/reference/rest/v1/cse/list
"""
import asyncio
from typing import Any, Dict, List, Optional
import logging

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from config import SearchSettings, get_search_settings
from core import SearchResult
from utils.exceptions import ConfigurationError, SearchError
from .base import BaseSearchClient


logger = logging.getLogger(__name__)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500 or exc.response.status_code == 429
    return False


class GoogleSearchClient(BaseSearchClient):
    """
    Google Programmable Search client.

    Pages of ``page_size`` results are requested (``start=1, 11, ...``) until
    enough results are collected, a page comes back short, or a page fails.
    A failing page ends paging; whatever was collected is returned.
    """

    def __init__(
        self,
        settings: Optional[SearchSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_search_settings()
        self._init_client(client)

    @property
    def name(self) -> str:
        return "google"

    def is_configured(self) -> bool:
        return bool(self.settings.google_api_key and self.settings.google_cx)

    async def search(
        self,
        query: str,
        language: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> List[SearchResult]:
        if not self.is_configured():
            raise ConfigurationError("Google search needs SEARCH_GOOGLE_API_KEY and SEARCH_GOOGLE_CX")

        limit = max_results or self.settings.max_results
        page_size = max(1, min(10, self.settings.page_size))
        results: List[SearchResult] = []
        start = 1
        while start <= 91 and len(results) < limit:
            try:
                items = await self._fetch_page(query, start=start, num=page_size, language=language)
            except SearchError as exc:
                logger.warning("search_page_failed query=%r start=%s error=%s", query, start, exc)
                break

            results.extend(self._to_result(item) for item in items if item.get("link"))
            if len(items) < page_size:
                break
            start += page_size
            if len(results) < limit:
                await asyncio.sleep(self.settings.page_delay)

        results = results[:limit]
        self._log_search(query, len(results))
        return results

    async def _fetch_page(
        self,
        query: str,
        *,
        start: int,
        num: int,
        language: Optional[str],
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "key": self.settings.google_api_key,
            "cx": self.settings.google_cx,
            "q": query,
            "num": num,
            "start": start,
        }
        if language:
            params["hl"] = language

        client = self._get_client()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.settings.max_retries),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception(_is_transient),
                reraise=True,
            ):
                with attempt:
                    response = await client.get(
                        self.settings.endpoint,
                        params=params,
                        timeout=httpx.Timeout(self.settings.timeout),
                    )
                    response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SearchError(f"Search page request failed: {exc}", query=query, start=start) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise SearchError("Search page returned invalid JSON", query=query, start=start) from exc
        return list(payload.get("items") or [])

    @staticmethod
    def _to_result(item: Dict[str, Any]) -> SearchResult:
        return SearchResult(
            url=str(item.get("link") or ""),
            title=str(item.get("title") or ""),
            snippet=str(item.get("snippet") or ""),
        )
