"""
Direct Scraper
In-process page extraction with httpx and BeautifulSoup.
"""
import re
from typing import Optional
import logging

import httpx
from bs4 import BeautifulSoup

from utils.exceptions import ScraperError
from .base import BaseScrapeClient


logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; LongformWriter/1.0)"

_NOISE_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form", "svg")
_TEXT_TAGS = ["h1", "h2", "h3", "h4", "p", "li", "td", "th", "blockquote", "pre"]


def extract_text(html: str) -> str:
    """Readable text of a page: article body when present, else the whole document."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(list(_NOISE_TAGS)):
        tag.decompose()

    node = soup.find("article") or soup.find("main") or soup.body or soup
    blocks = []
    for element in node.find_all(_TEXT_TAGS):
        # nested text tags (li > p) are reported by their innermost element
        if element.find(_TEXT_TAGS):
            continue
        text = element.get_text(" ", strip=True)
        if text:
            blocks.append(text)

    if not blocks:
        blocks = [node.get_text(" ", strip=True)]

    text = "\n".join(blocks)
    text = re.sub(r"[ \t\f\v]+", " ", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


class DirectScraper(BaseScrapeClient):
    """Fetches pages itself; used when no scrape service is configured."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._init_client(client)

    @property
    def name(self) -> str:
        return "direct"

    async def scrape(self, url: str, timeout: float) -> str:
        client = self._get_client()
        try:
            response = await client.get(
                url,
                headers={"User-Agent": USER_AGENT},
                timeout=httpx.Timeout(timeout),
                follow_redirects=True,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ScraperError(f"Fetch timed out after {timeout:.0f}s", url=url) from exc
        except httpx.HTTPStatusError as exc:
            raise ScraperError(
                f"{exc.response.status_code} Client Error for url {url}",
                url=url,
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise ScraperError(f"Fetch failed: {exc}", url=url) from exc

        content_type = response.headers.get("content-type", "")
        if "html" not in content_type and "xml" not in content_type:
            if content_type.startswith("text/"):
                return response.text.strip()
            raise ScraperError(f"Unsupported content type: {content_type or 'unknown'}", url=url)

        text = extract_text(response.text)
        if not text:
            raise ScraperError("Page contained no readable text", url=url)
        return text
