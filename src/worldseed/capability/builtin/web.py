"""Web fetch capability — GET a page and keep the start of its text."""

from __future__ import annotations

import html
import logging
import re
from typing import ClassVar

import httpx

from worldseed.capability.base import Capability, CapabilityError, CapabilityOk, CapabilityResult

logger = logging.getLogger(__name__)

PAGE_CHAR_LIMIT = 1000
DEFAULT_TIMEOUT = 20.0

_SCRIPT_RE = re.compile(r"<(script|style|noscript)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


def page_text(markup: str) -> str:
    """Visible text of an HTML document, whitespace collapsed."""
    text = _SCRIPT_RE.sub(" ", markup)
    text = _TAG_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", html.unescape(text)).strip()


class WebCapability(Capability):
    """Fetch a URL.

    The agent loop summarizes the returned text against the goal before it
    is stored, so only the first ``PAGE_CHAR_LIMIT`` characters are kept.
    """

    name: ClassVar[str] = "web"
    description: ClassVar[str] = "Fetch a web page by URL and return the start of its text."

    timeout: float = DEFAULT_TIMEOUT

    async def execute(self, text: str) -> CapabilityResult:
        url = text.strip().strip("'\"")
        if not url:
            return CapabilityError(output="No URL provided")
        if "://" not in url:
            url = f"https://{url}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                resp = await client.get(url)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            return CapabilityError(
                output=f"Fetch failed ({exc.response.status_code}): {url}"
            )
        except httpx.RequestError as exc:
            return CapabilityError(output=f"Unable to reach {url}: {exc}")

        content_type = resp.headers.get("content-type", "")
        body = page_text(resp.text) if "html" in content_type or "<" in resp.text[:200] else resp.text
        logger.debug("Fetched %s (%d chars)", url, len(body))
        return CapabilityOk(output=body[:PAGE_CHAR_LIMIT])
