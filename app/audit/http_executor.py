"""Minimal page-fetch audit executor.

Fetches the target with httpx and reports basic facts about the response.
Scoring and content analysis happen elsewhere.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx
from bs4 import BeautifulSoup

from app.audit.executor import AuditExecutor

logger = logging.getLogger(__name__)


def extract_title(body: str) -> Optional[str]:
    """Document title, ignoring <title> elements that belong to inline SVG."""
    soup = BeautifulSoup(body, "html.parser")
    for tag in soup.find_all("title"):
        if tag.find_parent("svg") is not None:
            continue
        title = " ".join(tag.get_text(" ", strip=True).split())
        return title or None
    return None


class HttpAuditExecutor(AuditExecutor):
    """Fetch a page and summarize the response.

    Honors the ``user_agent`` and ``follow_redirects`` audit options.
    HTTP error statuses raise so the queue can retry the job.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = "AuditQueueBot/0.1",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout
        self._user_agent = user_agent
        self._transport = transport

    async def execute(self, url: str, options: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"User-Agent": options.get("user_agent") or self._user_agent}
        follow = bool(options.get("follow_redirects", True))

        started = time.monotonic()
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=follow,
            headers=headers,
            transport=self._transport,
        ) as client:
            response = await client.get(url)
        elapsed = time.monotonic() - started

        if response.status_code >= 400:
            response.raise_for_status()

        content_type = response.headers.get("content-type", "")
        title = extract_title(response.text) if "html" in content_type else None
        logger.debug("Fetched %s -> %s in %.2fs", url, response.status_code, elapsed)

        return {
            "url": url,
            "final_url": str(response.url),
            "status_code": response.status_code,
            "ok": response.is_success,
            "content_type": content_type,
            "content_length": len(response.content),
            "response_time": round(elapsed, 3),
            "redirects": [str(r.url) for r in response.history],
            "title": title,
        }
