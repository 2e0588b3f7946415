# services/http.py
import asyncio
from typing import Callable

import httpx

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ru-RU,ru;q=0.9,en-US;q=0.8,en;q=0.7",
    "Cache-Control": "no-cache",
}

# Таймауты, сек
DETAIL_TIMEOUT = 15
DETAIL_PAGE_TIMEOUT = 30
FEED_TIMEOUT = 30
SESSION_GET_TIMEOUT = 120
SESSION_POST_TIMEOUT = 600

ClientFactory = Callable[..., httpx.AsyncClient]


def create_client(timeout: float = FEED_TIMEOUT, follow_redirects: bool = True, **kwargs) -> httpx.AsyncClient:
    headers = dict(BROWSER_HEADERS)
    headers.update(kwargs.pop("headers", {}) or {})
    return httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=follow_redirects,
        headers=headers,
        **kwargs,
    )


async def pace(delay: float):
    """Пауза между запросами к одной площадке."""
    if delay > 0:
        await asyncio.sleep(delay)
