# services/closed_lots.py
"""
RSS завершённых/снятых лотов torgi.gov.ru: номер лота -> итоговый статус.
"""
import logging
import re
from typing import Dict, Iterable, Optional

import feedparser
import httpx

from core.lots import LotStatus, normalize_status
from services.http import ClientFactory, FEED_TIMEOUT, create_client
from services.source_base import SourceError
from services.torgi_source import extract_number

logger = logging.getLogger(__name__)

STATUS_RE = re.compile(r"<b>Статус лота:</b>\s*([^<]+)<br\s*/?>")

MISS_THRESHOLD = 5


def extract_status_text(description: str | None) -> Optional[str]:
    m = STATUS_RE.search(description or "")
    return m.group(1).strip() if m else None


def statuses_from_entries(
    entries: Iterable,
    active_numbers: Iterable[str],
    miss_threshold: int = MISS_THRESHOLD,
) -> Dict[str, LotStatus]:
    """
    Проходит ленту сверху вниз. Лента отсортирована от новых к старым, поэтому
    после miss_threshold подряд чужих лотов дальше идут только старые - останавливаемся.
    """
    active = set(active_numbers)
    statuses: Dict[str, LotStatus] = {}
    misses = 0
    processed = 0

    for entry in entries:
        processed += 1
        number = extract_number(entry.get("link"))
        if number is None:
            logger.warning("[closed] no lot number in link: %s", entry.get("link"))
            continue

        if number not in active:
            misses += 1
            if misses >= miss_threshold:
                logger.info("[closed] %d consecutive unknown lots, stop", misses)
                break
            continue
        misses = 0

        raw = extract_status_text(entry.get("description") or entry.get("summary"))
        if raw is None:
            logger.debug("[closed] no status for lot %s", number)
            continue
        status = normalize_status(raw)
        if status is None:
            logger.warning("[closed] unknown status %r for lot %s, skipping", raw, number)
            continue
        statuses[number] = status

    logger.info("[closed] processed=%d statuses=%d", processed, len(statuses))
    return statuses


class ClosedLotsFeed:
    def __init__(
        self,
        url: str,
        client_factory: ClientFactory = create_client,
        miss_threshold: int = MISS_THRESHOLD,
    ):
        self.url = url
        self.client_factory = client_factory
        self.miss_threshold = miss_threshold

    async def fetch_statuses(self, active_numbers: Iterable[str]) -> Dict[str, LotStatus]:
        """Ошибки ленты не пробрасываются: пустой результат, сверка статусов просто пропускается."""
        active_numbers = list(active_numbers)
        if not active_numbers:
            return {}
        try:
            async with self.client_factory(timeout=FEED_TIMEOUT) as client:
                resp = await client.get(self.url)
            if resp.status_code != 200:
                raise SourceError(f"closed feed returned HTTP {resp.status_code}")
            feed = feedparser.parse(resp.content)
        except (SourceError, httpx.HTTPError) as e:
            logger.error("[closed] feed %s failed: %s", self.url, e)
            return {}
        logger.info("[closed] %d entries in feed", len(feed.entries))
        return statuses_from_entries(feed.entries, active_numbers, self.miss_threshold)
