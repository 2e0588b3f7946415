# services/torgi_source.py
"""
torgi.gov.ru: RSS-лента опубликованных лотов + JSON-карточка каждого лота.
"""
import asyncio
import logging
import re
from typing import List, Optional, Set
from urllib.parse import urlencode

import feedparser
import httpx

from core.lots import Lot
from services.classifier import RegionCheck
from services.enricher import TorgiJsonEnricher
from services.http import FEED_TIMEOUT
from services.normalizer import clean_text, parse_amount, parse_area
from services.source_base import LotSource, SourceError

logger = logging.getLogger(__name__)

# ===== REGEX PATTERNS =====

NUMBER_RE = re.compile(r"lot/([\d:_]+)")
CADASTRAL_RE = re.compile(r"(\d{2}:\d{2}:\d{6,7}:\d+)")
AREA_RE = re.compile(r"площадью\s*([\d,.]+)\s*кв\.?\s*м", re.IGNORECASE)
PRICE_RE = re.compile(r"Начальная цена:\s*([\d.]+)")
LOT_TYPE_RE = re.compile(r"Вид торгов:(?:</b>|</B>)?\s*([^<]+)")
ADDRESS_RE = re.compile(r"по адресу:([^,]+)")
MONTHLY_PRICE_RE = re.compile(r"(\d+[,.]\d+)\s*руб\.?/мес")
DEPOSIT_RE = re.compile(r"залог\s*(\d+[,.]\d+)")
CONTRACT_TERM_RE = re.compile(r"срок\s*(?:контракта|аренды)[^\d]*(\d+\s*(?:год|лет|месяц))")

DEFAULT_ADDRESS = "г. Севастополь"
LEASE_LOT_TYPE = "Аукцион на право заключения договора аренды на недвижимое имущество"
UNKNOWN_LOT_TYPE = "Неизвестный тип"

REDIRECT_CODES = {301, 302, 303, 307, 308}


# ===== FIELD EXTRACTION =====

def extract_number(link: str | None) -> Optional[str]:
    if not link:
        return None
    m = NUMBER_RE.search(link)
    return m.group(1) if m else None


def extract_lot_type_from_description(description: str) -> Optional[str]:
    m = LOT_TYPE_RE.search(description or "")
    return m.group(1).strip() if m else None


def guess_lot_type(title: str) -> str:
    t = title.lower()
    if "аренды" in t or "нежилое помещение" in t or "нежилые помещения" in t or "нежилое здание" in t:
        return LEASE_LOT_TYPE
    return UNKNOWN_LOT_TYPE


def entry_to_lot(entry, source_name: str) -> Optional[Lot]:
    """
    Запись RSS -> лот. None, если в ссылке нет номера лота.
    Адрес только если он есть в заголовке; срок подачи заполняет карточка.
    """
    title = clean_text(entry.get("title"))
    link = entry.get("link") or ""
    description = entry.get("description") or entry.get("summary") or ""

    number = extract_number(link)
    if number is None:
        return None

    address_m = ADDRESS_RE.search(title)
    cadastral_m = CADASTRAL_RE.search(title)
    area_m = AREA_RE.search(title)
    price_m = PRICE_RE.search(description)
    monthly_m = MONTHLY_PRICE_RE.search(title)
    deposit_m = DEPOSIT_RE.search(title)
    term_m = CONTRACT_TERM_RE.search(title)

    return Lot(
        number=number,
        title=title,
        link=link,
        lot_type=guess_lot_type(title),
        address=address_m.group(1).strip() if address_m else None,
        price=parse_amount(price_m.group(1)) if price_m else None,
        monthly_price=parse_amount(monthly_m.group(1)) if monthly_m else None,
        deposit=parse_amount(deposit_m.group(1)) if deposit_m else None,
        contract_term=term_m.group(1) if term_m else None,
        cadastral_number=cadastral_m.group(1) if cadastral_m else None,
        area=parse_area(area_m.group(1)) if area_m else None,
        source=source_name,
    )


def looks_like_html(content_type: str, body: str) -> bool:
    head = body.lstrip()[:500].lower()
    if "xml" in content_type or "rss" in content_type:
        return False
    return "html" in content_type or head.startswith("<!doctype html") or "<html" in head


# ===== SOURCE =====

class TorgiFeedSource(LotSource):
    name = "Torgi.gov.ru (Севастополь)"
    pacing_delay = 0.4
    default_address = DEFAULT_ADDRESS

    def __init__(
        self,
        rss_url: str,
        enricher: Optional[TorgiJsonEnricher] = None,
        excluded_lot_types: List[str] | None = None,
        page_size: int = 100,
        max_pages: int = 20,
        retry_attempts: int = 3,
        retry_delay: float = 180,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.rss_url = rss_url
        self.enricher = enricher
        self.excluded_lot_types = [t.lower() for t in excluded_lot_types or []]
        self.page_size = page_size
        self.max_pages = max_pages
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay

    def page_url(self, page: int) -> str:
        sep = "&" if "?" in self.rss_url else "?"
        return self.rss_url + sep + urlencode({"page": page, "size": self.page_size})

    def is_excluded_lot_type(self, description: str) -> bool:
        lot_type = extract_lot_type_from_description(description)
        if not lot_type:
            return False
        lot_type = lot_type.lower()
        return any(excluded in lot_type for excluded in self.excluded_lot_types)

    async def fetch(self, max_count: int, check_duplicates: bool = True, notify_on_ambiguous: bool = False) -> List[Lot]:
        for attempt in range(1, self.retry_attempts + 1):
            candidates = await self._collect(max_count)
            if not candidates:
                return []

            # регион проверяем по адресу и кадастровому номеру из карточки, а не только по RSS
            if self.enricher is not None:
                await self._enrich_all(candidates)

            # пакетная проверка идёт до фильтра по ключевым словам
            check = self.region_validator.validate(candidates)
            if check.is_valid:
                return await self._accept_all(candidates, check_duplicates, notify_on_ambiguous)

            logger.warning("[torgi] region check failed (attempt %d/%d): %s", attempt, self.retry_attempts, check.message)
            await self.notify(self._region_failure_text(attempt, check))
            if attempt < self.retry_attempts:
                await asyncio.sleep(self.retry_delay)

        logger.error("[torgi] all %d attempts failed region check, returning nothing", self.retry_attempts)
        return []

    def _region_failure_text(self, attempt: int, check: RegionCheck) -> str:
        lines = [
            "⚠️ Парсинг обнаружил лоты из неправильных регионов",
            f"Попытка: {attempt}/{self.retry_attempts}",
            f"Проблема: {check.message}",
        ]
        for region in check.wrong_regions:
            lines.append(f"• {region}")
        if attempt >= self.retry_attempts:
            lines.append("Все попытки исчерпаны. Проверьте RSS_URL.")
        return "\n".join(lines)

    async def _enrich_all(self, lots: List[Lot]):
        async with self.client_factory(timeout=self.enricher.timeout) as client:
            for lot in lots:
                await self.enricher.enrich(lot, client)

    async def _accept_all(self, candidates: List[Lot], check_duplicates: bool, notify_on_ambiguous: bool) -> List[Lot]:
        lots: List[Lot] = []
        for lot in candidates:
            try:
                if await self.accept(lot, check_duplicates, notify_on_ambiguous):
                    lots.append(lot)
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                logger.error("[torgi] lot %s skipped: %s", lot.number, e)
        logger.info("[torgi] accepted %d of %d candidates", len(lots), len(candidates))
        return lots

    async def _collect(self, max_count: int) -> List[Lot]:
        """Кандидаты из ленты: с номером, без повторов и без исключённых видов торгов."""
        candidates: List[Lot] = []
        seen: Set[str] = set()
        stats = {"processed": 0, "filtered": 0, "no_number": 0, "duplicates": 0}

        async with self.client_factory(timeout=FEED_TIMEOUT, follow_redirects=False) as client:
            for page in range(self.max_pages):
                try:
                    entries = await self._fetch_page(client, page)
                except (SourceError, httpx.HTTPError) as e:
                    logger.error("[torgi] page %d failed, keeping %d candidates: %s", page, len(candidates), e)
                    break

                if not entries:
                    logger.info("[torgi] page %d is empty, stop", page)
                    break

                new_on_page = 0
                for entry in entries:
                    if len(candidates) >= max_count:
                        break
                    stats["processed"] += 1
                    try:
                        lot = entry_to_lot(entry, self.name)
                        if lot is None:
                            stats["no_number"] += 1
                            logger.warning("[torgi] no lot number in link: %s", entry.get("link"))
                            continue
                        if lot.number in seen:
                            stats["duplicates"] += 1
                            continue
                        seen.add(lot.number)
                        new_on_page += 1

                        if self.is_excluded_lot_type(entry.get("description") or ""):
                            stats["filtered"] += 1
                            logger.info("[torgi] %s skipped by lot type", lot.number)
                            continue
                        candidates.append(lot)
                    except (ValueError, KeyError, TypeError, AttributeError) as e:
                        logger.error("[torgi] entry skipped: %s", e)

                if len(candidates) >= max_count:
                    logger.info("[torgi] reached max count %d", max_count)
                    break
                if new_on_page == 0:
                    # лента игнорирует page и отдаёт ту же страницу
                    break

        logger.info(
            "[torgi] processed=%d filtered=%d no_number=%d duplicates=%d candidates=%d",
            stats["processed"], stats["filtered"], stats["no_number"], stats["duplicates"], len(candidates),
        )
        return candidates

    async def _fetch_page(self, client: httpx.AsyncClient, page: int) -> list:
        url = self.page_url(page)
        resp = await client.get(url)

        if resp.status_code in REDIRECT_CODES:
            location = resp.headers.get("location", "")
            await self.notify(
                "⚠️ RSS: Обнаружен редирект!\n"
                f"HTTP код: {resp.status_code}\n"
                f"Перенаправление на: {location}\n"
                "Фильтр региона может не применяться!"
            )
            raise SourceError(f"redirect {resp.status_code} to {location}")

        if resp.status_code != 200:
            raise SourceError(f"feed returned HTTP {resp.status_code}")

        content_type = resp.headers.get("content-type", "").lower()
        if looks_like_html(content_type, resp.text):
            preview = resp.text[:200].replace("<", "&lt;").replace(">", "&gt;")
            await self.notify(
                "🚫 RSS: Получен HTML вместо RSS!\n"
                f"Content-Type: {content_type}\n"
                f"Начало ответа: {preview}"
            )
            raise SourceError("HTML instead of RSS, possible block or captcha")

        feed = feedparser.parse(resp.content)
        if feed.bozo and not feed.entries:
            raise SourceError(f"malformed feed: {feed.get('bozo_exception')}")
        logger.info("[torgi] page %d: %d entries", page, len(feed.entries))
        return list(feed.entries)
