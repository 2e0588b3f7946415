# services/cdtrf_source.py
"""
bankrot.cdtrf.ru (ЦДТРФ): ASP.NET WebForms.
GET - забираем cookies и скрытые поля формы, затем POST частичного обновления
(UpdatePanel). Ответ приходит в delta-формате: длина|тип|id|содержимое|...
"""
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from core.lots import Lot
from services.http import DETAIL_PAGE_TIMEOUT, SESSION_GET_TIMEOUT, SESSION_POST_TIMEOUT, pace
from services.normalizer import clean_text, parse_amount, parse_area, parse_deadline
from services.source_base import LotSource, SourceError

logger = logging.getLogger(__name__)

SEARCH_PATH = "/public/undef/card/tradel.aspx"
PANEL_ID = "ctl00_cph1_upList"
PANEL_MARKER = f"updatePanel|{PANEL_ID}|"

SOURCE_NAME = "ЦДТРФ (Банкрот)"
LOT_TYPE = "Реализация имущества должников"
DEFAULT_IMAGE = "default_bankrot_image.jpg"
DEFAULT_ADDRESS = "г. Севастополь"

# Фолбэки на стандартные позиции колонок
DEFAULT_COLUMNS = {"title": 2, "price": 7, "deadline": 10}
HEADER_LABELS = {
    "title": "наименование торгов",
    "price": "начальная цена",
    "deadline": "окончания предоставления заявок",
}

# ===== REGEX PATTERNS =====

TRADE_ID_RE = re.compile(r"trade\.aspx\?id=(\d+)", re.IGNORECASE)
PRICE_RE = re.compile(r"([\d\s]+[,.]?\d*)\s*(?:руб|₽)")
AREA_RE = re.compile(r"([\d\s]+[,.]?\d*)\s*(?:кв\.?\s*м|м2|м\.кв)")
CADASTRAL_RE = re.compile(r"(\d{2}:\d{2}:\d{6,7}:\d+)")
PERCENT_RE = re.compile(r"(\d+)\s*%")
ADDRESS_IN_TEXT_RE = re.compile(r"(?:г\.?\s*)?Севастополь[,\s]+[^.;]{10,100}", re.IGNORECASE)
ADDRESS_IN_TITLE_RE = re.compile(r"адрес[:\s]+([^.;]+)", re.IGNORECASE)
DIGITS_ONLY_RE = re.compile(r"^\d+$")

ADDRESS_LABELS = ("Адрес", "Местонахождение", "Место нахождения")
PRICE_LABELS = ("Начальная цена",)
AREA_LABELS = ("Площадь", "Общая площадь")
DEADLINE_LABELS = ("Дата окончания", "Окончание приема заявок", "Прием заявок до", "Подача заявок до")
DEPOSIT_LABELS = ("Задаток", "Обеспечение заявки", "Размер задатка")
CONTRACT_TERM_LABELS = ("Срок договора", "Срок аренды", "Срок действия договора")


def search_form(hidden: Dict[str, str]) -> Dict[str, str]:
    """Скрытые поля со страницы + параметры фильтра UpdatePanel (как шлёт браузер)."""
    form = dict(hidden)
    form.update({
        "ctl00$ToolkitScriptManager1": "ctl00$cph1$upList|ctl00$cph1$btFilter",
        "__EVENTTARGET": "ctl00$cph1$btFilter",
        "__EVENTARGUMENT": "",
        "__ASYNCPOST": "true",
        "ctl00$cph1$tbFind": "севастополь,",
        "ctl00$cph1$hiddenFind": "",
        "ctl00$cph1$cbDeclare": "on",
        "ctl00$cph1$cbRecieveReq": "on",
        "ctl00$cph1$ddlTradeTypeID": "0",
        "ctl00$cph1$hiddenFilterShowed": "1",
        "ctl00$cph1$ddlPriceTypeID": "0",
        "ctl00$cph1$pgvTrades$ctl22$ddlPager": "Номер страницы",
    })
    for name in (
        "hiddenTradeId", "hiddenTradeTypeID", "hiddenPriceTypeID",
        "tbRequestTimeBegin1", "hiddenRequestTimeBegin1", "tbRequestTimeBegin2", "hiddenRequestTimeBegin2",
        "tbRequestTimeEnd1", "hiddenRequestTimeEnd1", "tbRequestTimeEnd2", "hiddenRequestTimeEnd2",
        "tbTradeTime1", "hiddenTradeTime1", "tbTradeTime2", "hiddenTradeTime2",
        "hiddenPrepare", "hiddenFormed", "hiddenRegister", "hiddenDeclare", "hiddenRecieveReq",
        "hiddenDefinePart", "hiddenTradeGo", "hiddenSummingUp", "hiddenComplete", "hiddenNotHeld",
        "hiddenSignContract", "hiddenSuspend", "hiddenCancel", "hiddenDelete", "hiddenNotProt",
        "tbOrgName", "hiddenOrgId", "hiddenOrgName",
    ):
        form[f"ctl00$cph1${name}"] = ""
    return form


def hidden_fields(html: str) -> Dict[str, str]:
    soup = BeautifulSoup(html, "lxml")
    fields = {}
    for inp in soup.select("input[type=hidden]"):
        name = inp.get("name")
        if name:
            fields[name] = inp.get("value", "")
    return fields


# ===== DELTA ENVELOPE =====

@dataclass
class DeltaFrame:
    kind: str
    id: str
    content: str


def parse_delta_frames(body: str) -> List[DeltaFrame]:
    """
    Разбор ответа ASP.NET AJAX: последовательность "длина|тип|id|содержимое|".
    Длина позволяет содержимому включать символ "|". ValueError при битом формате.
    """
    frames = []
    pos = 0
    while pos < len(body):
        length_end = body.index("|", pos)
        length = int(body[pos:length_end])
        kind_end = body.index("|", length_end + 1)
        id_end = body.index("|", kind_end + 1)
        start = id_end + 1
        end = start + length
        if end >= len(body) + 1 or body[end:end + 1] != "|":
            raise ValueError(f"bad delta frame at {pos}")
        frames.append(DeltaFrame(body[length_end + 1:kind_end], body[kind_end + 1:id_end], body[start:end]))
        pos = end + 1
    return frames


def extract_update_panel(body: str, panel_id: str = PANEL_ID) -> str:
    """HTML нужной UpdatePanel. Пустая строка, если маркера нет."""
    if not body:
        return ""
    try:
        for frame in parse_delta_frames(body):
            if frame.kind == "updatePanel" and frame.id == panel_id:
                return frame.content
    except ValueError as e:
        logger.debug("[cdtrf] delta parse failed (%s), fallback to marker search", e)

    marker = f"updatePanel|{panel_id}|"
    start = body.find(marker)
    if start == -1:
        return ""
    start += len(marker)
    end = body.find("|", start)
    return body[start:] if end == -1 else body[start:end]


# ===== TABLE =====

def column_indices(rows: List[Tag]) -> Dict[str, int]:
    indices: Dict[str, int] = {}
    for row in rows:
        headers = row.find_all("th")
        if not headers:
            continue
        for i, th in enumerate(headers):
            text = th.get_text(" ", strip=True).lower()
            for key, label in HEADER_LABELS.items():
                if key not in indices and label in text:
                    indices[key] = i
        break
    for key, default in DEFAULT_COLUMNS.items():
        indices.setdefault(key, default)
    return indices


def extract_price(text: str | None) -> Optional[Decimal]:
    if not text:
        return None
    m = PRICE_RE.search(text)
    if m:
        return parse_amount(m.group(1))
    # голое число в ячейке цены; длинный текст - это не цена
    if len(text) > 50:
        return None
    return parse_amount(text)


def extract_area(text: str | None) -> Optional[Decimal]:
    if not text:
        return None
    m = AREA_RE.search(text)
    return parse_area(m.group(1)) if m else None


def parse_row(row: Tag, columns: Dict[str, int], base_url: str) -> Optional[Lot]:
    """Строка таблицы -> заготовка лота (без деталей). None для служебных строк."""
    if row.find("th"):
        return None
    cells = row.find_all("td")
    if len(cells) < 3:
        return None
    if row.select("td[colspan]"):
        return None  # пагинация

    link_el = row.select_one("a[href*='trade.aspx']")
    if link_el is None:
        return None
    link = urljoin(base_url.rstrip("/") + "/", link_el.get("href", ""))
    m = TRADE_ID_RE.search(link)
    if not m:
        return None
    number = f"cdtrf-{m.group(1)}"

    def cell_text(key: str) -> str:
        idx = columns[key]
        return clean_text(cells[idx].get_text(" ", strip=True)) if idx < len(cells) else ""

    title = cell_text("title")
    if not title:
        for cell in cells:
            text = clean_text(cell.get_text(" ", strip=True))
            if len(text) > 20 and not DIGITS_ONLY_RE.match(text):
                title = text
                break
    if not title:
        logger.warning("[cdtrf] empty title for %s, skipping", number)
        return None

    deadline_text = cell_text("deadline")
    return Lot(
        number=number,
        title=title,
        link=link,
        price=extract_price(cell_text("price")),
        deadline=parse_deadline(deadline_text) if deadline_text else None,
        lot_type=LOT_TYPE,
        source=SOURCE_NAME,
    )


# ===== DETAIL PAGE =====

def labelled_value(soup: BeautifulSoup, labels) -> Optional[str]:
    """Значение из <td>Метка</td><td>значение</td>."""
    for label in labels:
        for td in soup.find_all("td"):
            if label.lower() in td.get_text(" ", strip=True).lower():
                value_td = td.find_next_sibling("td")
                if value_td is not None:
                    text = clean_text(value_td.get_text(" ", strip=True))
                    if text:
                        return text
    return None


def deposit_amount(raw: str, price: Optional[Decimal]) -> Optional[Decimal]:
    """Задаток в рублях: процент от начальной цены либо сумма как есть."""
    m = PERCENT_RE.search(raw)
    if m is None:
        return extract_price(raw)
    if price is None:
        return None
    return (price * int(m.group(1)) / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def find_address(soup: BeautifulSoup, title: str) -> Optional[str]:
    value = labelled_value(soup, ADDRESS_LABELS)
    if value and "севастополь" in value.lower():
        return value
    m = ADDRESS_IN_TITLE_RE.search(title)
    if m:
        return m.group(1).strip()
    m = ADDRESS_IN_TEXT_RE.search(soup.get_text(" "))
    if m:
        return clean_text(m.group(0))
    return None


def apply_details(lot: Lot, html: str) -> Lot:
    soup = BeautifulSoup(html, "lxml")
    page_text = soup.get_text(" ")

    if not lot.address:
        lot.address = find_address(soup, lot.title)
    if lot.price is None:
        lot.price = extract_price(labelled_value(soup, PRICE_LABELS)) or extract_price(lot.title)
    lot.area = extract_area(labelled_value(soup, AREA_LABELS)) or extract_area(lot.title)
    if not lot.deadline:
        raw_deadline = labelled_value(soup, DEADLINE_LABELS)
        lot.deadline = parse_deadline(raw_deadline) if raw_deadline else None

    raw_deposit = labelled_value(soup, DEPOSIT_LABELS)
    if raw_deposit:
        lot.deposit = deposit_amount(raw_deposit, lot.price)
    lot.contract_term = labelled_value(soup, CONTRACT_TERM_LABELS) or lot.contract_term

    m = CADASTRAL_RE.search(page_text) or CADASTRAL_RE.search(lot.title)
    if m:
        lot.cadastral_number = m.group(1)
    return lot


# ===== SOURCE =====

class CdtrfSource(LotSource):
    name = "cdtrf"
    pacing_delay = 0.5
    default_address = DEFAULT_ADDRESS

    def __init__(self, base_url: str, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.search_url = self.base_url + SEARCH_PATH

    async def fetch(self, max_count: int, check_duplicates: bool = True, notify_on_ambiguous: bool = False) -> List[Lot]:
        lots: List[Lot] = []
        async with self.client_factory(timeout=SESSION_GET_TIMEOUT) as client:
            try:
                rows, columns = await self._load_table(client)
            except (SourceError, httpx.HTTPError) as e:
                logger.error("[cdtrf] table request failed: %s", e)
                return lots

            for row in rows:
                if len(lots) >= max_count:
                    break
                try:
                    lot = parse_row(row, columns, self.base_url)
                    if lot is None:
                        continue
                    await self._load_details(client, lot)
                    if await self.accept(lot, check_duplicates, notify_on_ambiguous):
                        lots.append(lot)
                        logger.info("[cdtrf] added %s: %s", lot.number, lot.title[:80])
                except (ValueError, KeyError, TypeError, AttributeError) as e:
                    logger.error("[cdtrf] row skipped: %s", e)

        logger.info("[cdtrf] total lots: %d", len(lots))
        return lots

    async def _load_table(self, client: httpx.AsyncClient) -> Tuple[List[Tag], Dict[str, int]]:
        # 1. GET: cookies сессии остаются в клиенте, скрытые поля забираем из формы
        resp = await client.get(self.search_url, timeout=SESSION_GET_TIMEOUT)
        if resp.status_code != 200:
            raise SourceError(f"initial page returned HTTP {resp.status_code}")
        hidden = hidden_fields(resp.text)
        logger.info("[cdtrf] %d cookies, %d hidden fields", len(client.cookies), len(hidden))

        # 2. POST частичного обновления с фильтром
        resp = await client.post(
            self.search_url,
            data=search_form(hidden),
            headers={
                "Accept": "*/*",
                "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
                "X-MicrosoftAjax": "Delta=true",
                "X-Requested-With": "XMLHttpRequest",
                "Origin": self.base_url,
                "Referer": self.search_url,
            },
            timeout=SESSION_POST_TIMEOUT,
        )
        if resp.status_code != 200:
            raise SourceError(f"filter POST returned HTTP {resp.status_code}")

        html = extract_update_panel(resp.text)
        if not html:
            raise SourceError("update panel not found in delta response")

        soup = BeautifulSoup(html, "lxml")
        rows = soup.select("table.product-table tr, table#ctl00_cph1_pgvTrades tr")
        logger.info("[cdtrf] %d table rows", len(rows))
        return rows, column_indices(rows)

    async def _load_details(self, client: httpx.AsyncClient, lot: Lot):
        try:
            resp = await client.get(lot.link, headers={"Referer": self.search_url}, timeout=DETAIL_PAGE_TIMEOUT)
            if resp.status_code == 200:
                apply_details(lot, resp.text)
            else:
                logger.warning("[cdtrf] detail page %s returned %s", lot.number, resp.status_code)
        except httpx.HTTPError as e:
            logger.error("[cdtrf] detail page %s failed: %s", lot.number, e)
        finally:
            if not lot.image_urls:
                lot.image_urls.append(DEFAULT_IMAGE)
            await pace(self.pacing_delay)
