# services/enricher.py
"""
Дообогащение лота со страницы/карточки лота.

TorgiJsonEnricher - JSON-карточка torgi.gov.ru (XHR API).
HtmlDetailEnricher - HTML-страница лота: для каждого поля перебираем стратегии
по порядку (ячейка таблицы -> соседний элемент -> текст после двоеточия ->
соседи по родителю -> regex по тексту страницы), первая непустая побеждает.
Ни один из них не бросает исключений: не нашли - поле остаётся пустым.
"""
import json
import logging
import re
from typing import Callable, Iterable, List, Optional

import httpx
from bs4 import BeautifulSoup, Tag

from core.lots import Lot, MAX_IMAGES
from services.http import ClientFactory, DETAIL_PAGE_TIMEOUT, DETAIL_TIMEOUT, create_client, pace
from services.normalizer import (
    apply_rent_period, clean_text, parse_amount, parse_area, parse_deadline, to_decimal,
)

logger = logging.getLogger(__name__)

TORGI_IMAGE_URL = "https://torgi.gov.ru/new/image-preview/v1/{}?disposition=inline&resize=600x600!"

MIN_VALUE_LEN = 3


# ===== TORGI JSON =====

def _attr_value(value) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("name")
    if isinstance(value, str):
        return value
    return None


def contract_attributes(card: dict) -> tuple:
    """(вид договора, период цены) из attributes карточки."""
    contract_type, price_period = None, None
    for attr in card.get("attributes") or []:
        if not isinstance(attr, dict):
            continue
        code = attr.get("code") or ""
        full_name = attr.get("fullName") or ""
        if code == "contractTypeName" or full_name == "Вид договора":
            contract_type = _attr_value(attr.get("value")) or contract_type
        if code == "pricePeriod" or full_name == "Начальная цена указана за:":
            price_period = _attr_value(attr.get("value")) or price_period
    return contract_type, price_period


def card_area(card: dict):
    area = to_decimal(card.get("area"))
    if area:
        return area
    for ch in card.get("characteristics") or []:
        if isinstance(ch, dict) and ch.get("code") == "totalAreaRealty":
            value = ch.get("characteristicValue")
            return to_decimal(value) or None
    return None


def apply_torgi_card(lot: Lot, card: dict) -> Lot:
    """Переносит поля JSON-карточки в лот. Значения карточки приоритетнее RSS."""
    lot.title = card.get("lotName") or lot.title
    lot.address = card.get("estateAddress") or lot.address

    price = to_decimal(card.get("priceMin"))
    area = card_area(card)
    deposit = to_decimal(card.get("deposit"))
    lot.area = area or lot.area
    lot.deposit = deposit or lot.deposit

    lot.deadline = parse_deadline(card.get("biddEndTime")) or lot.deadline
    lot.cadastral_number = card.get("cadastralNumber") or lot.cadastral_number
    lot.contract_term = card.get("contractTerm") or lot.contract_term
    lot.organizer = card.get("depositRecipientName") or lot.organizer

    bidd_type = card.get("biddType")
    if isinstance(bidd_type, dict) and bidd_type.get("name"):
        lot.lot_type = bidd_type["name"]

    images = [img for img in card.get("lotImages") or [] if isinstance(img, str) and img]
    if images:
        lot.image_urls = [TORGI_IMAGE_URL.format(img) for img in images[:MAX_IMAGES]]
    else:
        logger.warning("[enrich] no images for lot %s", lot.number)

    # Пересчёт аренды делаем только от свежей цены из карточки, иначе повторный
    # вызов умножил бы цену ещё раз
    if price:
        contract_type, price_period = contract_attributes(card)
        lot.price, monthly = apply_rent_period(price, contract_type, price_period)
        if monthly is not None:
            lot.monthly_price = monthly
    return lot


class TorgiJsonEnricher:
    def __init__(
        self,
        xhr_url: str,
        client_factory: ClientFactory = create_client,
        pacing_delay: float = 0.4,
        timeout: float = DETAIL_TIMEOUT,
    ):
        self.xhr_url = xhr_url
        self.client_factory = client_factory
        self.pacing_delay = pacing_delay
        self.timeout = timeout

    async def enrich(self, lot: Lot, client: httpx.AsyncClient | None = None) -> Lot:
        if client is None:
            async with self.client_factory(timeout=self.timeout) as own:
                return await self.enrich(lot, own)

        url = self.xhr_url + lot.number
        try:
            resp = await client.get(url, headers={"Accept": "application/json"}, timeout=self.timeout)
            if resp.status_code != 200:
                logger.warning("[enrich] XHR %s returned %s", lot.number, resp.status_code)
                return lot
            card = resp.json()
            if not isinstance(card, dict):
                logger.warning("[enrich] XHR %s: unexpected payload", lot.number)
                return lot
            apply_torgi_card(lot, card)
            logger.info("[enrich] %s enriched from XHR (%d images)", lot.number, len(lot.image_urls))
        except httpx.TimeoutException as e:
            logger.error("[enrich] timeout for %s: %s", lot.number, e)
        except httpx.HTTPError as e:
            logger.error("[enrich] network error for %s: %s", lot.number, e)
        except (json.JSONDecodeError, ValueError, TypeError, KeyError, AttributeError) as e:
            logger.error("[enrich] bad card for %s: %s", lot.number, e)
        finally:
            await pace(self.pacing_delay)
        return lot


# ===== HTML STRATEGIES =====

Strategy = Callable[[BeautifulSoup, str], Optional[str]]


def own_text(el: Tag) -> str:
    return clean_text("".join(el.find_all(string=True, recursive=False)))


def _acceptable(value: str | None, label: str) -> Optional[str]:
    value = clean_text(value)
    if len(value) < MIN_VALUE_LEN or label.lower() in value.lower():
        return None
    return value


def _label_elements(soup: BeautifulSoup, label: str) -> List[Tag]:
    label = label.lower()
    return [el for el in soup.find_all(True) if label in own_text(el).lower()]


def from_table_cell(soup: BeautifulSoup, label: str) -> Optional[str]:
    """<td>Задаток</td><td>10 000 руб.</td>"""
    for cell in soup.find_all(["td", "th"]):
        if label.lower() not in cell.get_text(" ", strip=True).lower():
            continue
        value_cell = cell.find_next_sibling("td")
        if value_cell is not None:
            value = _acceptable(value_cell.get_text(" ", strip=True), label)
            if value:
                return value
    return None


def from_next_sibling(soup: BeautifulSoup, label: str) -> Optional[str]:
    for el in _label_elements(soup, label):
        sibling = el.find_next_sibling()
        if sibling is not None:
            value = _acceptable(sibling.get_text(" ", strip=True), label)
            if value:
                return value
    return None


def from_colon_text(soup: BeautifulSoup, label: str) -> Optional[str]:
    """«Задаток: 10 000 руб.» в одном элементе."""
    for el in _label_elements(soup, label):
        text = el.get_text(" ", strip=True)
        if ":" not in text:
            continue
        head, tail = text.split(":", 1)
        tail = clean_text(tail)
        if tail.lower() != clean_text(head).lower() and len(tail) >= MIN_VALUE_LEN:
            return tail
    return None


def from_parent_children(soup: BeautifulSoup, label: str) -> Optional[str]:
    for el in _label_elements(soup, label):
        parent = el.parent
        if parent is None:
            continue
        children = parent.find_all(True, recursive=False)
        if len(children) < 2:
            continue
        for child in children:
            if child is el:
                continue
            value = _acceptable(child.get_text(" ", strip=True), label)
            if value:
                return value
    return None


def from_page_text(soup: BeautifulSoup, label: str) -> Optional[str]:
    text = soup.get_text("\n")
    match = re.search(re.escape(label) + r"\s*:?\s*([^\n.]{3,100})", text, re.IGNORECASE)
    if match:
        return _acceptable(match.group(1), label)
    return None


FIELD_STRATEGIES: List[Strategy] = [
    from_table_cell,
    from_next_sibling,
    from_colon_text,
    from_parent_children,
    from_page_text,
]


def extract_field(
    soup: BeautifulSoup,
    labels: Iterable[str],
    strategies: Iterable[Strategy] = FIELD_STRATEGIES,
) -> Optional[str]:
    strategies = list(strategies)
    for label in labels:
        for strategy in strategies:
            value = strategy(soup, label)
            if value:
                logger.debug("[enrich] %r found by %s: %s", label, strategy.__name__, value)
                return value
    return None


FIELD_LABELS = {
    "contract_term": ["срок договора", "срок аренды", "срок действия договора", "срок действия"],
    "deposit": ["размер задатка", "задаток", "обеспечение заявки", "обеспечение"],
    "organizer": ["организатор торгов", "организатор аукциона", "организатор"],
    "monthly_price": ["ежемесячная арендная плата", "ежемесячная плата", "арендная плата в месяц"],
    "price": ["начальная цена", "начальная стоимость"],
    "area": ["общая площадь", "площадь"],
    "address": ["адрес", "местонахождение", "местоположение"],
    "deadline": ["окончание приема заявок", "окончание подачи заявок", "дата окончания"],
}

MONTH_MARKERS = ("руб./мес", "руб/мес", "в месяц", "ежемесячная плата")
YEAR_MARKERS = ("руб./год", "руб/год", "в год", "ежегодная плата")


def rent_period_from_text(text: str) -> Optional[str]:
    text = text.lower()
    if any(marker in text for marker in MONTH_MARKERS):
        return "месяц"
    if any(marker in text for marker in YEAR_MARKERS):
        return "год"
    return None


def apply_detail_page(lot: Lot, html: str) -> Lot:
    """Заполняет только пустые поля лота."""
    soup = BeautifulSoup(html, "lxml")

    if not lot.contract_term:
        lot.contract_term = extract_field(soup, FIELD_LABELS["contract_term"])
    if lot.deposit is None:
        lot.deposit = parse_amount(extract_field(soup, FIELD_LABELS["deposit"]))
    if not lot.organizer:
        lot.organizer = extract_field(soup, FIELD_LABELS["organizer"])
    if lot.price is None:
        lot.price = parse_amount(extract_field(soup, FIELD_LABELS["price"]))
    if lot.area is None:
        lot.area = parse_area(extract_field(soup, FIELD_LABELS["area"]))
    if not lot.address:
        lot.address = extract_field(soup, FIELD_LABELS["address"])
    if not lot.deadline:
        lot.deadline = parse_deadline(extract_field(soup, FIELD_LABELS["deadline"]))

    if lot.monthly_price is None:
        monthly = parse_amount(extract_field(soup, FIELD_LABELS["monthly_price"]))
        if monthly is not None:
            lot.monthly_price = monthly
        elif lot.price is not None and rent_period_from_text(soup.get_text(" ")) == "месяц":
            # цена на странице указана за месяц
            lot.monthly_price = lot.price
    return lot


class HtmlDetailEnricher:
    def __init__(
        self,
        client_factory: ClientFactory = create_client,
        pacing_delay: float = 0.5,
        timeout: float = DETAIL_PAGE_TIMEOUT,
    ):
        self.client_factory = client_factory
        self.pacing_delay = pacing_delay
        self.timeout = timeout

    async def enrich(self, lot: Lot, client: httpx.AsyncClient | None = None) -> Lot:
        if not lot.link:
            return lot
        if client is None:
            async with self.client_factory(timeout=self.timeout) as own:
                return await self.enrich(lot, own)

        try:
            resp = await client.get(lot.link, timeout=self.timeout)
            if resp.status_code != 200:
                logger.warning("[enrich] detail page %s returned %s", lot.number, resp.status_code)
                return lot
            apply_detail_page(lot, resp.text)
        except httpx.HTTPError as e:
            logger.error("[enrich] detail page %s failed: %s", lot.number, e)
        finally:
            await pace(self.pacing_delay)
        return lot
