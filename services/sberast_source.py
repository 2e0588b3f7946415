# services/sberast_source.py
"""
sberbank-ast.ru: поисковое API (ElasticSearch за ASPX-обёрткой).
GET списка закупок - только ради cookies сессии, затем POST с XML-запросом.
"""
import json
import logging
import re
from typing import List, Optional

import httpx

from core.lots import Lot
from services.enricher import HtmlDetailEnricher
from services.http import SESSION_GET_TIMEOUT, SESSION_POST_TIMEOUT
from services.normalizer import clean_text, parse_area, parse_deadline, to_decimal
from services.source_base import LotSource, SourceError

logger = logging.getLogger(__name__)

LIST_PATH = "/UnitedPurchaseList.aspx"
SEARCH_PATH = "/SearchQuery.aspx?name=Main"
FALLBACK_LINK_PATH = "/OpenTradeInfo.aspx"

SOURCE_NAME = "sberbank-ast.ru"
DEFAULT_ADDRESS = "г. Севастополь"

ADDRESS_MARKER = "по адресу:"
ADDRESS_STOPS = (" - ", " — ", ";", ". ", "\n")
CITY_RE = re.compile(r"(г\.\s*Севастополь[^,]*,?[^\n]*)", re.IGNORECASE)
AREA_RE = re.compile(r"([\d\s]+[,.]?\d*)\s*(?:кв\.?\s*м|м2)")

SEARCH_FIELDS = (
    "TradeSectionId", "purchAmount", "purchCurrency", "purchCodeTerm",
    "PurchaseTypeName", "purchStateName", "BidStatusName", "OrgName",
    "SourceTerm", "PublicDate", "RequestDate", "RequestStartDate",
    "RequestAcceptDate", "EndDate", "CreateRequestHrefTerm", "CreateRequestAlowed",
    "purchName", "BidName", "SourceHrefTerm", "objectHrefTerm",
    "needPayment", "IsSMP", "isIncrease", "isHasComplaint",
    "isPurchCostDetails", "purchType",
)

EMPTY_FILTERS = (
    "<RequestStartDate><minvalue></minvalue><maxvalue></maxvalue></RequestStartDate>"
    "<RequestDate><minvalue></minvalue><maxvalue></maxvalue></RequestDate>"
    "<AuctionBeginDate><minvalue></minvalue><maxvalue></maxvalue></AuctionBeginDate>"
    "<okdp2MultiMatch><value></value></okdp2MultiMatch>"
    "<okdp2tree><value></value><productField></productField><branchField></branchField></okdp2tree>"
    "<classifier><visiblepart></visiblepart></classifier>"
    "<orgCondition><value></value></orgCondition>"
    "<orgDictionary><value></value></orgDictionary>"
    "<organizator><visiblepart></visiblepart></organizator>"
    "<CustomerCondition><value></value></CustomerCondition>"
    "<CustomerDictionary><value></value></CustomerDictionary>"
    "<customer><visiblepart></visiblepart></customer>"
    "<PurchaseWayTerm><value></value><visiblepart></visiblepart></PurchaseWayTerm>"
    "<PurchaseTypeNameTerm><value></value><visiblepart></visiblepart></PurchaseTypeNameTerm>"
    "<BranchNameTerm><value></value><visiblepart></visiblepart></BranchNameTerm>"
    "<isSharedTerm><value></value><visiblepart></visiblepart></isSharedTerm>"
    "<isHasComplaint><value></value></isHasComplaint>"
    "<isPurchCostDetails><value></value></isPurchCostDetails>"
    "<notificationFeatures><value></value><visiblepart></visiblepart></notificationFeatures>"
)


def build_search_request(size: int, offset: int = 0) -> str:
    """XML для поискового API: стадия «Подача заявок», имущественные секции, Севастополь."""
    fields = "".join(f"<field>{name}</field>" for name in SEARCH_FIELDS)
    return (
        "<elasticrequest>"
        "<personid>0</personid>"
        "<buid>0</buid>"
        "<filters>"
        "<mainSearchBar><value></value><type>phrase_prefix</type><minimum_should_match>100%</minimum_should_match></mainSearchBar>"
        "<purchAmount><minvalue></minvalue><maxvalue></maxvalue></purchAmount>"
        "<PublicDate><minvalue></minvalue><maxvalue></maxvalue></PublicDate>"
        "<PurchaseStageTerm><value>Подача заявок|;|Опубликовано</value>"
        "<visiblepart>Подача заявок,Опубликовано</visiblepart></PurchaseStageTerm>"
        "<SourceTerm><value>Приватизация, аренда и продажа прав|;|Реализация имущества|;|Торги коммерческих заказчиков</value>"
        "<visiblepart>Приватизация, аренда и продажа прав,Реализация иму...</visiblepart></SourceTerm>"
        "<RegionNameTerm><value>г Севастополь|;|Севастополь</value>"
        "<visiblepart>г Севастополь,Севастополь</visiblepart></RegionNameTerm>"
        f"{EMPTY_FILTERS}"
        "</filters>"
        f"<fields>{fields}</fields>"
        "<sort><value>default</value><direction></direction></sort>"
        "<aggregations><empty><filterType>filter_aggregation</filterType><field></field></empty></aggregations>"
        f"<size>{size}</size>"
        f"<from>{offset}</from>"
        "</elasticrequest>"
    )


def extract_hits(payload: dict) -> List[dict]:
    """
    Достаёт hits из ответа. Внешний объект: {"result": "success", "data": "<json>"}.
    Во внутреннем объекте hits лежат либо в data (ещё одна JSON-строка), либо прямо в hits.
    SourceError, если API ответил не success.
    """
    result = payload.get("result")
    if result != "success":
        raise SourceError(f"search API result={result!r}: {payload.get('message', '')}")

    data = payload.get("data")
    if not data:
        logger.warning("[sberast] no data field in response")
        return []
    inner = json.loads(data) if isinstance(data, str) else data

    nested = inner.get("data")
    if nested:
        try:
            nested = json.loads(nested) if isinstance(nested, str) else nested
            hits = (nested.get("hits") or {}).get("hits")
            if isinstance(hits, list):
                return hits
        except (json.JSONDecodeError, AttributeError) as e:
            logger.debug("[sberast] inner data is not JSON: %s", e)

    hits = (inner.get("hits") or {}).get("hits")
    if isinstance(hits, list):
        return hits
    logger.warning("[sberast] no hits in response, keys: %s", list(inner))
    return []


def extract_address(title: str) -> Optional[str]:
    idx = title.lower().find(ADDRESS_MARKER)
    if idx >= 0:
        tail = title[idx + len(ADDRESS_MARKER):].strip()
        for stop in ADDRESS_STOPS:
            pos = tail.find(stop)
            if pos > 5:
                tail = tail[:pos].strip()
                break
        return tail or None
    m = CITY_RE.search(title)
    return m.group(1).strip() if m else None


def extract_area(text: str):
    m = AREA_RE.search(text or "")
    return parse_area(m.group(1)) if m else None


def hit_to_lot(source: dict, base_url: str) -> Optional[Lot]:
    """_source из поиска -> лот. None без номера или названия."""
    number = source.get("purchCodeTerm")
    if not number:
        return None
    number = str(number)

    parts = [clean_text(source.get("BidName")), clean_text(source.get("purchName"))]
    title = " - ".join(p for p in parts if p)
    if not title:
        logger.warning("[sberast] empty title for lot %s, skipping", number)
        return None

    return Lot(
        number=number,
        title=title,
        link=source.get("objectHrefTerm") or base_url + FALLBACK_LINK_PATH,
        address=extract_address(title),
        lot_type=source.get("PurchaseTypeName"),
        organizer=source.get("OrgName"),
        deadline=parse_deadline(source.get("RequestDate")),
        price=to_decimal(source.get("purchAmount")),
        area=extract_area(title),
        source=SOURCE_NAME,
    )


class SberAstSource(LotSource):
    name = "sberast"
    pacing_delay = 0.5
    default_address = DEFAULT_ADDRESS

    def __init__(self, base_url: str, enricher: Optional[HtmlDetailEnricher] = None, **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.enricher = enricher

    async def fetch(self, max_count: int, check_duplicates: bool = True, notify_on_ambiguous: bool = False) -> List[Lot]:
        lots: List[Lot] = []
        async with self.client_factory(timeout=SESSION_GET_TIMEOUT) as client:
            try:
                hits = await self._search(client, max_count)
            except (SourceError, httpx.HTTPError, json.JSONDecodeError, AttributeError) as e:
                logger.error("[sberast] search failed: %s", e)
                return lots
            logger.info("[sberast] %d hits", len(hits))

            for hit in hits:
                if len(lots) >= max_count:
                    break
                try:
                    lot = hit_to_lot(hit.get("_source") or {}, self.base_url)
                    if lot is None:
                        continue
                    if not await self.accept(lot, check_duplicates, notify_on_ambiguous):
                        continue
                    if self.enricher is not None:
                        await self.enricher.enrich(lot, client)
                    lots.append(lot)
                    logger.info("[sberast] added %s: %s", lot.number, lot.title[:80])
                except (ValueError, KeyError, TypeError, AttributeError) as e:
                    logger.error("[sberast] hit skipped: %s", e)

        logger.info("[sberast] total lots: %d", len(lots))
        return lots

    async def _search(self, client: httpx.AsyncClient, size: int) -> List[dict]:
        list_url = self.base_url + LIST_PATH
        # cookies сессии сохраняются в клиенте
        await client.get(list_url, timeout=SESSION_GET_TIMEOUT)

        resp = await client.post(
            self.base_url + SEARCH_PATH,
            data={
                "xmlData": build_search_request(size),
                "shortdictionary": "",
                "targetPageCode": "UnitedPurchaseList",
                "orgId": "0",
                "PID": "0",
            },
            headers={
                "Accept": "application/json, text/javascript, */*; q=0.01",
                "X-Requested-With": "XMLHttpRequest",
                "Referer": list_url,
                "Origin": self.base_url,
            },
            timeout=SESSION_POST_TIMEOUT,
        )
        if resp.status_code != 200:
            raise SourceError(f"search API returned HTTP {resp.status_code}")
        return extract_hits(resp.json())
