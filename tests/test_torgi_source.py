import json
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import feedparser
import httpx
import pytest

from core.lots import Lot
from services.channel import LoggingChannel
from services.classifier import KeywordFilter, RegionValidator
from services.enricher import TORGI_IMAGE_URL, TorgiJsonEnricher
from services.pipeline import Orchestrator
from services.reconciler import Reconciler
from services.torgi_source import TorgiFeedSource, entry_to_lot, looks_like_html

RSS_URL = "https://torgi.test/rss?dynSubjRF=80"
XHR_URL = "https://torgi.test/lotcards/"

LOT_1 = "21000012340000000001_1"
LOT_2 = "21000012340000000002_1"
LOT_3 = "21000012340000000003_1"


def rss(*items: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel><title>torgi</title>'
        + "".join(items)
        + "</channel></rss>"
    )


def item(number, title, description, pub="Fri, 03 Jan 2025 10:00:00 +0300"):
    link = f"https://torgi.test/new/public/lots/lot/{number}" if number else "https://torgi.test/new/public/lots/"
    return (
        f"<item><title>{title}</title><link>{link}</link>"
        f"<description><![CDATA[{description}]]></description>"
        f"<pubDate>{pub}</pubDate></item>"
    )


PAGE_SEVASTOPOL = rss(
    item(
        LOT_1,
        "Нежилое помещение площадью 45,6 кв.м по адресу: г. Севастополь ул. Ленина д. 1, "
        "кадастровый номер 91:01:012001:123",
        "<b>Вид торгов:</b> Аренда и продажа земельных участков<br>Начальная цена: 150000.50",
    ),
    item(
        LOT_2,
        "Отбор управляющей организации по адресу: г. Севастополь ул. Гоголя д. 3",
        "<b>Вид торгов:</b> Управление многоквартирными домами<br>",
    ),
    item(
        LOT_3,
        "Автомобиль КАМАЗ, нежилое хранение по адресу: г. Севастополь ул. Портовая",
        "<b>Вид торгов:</b> Продажа имущества<br>Начальная цена: 900000",
    ),
    item(None, "Нежилое помещение без номера", ""),
)

PAGE_MOSCOW = rss(
    item("77000000000000000001_1", "Нежилое помещение по адресу: г. Москва ул. Тверская", ""),
    item("77000000000000000002_1", "Нежилое здание по адресу: г. Москва ул. Арбат", ""),
)

EMPTY_PAGE = rss()

CARD_1 = {
    "lotName": "Нежилое помещение 45,6 кв.м, г. Севастополь, ул. Ленина, д. 1",
    "estateAddress": "г. Севастополь, ул. Ленина, д. 1",
    "priceMin": 120000,
    "deposit": 24000.5,
    "biddEndTime": "2025-01-10T18:00:00.000+03:00",
    "cadastralNumber": "91:01:012001:123",
    "contractTerm": "5 лет",
    "depositRecipientName": "Департамент по имущественным и земельным отношениям",
    "biddType": {"code": "178FZ", "name": "Аренда"},
    "lotImages": ["img-1", "img-2"],
    "characteristics": [{"code": "totalAreaRealty", "characteristicValue": 45.6}],
    "attributes": [
        {"code": "contractTypeName", "fullName": "Вид договора", "value": {"name": "Договор аренды"}},
        {"code": "pricePeriod", "fullName": "Начальная цена указана за:", "value": {"name": "год"}},
    ],
}


def paged(first_page: str, later: str = EMPTY_PAGE):
    def handler(request: httpx.Request):
        page = parse_qs(urlparse(str(request.url)).query).get("page", ["0"])[0]
        body = first_page if page == "0" else later
        return httpx.Response(200, text=body, headers={"content-type": "application/rss+xml; charset=utf-8"})
    return handler


def make_source(web, settings, channel=None, **kwargs):
    return TorgiFeedSource(
        RSS_URL,
        enricher=TorgiJsonEnricher(XHR_URL, web.client_factory, pacing_delay=0),
        excluded_lot_types=settings.excluded_lot_types,
        keyword_filter=KeywordFilter(settings.include_keywords, settings.exclude_keywords),
        region_validator=RegionValidator(settings.region),
        notifier=channel,
        client_factory=web.client_factory,
        retry_delay=0,
        **kwargs,
    )


async def test_fetch_filters_and_enriches(web, settings):
    web.add("GET", RSS_URL, handler=paged(PAGE_SEVASTOPOL))
    web.add("GET", XHR_URL + LOT_1, json=CARD_1)

    lots = await make_source(web, settings).fetch(max_count=10)

    assert [lot.number for lot in lots] == [LOT_1]
    lot = lots[0]
    assert lot.title == CARD_1["lotName"]
    assert lot.address == "г. Севастополь, ул. Ленина, д. 1"
    assert lot.price == Decimal("120000")
    assert lot.monthly_price == Decimal("10000.00")
    assert lot.area == Decimal("45.6")
    assert lot.deposit == Decimal("24000.5")
    assert lot.deadline == "2025-01-10"
    assert lot.organizer.startswith("Департамент")
    assert lot.lot_type == "Аренда"
    assert lot.image_urls == [TORGI_IMAGE_URL.format("img-1"), TORGI_IMAGE_URL.format("img-2")]
    assert lot.source == "Torgi.gov.ru (Севастополь)"


async def test_pagination_stops_on_repeated_page(web, settings):
    # лента игнорирует page: вторая страница повторяет первую
    web.add("GET", RSS_URL, handler=paged(PAGE_SEVASTOPOL, later=PAGE_SEVASTOPOL))
    web.add("GET", XHR_URL + LOT_1, json=CARD_1)

    lots = await make_source(web, settings).fetch(max_count=10)

    assert len(lots) == 1
    assert len(web.sent("GET", RSS_URL)) == 2


async def test_failed_page_keeps_earlier_lots(web, settings):
    web.add("GET", RSS_URL, handler=paged(PAGE_SEVASTOPOL, later=""))
    web.add("GET", RSS_URL + "&page=1", status=500, text="oops")
    web.add("GET", XHR_URL + LOT_1, json=CARD_1)

    lots = await make_source(web, settings).fetch(max_count=10)

    assert [lot.number for lot in lots] == [LOT_1]


async def test_enrichment_failure_keeps_feed_values(web, settings):
    web.add("GET", RSS_URL, handler=paged(PAGE_SEVASTOPOL))
    web.add("GET", XHR_URL, status=503)

    lots = await make_source(web, settings).fetch(max_count=10)

    assert lots[0].price == Decimal("150000.50")
    assert lots[0].address == "г. Севастополь ул. Ленина д. 1"
    assert lots[0].image_urls == []
    assert lots[0].deadline is None


async def test_region_batch_failure_retries_then_gives_up(web, settings):
    channel = LoggingChannel()
    web.add("GET", RSS_URL, handler=paged(PAGE_MOSCOW))

    lots = await make_source(web, settings, channel, retry_attempts=2).fetch(max_count=10)

    assert lots == []
    assert len(channel.notifications) == 2
    assert "регион-77" in channel.notifications[0]
    assert "Все попытки исчерпаны" in channel.notifications[1]


async def test_redirect_is_reported(web, settings):
    channel = LoggingChannel()
    web.add("GET", RSS_URL, status=302, headers={"location": "https://torgi.test/rss?all=1"})

    lots = await make_source(web, settings, channel).fetch(max_count=10)

    assert lots == []
    assert "редирект" in channel.notifications[0]
    assert "https://torgi.test/rss?all=1" in channel.notifications[0]


async def test_html_instead_of_feed_is_reported(web, settings):
    channel = LoggingChannel()
    web.add(
        "GET", RSS_URL,
        text="<!DOCTYPE html><html><body>captcha</body></html>",
        headers={"content-type": "text/html; charset=utf-8"},
    )

    lots = await make_source(web, settings, channel).fetch(max_count=10)

    assert lots == []
    assert "HTML вместо RSS" in channel.notifications[0]


def test_entry_to_lot_reads_title_and_description():
    entry = feedparser.parse(PAGE_SEVASTOPOL).entries[0]

    lot = entry_to_lot(entry, "torgi")

    assert lot.number == LOT_1
    assert lot.address == "г. Севастополь ул. Ленина д. 1"
    assert lot.cadastral_number == "91:01:012001:123"
    assert lot.area == Decimal("45.6")
    assert lot.price == Decimal("150000.50")
    assert lot.deadline is None
    assert lot.lot_type == "Аукцион на право заключения договора аренды на недвижимое имущество"


def test_entry_without_number():
    entry = feedparser.parse(PAGE_SEVASTOPOL).entries[3]
    assert entry_to_lot(entry, "torgi") is None


@pytest.mark.parametrize("content_type, body, expected", [
    ("application/rss+xml", "<?xml version='1.0'?><rss/>", False),
    ("text/html", "<html></html>", True),
    ("", "<!DOCTYPE html><html>", True),
    ("text/plain", "<?xml version='1.0'?><rss/>", False),
])
def test_looks_like_html(content_type, body, expected):
    assert looks_like_html(content_type, body) is expected


async def test_card_json_is_requested_by_number(web):
    web.add("GET", XHR_URL + LOT_1, text=json.dumps(CARD_1))
    enricher = TorgiJsonEnricher(XHR_URL, web.client_factory, pacing_delay=0)

    lot = await enricher.enrich(Lot(number=LOT_1, title="rss title"))

    assert lot.title == CARD_1["lotName"]
    assert str(web.requests[0].url) == XHR_URL + LOT_1


def test_entry_without_address_in_title():
    entry = feedparser.parse(rss(item(LOT_1, "Нежилое помещение площадью 12 кв.м", ""))).entries[0]
    assert entry_to_lot(entry, "torgi").address is None


async def test_garage_outside_region_rejected(web, settings):
    entry = feedparser.parse(rss(item("22000012340000000009_1", "Гараж, 20 кв.м, г. Москва", ""))).entries[0]
    lot = entry_to_lot(entry, "torgi")
    source = make_source(web, settings)
    source.keyword_filter = KeywordFilter(["гараж"], [])

    assert lot.address is None
    assert await source.accept(lot, check_duplicates=False, notify_on_ambiguous=False) is False


async def test_region_checked_against_card_address(web, settings):
    page = rss(
        item(LOT_1, "Нежилое помещение по адресу: г. Севастополь ул. Ленина д. 1", ""),
        item(LOT_2, "Нежилое помещение по адресу: г. Севастополь ул. Гоголя д. 3", ""),
    )
    web.add("GET", RSS_URL, handler=paged(page))
    web.add("GET", XHR_URL + LOT_1, json=CARD_1)
    web.add("GET", XHR_URL + LOT_2, json={
        "lotName": "Нежилое помещение 30 кв.м",
        "estateAddress": "Республика Крым, г. Симферополь, ул. Гоголя, д. 3",
        "cadastralNumber": "90:22:010101:5",
    })
    source = make_source(web, settings)
    source.region_validator = RegionValidator(settings.region, pass_percent=50)

    lots = await source.fetch(max_count=10)

    assert [lot.number for lot in lots] == [LOT_1]


async def test_accepted_lot_without_address_gets_default(web, settings):
    web.add("GET", RSS_URL, handler=paged(rss(item("91000012340000000001_1", "Нежилое здание 200 кв.м", ""))))

    lots = await make_source(web, settings).fetch(max_count=10)

    assert lots[0].address == "г. Севастополь"


class NoClosedLots:
    async def fetch_statuses(self, active_numbers):
        return {}


async def test_failed_card_request_keeps_stored_deadline(web, settings, store):
    await store.upsert([Lot(number=LOT_1, title="Нежилое помещение", address="г. Севастополь",
                            deadline="2025-02-15", is_sent=True)])
    web.add("GET", RSS_URL, handler=paged(PAGE_SEVASTOPOL))
    web.add("GET", XHR_URL, status=503)
    channel = LoggingChannel()
    orchestrator = Orchestrator(store, Reconciler(store, NoClosedLots(), channel), channel)

    result = await orchestrator.run([make_source(web, settings, channel)], max_publish_count=0, target_chat_id=-100111)

    assert result.deadline_changes == []
    assert (await store.get(LOT_1)).deadline == "2025-02-15"
    assert channel.notifications == []
