from decimal import Decimal
from urllib.parse import parse_qs

from bs4 import BeautifulSoup

from core.lots import Lot
from services.cdtrf_source import (
    DEFAULT_COLUMNS, CdtrfSource, apply_details, column_indices, extract_price,
    extract_update_panel, parse_row,
)
from services.classifier import KeywordFilter, RegionValidator

BASE = "https://cdtrf.test"
SEARCH_URL = BASE + "/public/undef/card/tradel.aspx"
DETAIL_URL = BASE + "/public/undef/card/trade.aspx?id="

SEARCH_PAGE = """
<html><body><form>
  <input type="hidden" name="__VIEWSTATE" value="vs-123">
  <input type="hidden" name="__EVENTVALIDATION" value="ev-456">
  <input type="text" name="ctl00$cph1$tbFind" value="">
</form></body></html>
"""

TABLE = """
<table class="product-table">
  <tr><th>Код</th><th>Наименование торгов</th><th>Начальная цена</th><th>Дата окончания предоставления заявок</th></tr>
  <tr>
    <td><a href="/public/undef/card/trade.aspx?id=1001">1001</a></td>
    <td>Нежилое помещение | площадью 35,5 кв.м, г. Севастополь</td>
    <td>1 500 000,00 руб.</td>
    <td>20.01.2025 18:00</td>
  </tr>
  <tr>
    <td><a href="/public/undef/card/trade.aspx?id=1002">1002</a></td>
    <td>Легковой автомобиль Лада Веста 2019 г.в.</td>
    <td>600 000 руб.</td>
    <td>21.01.2025 18:00</td>
  </tr>
  <tr><td>без ссылки</td><td>Нежилое помещение</td><td>1 руб.</td></tr>
  <tr><td colspan="4">1 2 3</td><td>x</td><td>y</td></tr>
</table>
"""

DETAIL_1001 = """
<html><body><table>
  <tr><td>Адрес</td><td>г. Севастополь, ул. Большая Морская, 10</td></tr>
  <tr><td>Площадь</td><td>35,5 кв.м</td></tr>
  <tr><td>Размер задатка</td><td>20 %</td></tr>
  <tr><td>Срок договора</td><td>5 лет</td></tr>
  <tr><td>Кадастровый номер</td><td>91:03:001001:77</td></tr>
</table></body></html>
"""


def frame(kind: str, id_: str, content: str) -> str:
    return f"{len(content)}|{kind}|{id_}|{content}|"


def delta_response(table: str = TABLE) -> str:
    return (
        frame("hiddenField", "__VIEWSTATE", "vs-789")
        + frame("updatePanel", "ctl00_cph1_upList", table)
        + frame("asyncPostBackControlIDs", "", "")
    )


def make_source(web, settings):
    return CdtrfSource(
        BASE,
        keyword_filter=KeywordFilter(settings.include_keywords, settings.exclude_keywords),
        region_validator=RegionValidator(settings.region),
        client_factory=web.client_factory,
        pacing_delay=0,
    )


def setup_site(web):
    web.add("GET", SEARCH_URL, text=SEARCH_PAGE, headers={"set-cookie": "ASP.NET_SessionId=abc123; path=/"})
    web.add("POST", SEARCH_URL, text=delta_response())
    web.add("GET", DETAIL_URL + "1001", text=DETAIL_1001)


async def test_fetch_session_table_and_details(web, settings):
    setup_site(web)

    lots = await make_source(web, settings).fetch(max_count=10)

    assert [lot.number for lot in lots] == ["cdtrf-1001"]
    lot = lots[0]
    assert lot.title == "Нежилое помещение | площадью 35,5 кв.м, г. Севастополь"
    assert lot.link == DETAIL_URL + "1001"
    assert lot.price == Decimal("1500000.00")
    assert lot.deadline == "2025-01-20"
    assert lot.address == "г. Севастополь, ул. Большая Морская, 10"
    assert lot.area == Decimal("35.5")
    assert lot.deposit == Decimal("300000")
    assert lot.contract_term == "5 лет"
    assert lot.cadastral_number == "91:03:001001:77"
    assert lot.lot_type == "Реализация имущества должников"
    assert lot.image_urls == ["default_bankrot_image.jpg"]
    assert lot.source == "ЦДТРФ (Банкрот)"


async def test_post_carries_session_and_form(web, settings):
    setup_site(web)

    await make_source(web, settings).fetch(max_count=10)

    post = web.sent("POST", SEARCH_URL)[0]
    form = parse_qs(post.content.decode())
    assert post.headers["X-MicrosoftAjax"] == "Delta=true"
    assert "ASP.NET_SessionId=abc123" in post.headers["cookie"]
    assert form["__VIEWSTATE"] == ["vs-123"]
    assert form["__EVENTVALIDATION"] == ["ev-456"]
    assert form["__EVENTTARGET"] == ["ctl00$cph1$btFilter"]
    assert form["ctl00$cph1$tbFind"] == ["севастополь,"]


async def test_missing_panel_gives_no_lots(web, settings):
    web.add("GET", SEARCH_URL, text=SEARCH_PAGE)
    web.add("POST", SEARCH_URL, text=frame("pageRedirect", "", "/error.aspx"))

    assert await make_source(web, settings).fetch(max_count=10) == []


async def test_failed_initial_page_gives_no_lots(web, settings):
    web.add("GET", SEARCH_URL, status=503)

    assert await make_source(web, settings).fetch(max_count=10) == []
    assert web.sent("POST", SEARCH_URL) == []


def test_update_panel_honours_declared_length():
    assert extract_update_panel(delta_response()) == TABLE


def test_update_panel_fallback_without_lengths():
    body = "garbage|updatePanel|ctl00_cph1_upList|<table></table>|tail"
    assert extract_update_panel(body) == "<table></table>"


def test_update_panel_absent():
    assert extract_update_panel("") == ""
    assert extract_update_panel(frame("updatePanel", "other", "<p/>")) == ""


def test_column_indices_from_header_and_fallback():
    rows = BeautifulSoup(TABLE, "lxml").select("table.product-table tr")
    assert column_indices(rows) == {"title": 1, "price": 2, "deadline": 3}
    assert column_indices([]) == DEFAULT_COLUMNS


def test_parse_row_title_fallback_to_long_cell():
    html = """<table><tr>
      <td><a href="/public/undef/card/trade.aspx?id=77">77</a></td>
      <td>123456789012345678901234</td>
      <td>Нежилое здание площадью 120 кв.м в г. Севастополе</td>
    </tr></table>"""
    row = BeautifulSoup(html, "lxml").find("tr")

    lot = parse_row(row, {"title": 9, "price": 9, "deadline": 9}, BASE)

    assert lot.number == "cdtrf-77"
    assert lot.title == "Нежилое здание площадью 120 кв.м в г. Севастополе"
    assert lot.price is None


def test_extract_price_rejects_long_text():
    assert extract_price("1 200 000 ₽") == Decimal("1200000")
    assert extract_price("Цена определяется по итогам торгов, шаг аукциона 5 процентов") is None


def test_details_without_address_leave_it_empty():
    lot = apply_details(Lot(number="cdtrf-1", title="Земельный участок"), "<html><body><p>пусто</p></body></html>")
    assert lot.address is None
    assert lot.contract_term is None
    assert lot.deposit is None


async def test_row_outside_region_rejected(web, settings):
    table = """
    <table class="product-table">
      <tr><th>Код</th><th>Наименование торгов</th><th>Начальная цена</th><th>Дата окончания предоставления заявок</th></tr>
      <tr>
        <td><a href="/public/undef/card/trade.aspx?id=2001">2001</a></td>
        <td>Гараж, 20 кв.м, г. Москва</td>
        <td>400 000 руб.</td>
        <td>25.01.2025</td>
      </tr>
    </table>"""
    web.add("GET", SEARCH_URL, text=SEARCH_PAGE)
    web.add("POST", SEARCH_URL, text=delta_response(table))
    web.add("GET", DETAIL_URL + "2001", status=404)
    source = make_source(web, settings)
    source.keyword_filter = KeywordFilter(["гараж"], [])

    assert await source.fetch(max_count=10) == []


async def test_address_default_only_for_accepted_lot(web, settings):
    table = """
    <table class="product-table">
      <tr><th>Код</th><th>Наименование торгов</th><th>Начальная цена</th><th>Дата окончания предоставления заявок</th></tr>
      <tr>
        <td><a href="/public/undef/card/trade.aspx?id=2002">2002</a></td>
        <td>Нежилое помещение 40 кв.м, г. Севастополь</td>
        <td>900 000 руб.</td>
        <td>25.01.2025</td>
      </tr>
    </table>"""
    web.add("GET", SEARCH_URL, text=SEARCH_PAGE)
    web.add("POST", SEARCH_URL, text=delta_response(table))
    web.add("GET", DETAIL_URL + "2002", status=404)

    lots = await make_source(web, settings).fetch(max_count=10)

    assert [lot.number for lot in lots] == ["cdtrf-2002"]
    assert lots[0].address == "г. Севастополь"
