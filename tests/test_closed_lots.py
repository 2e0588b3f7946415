from core.lots import LotStatus
from services.closed_lots import ClosedLotsFeed, extract_status_text, statuses_from_entries

CLOSED_URL = "https://torgi.test/closed"


def entry(number, status=None):
    description = f"<b>Статус лота:</b> {status}<br>" if status else "<b>Предмет торгов:</b> помещение<br>"
    return {"link": f"https://torgi.test/new/public/lots/lot/{number}", "description": description}


def closed_rss(*items):
    body = "".join(
        f"<item><title>Лот {number}</title><link>https://torgi.test/new/public/lots/lot/{number}</link>"
        f"<description><![CDATA[<b>Статус лота:</b> {status}<br>]]></description></item>"
        for number, status in items
    )
    return f'<?xml version="1.0" encoding="UTF-8"?><rss version="2.0"><channel><title>closed</title>{body}</channel></rss>'


def test_extract_status_text():
    assert extract_status_text("<b>Статус лота:</b> Торги не состоялись<br>") == "Торги не состоялись"
    assert extract_status_text("нет статуса") is None


def test_statuses_are_normalized():
    entries = [
        entry("101_1", "Торги не состоялись"),
        entry("102_1", "Состоялся"),
        entry("103_1", "Отменен"),
        entry("104_1", "Прием заявок приостановлен"),
    ]

    result = statuses_from_entries(entries, {"101_1", "102_1", "103_1", "104_1"})

    assert result == {
        "101_1": LotStatus.FAILED,
        "102_1": LotStatus.SUCCEED,
        "103_1": LotStatus.CANCELED,
        "104_1": LotStatus.SUSPENDED,
    }


def test_unknown_status_skipped():
    result = statuses_from_entries([entry("101_1", "На рассмотрении"), entry("102_1")], {"101_1", "102_1"})
    assert result == {}


def test_stops_after_five_consecutive_unknown_lots():
    entries = [entry(f"90{i}_9", "Отменен") for i in range(5)] + [entry("101_1", "Отменен")]
    assert statuses_from_entries(entries, {"101_1"}) == {}


def test_miss_counter_resets_on_active_lot():
    entries = (
        [entry(f"90{i}_9", "Отменен") for i in range(4)]
        + [entry("101_1", "Отменен")]
        + [entry(f"80{i}_8", "Отменен") for i in range(4)]
        + [entry("102_1", "Состоялся")]
    )

    result = statuses_from_entries(entries, {"101_1", "102_1"})

    assert result == {"101_1": LotStatus.CANCELED, "102_1": LotStatus.SUCCEED}


async def test_fetch_statuses_from_feed(web):
    web.add("GET", CLOSED_URL, text=closed_rss(("91000001_1", "Торги не состоялись"), ("91000002_1", "Состоялся")))

    result = await ClosedLotsFeed(CLOSED_URL, web.client_factory).fetch_statuses(["91000001_1"])

    assert result == {"91000001_1": LotStatus.FAILED}


async def test_fetch_statuses_feed_error(web):
    web.add("GET", CLOSED_URL, status=500)
    assert await ClosedLotsFeed(CLOSED_URL, web.client_factory).fetch_statuses(["91000001_1"]) == {}


async def test_no_active_lots_skips_request(web):
    assert await ClosedLotsFeed(CLOSED_URL, web.client_factory).fetch_statuses([]) == {}
    assert web.requests == []
