# services/normalizer.py
"""
Приведение сырых строк со страниц к типизированным полям лота:
суммы в Decimal (рубли), площадь в кв.м, сроки подачи в ISO-дату.
"""
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Tuple

# ===== REGEX PATTERNS =====

NUMBER_RE = re.compile(r"\d[\d\s\u00a0\u202f.]*(?:,\d+)?")
SPACES_RE = re.compile(r"[\s\u00a0\u202f]+")

DATE_FORMAT = "%Y-%m-%d"

# Порядок важен: первый удачный формат выигрывает
DEADLINE_FORMATS = [
    "%d.%m.%Y %H:%M",
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
]

CENTS = Decimal("0.01")


# ===== NUMBERS =====

def to_decimal(value) -> Optional[Decimal]:
    """Число из JSON (int/float/str) -> Decimal без артефактов float."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    return parse_amount(str(value))


def parse_amount(text: str | None) -> Optional[Decimal]:
    """
    "1 234 567,89 руб." -> Decimal("1234567.89").
    Пробелы (в т.ч. неразрывные) считаются разделителем тысяч, запятая - десятичной.
    """
    if not text:
        return None
    match = NUMBER_RE.search(text)
    if not match:
        return None
    raw = SPACES_RE.sub("", match.group(0)).rstrip(".")
    # "1.234.567" - точки как разделитель тысяч
    if raw.count(".") > 1:
        raw = raw.replace(".", "")
    raw = raw.replace(",", ".")
    try:
        return Decimal(raw)
    except InvalidOperation:
        return None


def parse_area(text: str | None) -> Optional[Decimal]:
    return parse_amount(text)


def apply_rent_period(
    price: Optional[Decimal],
    contract_type: str | None,
    price_period: str | None,
) -> Tuple[Optional[Decimal], Optional[Decimal]]:
    """
    Возвращает (price, monthly_price).

    Для аренды цена может быть указана за год или за месяц:
    - за год: monthly = price / 12
    - за месяц: monthly = price, price = price * 12
    Если нет обоих признаков (договор аренды + период), цена не трогается.
    """
    if price is None or not contract_type or not price_period:
        return price, None
    if "аренд" not in contract_type.lower():
        return price, None

    period = price_period.lower()
    if "год" in period:
        return price, (price / 12).quantize(CENTS, rounding=ROUND_HALF_UP)
    if "месяц" in period:
        return price * 12, price
    return price, None


# ===== DATES =====

def parse_deadline(text: str | None) -> Optional[str]:
    """
    Срок подачи заявок -> календарная дата "YYYY-MM-DD", время суток отбрасывается.
    Нераспознанный текст возвращается как есть, чтобы не терять информацию.
    """
    if text is None:
        return None
    value = SPACES_RE.sub(" ", str(text)).strip()
    if not value:
        return None

    for fmt in DEADLINE_FORMATS:
        try:
            return datetime.strptime(value, fmt).strftime(DATE_FORMAT)
        except ValueError:
            continue

    # ISO-8601 из JSON API: 2025-01-10T10:00:00.000+03:00 / ...Z
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime(DATE_FORMAT)
    except ValueError:
        return value


def clean_text(text: str | None) -> str:
    if not text:
        return ""
    return SPACES_RE.sub(" ", text).strip()
