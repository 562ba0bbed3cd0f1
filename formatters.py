import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from errors import ValidationError

# São Paulo civil calendar, fixed offset (no DST since 2019)
SP_TZ = timezone(timedelta(hours=-3))

BR_DATE_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
DASHED_BR_DATE_RE = re.compile(r"^(\d{2})-(\d{2})-(\d{4})$")


def today_sp(now=None):
    """Today's date in UTC-3 as dd/mm/yyyy."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(SP_TZ).strftime("%d/%m/%Y")


def parse_br_date(value):
    """dd/mm/yyyy (or yyyy-mm-dd) to a date; None when empty or invalid."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    value = str(value).strip()
    m = BR_DATE_RE.match(value)
    try:
        if m:
            return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        m = ISO_DATE_RE.match(value)
        if m:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        return None
    return None


def format_br_date(d):
    return d.strftime("%d/%m/%Y")


def from_iso(value):
    """yyyy-mm-dd -> dd/mm/yyyy; anything else is returned untouched."""
    m = ISO_DATE_RE.match(value or "")
    if m:
        return f"{m.group(3)}/{m.group(2)}/{m.group(1)}"
    return value


def normalize_date(value):
    """Canonical dd/mm/yyyy for any accepted spelling.

    dd/mm/yyyy, dd-mm-yyyy (URL segments can't carry '/') and yyyy-mm-dd are
    accepted. Empty values pass through so callers can report them as missing.
    """
    if value is None or value == "":
        return value
    text = str(value).strip()
    m = DASHED_BR_DATE_RE.match(text)
    if m:
        text = f"{m.group(1)}/{m.group(2)}/{m.group(3)}"
    d = parse_br_date(from_iso(text))
    if d is None:
        raise ValidationError("Data inválida", f"Use dd/mm/aaaa: {value}")
    return format_br_date(d)


def month_key(value):
    d = parse_br_date(value)
    return d.strftime("%Y-%m") if d else None


def month_label(key):
    year, month = key.split("-")
    return f"{month}/{year}"


def week_start(d):
    """Start of the week for pt-BR (weeks start on Sunday)."""
    return d - timedelta(days=(d.weekday() + 1) % 7)


def parse_decimal(value, default=Decimal("0")):
    if value is None or value == "":
        return default
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    text = str(value).strip().replace("R$", "").replace(" ", "")
    if "," in text:
        text = text.replace(".", "").replace(",", ".")
    try:
        return Decimal(text)
    except InvalidOperation:
        return default


def decimal_text(value):
    """Numeric input ('10,25', 'R$ 1.234,50', 3) as plain decimal text; None when empty."""
    if value is None or value == "":
        return None
    amount = parse_decimal(value, default=None)
    if amount is None or not amount.is_finite():
        raise ValidationError("Valor numérico inválido", str(value))
    return str(amount)


def calculate_total(quantidade, valor_unitario):
    total = parse_decimal(quantidade) * parse_decimal(valor_unitario)
    return f"{total:.2f}"


def sort_by_br_date(rows, key, reverse=True):
    """Sort rows on a dd/mm/yyyy text column; rows with no valid date go last."""
    dated = [r for r in rows if parse_br_date(r.get(key))]
    undated = [r for r in rows if not parse_br_date(r.get(key))]
    dated.sort(key=lambda r: parse_br_date(r.get(key)), reverse=reverse)
    return dated + undated
