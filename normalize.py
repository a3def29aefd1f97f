"""
Parsing helpers shared by every mapper: counts, dates, durations and URLs.

All functions are pure. Anything that depends on the current time takes an
optional ``now`` so callers (and tests) can pin it.
"""
from __future__ import annotations

import calendar
import html
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

ISO_FMT = "%Y-%m-%dT%H:%M:%SZ"

VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

_GROUPED_RE = re.compile(r"(?<!\d)(\d{1,3}(?:[\.,\s]\d{3})+)(?!\d)")
_SUFFIX_RE = re.compile(r"(?<!\d)(\d+(?:[\.,]\d+)?)\s*(k|m|b|mn)\b", re.IGNORECASE)
_PLAIN_RE = re.compile(r"(?<!\d)(\d{2,})(?!\d)")
_SUFFIX_MULT = {"k": 1_000, "m": 1_000_000, "mn": 1_000_000, "b": 1_000_000_000}


def decode_entities(text: str) -> str:
    return html.unescape(text) if text and "&" in text else (text or "")


def approx_number(text: str) -> Optional[int]:
    """Best-effort integer from display text like ``1.2K``, ``3,4 Mn`` or ``1.234.567``."""
    s = (text or "").strip().lower()
    if not s:
        return None

    m = _GROUPED_RE.search(s)
    if m:
        cleaned = re.sub(r"[\s\.,]", "", m.group(1))
        if cleaned.isdigit():
            return int(cleaned)

    m = _SUFFIX_RE.search(s)
    if m:
        try:
            val = float(m.group(1).replace(",", "."))
        except ValueError:
            return None
        return int(val * _SUFFIX_MULT[m.group(2).lower()])

    m = _PLAIN_RE.search(s)
    if m:
        return int(m.group(1))
    return None


def _abbrev(count: int) -> str:
    d = float(count)
    for limit, unit in ((1_000_000_000, "B"), (1_000_000, "M"), (1_000, "K")):
        if count >= limit:
            if d >= limit * 10:
                return f"{d / limit:.0f}{unit}"
            return f"{d / limit:.1f}{unit}"
    return str(count)


def format_view_count(count: str | int, suffix: str = "views") -> str:
    """``1234`` -> ``1.2K views``; non-numeric placeholders pass through."""
    try:
        n = int(count)
    except (TypeError, ValueError):
        return str(count)
    return f"{_abbrev(n)} {suffix}"


def format_count_short(count: str | int) -> str:
    try:
        n = int(count)
    except (TypeError, ValueError):
        return "0"
    return _abbrev(n)


def normalize_view_count_text(raw: str) -> str:
    trimmed = (raw or "").strip()
    if not trimmed:
        return ""
    approx = approx_number(trimmed)
    if approx is not None:
        return format_view_count(approx)
    digits = "".join(ch for ch in trimmed if ch.isdigit())
    return format_view_count(digits or trimmed)


# ------------------ relative / absolute dates ------------------

_YEAR_TOKENS = {
    "yıl", "year", "years", "yr", "yrs", "jahr", "jahre", "jahren",
    "año", "años", "ano", "anos", "an", "ans", "année", "années", "anno", "anni",
    "jaar", "jaren", "rok", "lata", "lat",
    "год", "года", "лет", "سنة", "سنوات", "عام", "أعوام", "年",
}
_MONTH_TOKENS = {
    "ay", "month", "months", "monat", "monate", "monaten",
    "mes", "meses", "mois", "mese", "mesi", "miesiąc", "miesiące", "miesiecy",
    "месяц", "месяца", "месяцев", "شهر", "أشهر", "月",
}
_WEEK_TOKENS = {
    "hafta", "week", "weeks", "woche", "wochen",
    "semana", "semanas", "semaine", "semaines", "settimana", "settimane",
    "неделя", "недели", "недель", "週間", "周",
}
_DAY_TOKENS = {
    "gün", "day", "days", "tag", "tagen",
    "día", "días", "jour", "jours", "giorno", "giorni",
    "день", "дня", "дней", "日", "天",
}
_HOUR_TOKENS = {
    "saat", "hour", "hours", "stunde", "stunden",
    "hora", "horas", "heure", "heures", "ora", "ore",
    "час", "часа", "часов", "時", "小时",
}
_MINUTE_TOKENS = {
    "dakika", "minute", "minutes", "min", "minuten",
    "minuto", "minuti", "minutos", "минута", "минуты", "минут", "分", "分钟",
}

# Checked in this order; whole-word matching keeps TR "ay" away from EN "days".
_UNITS = (
    ("years", _YEAR_TOKENS),
    ("months", _MONTH_TOKENS),
    ("weeks", _WEEK_TOKENS),
    ("days", _DAY_TOKENS),
    ("hours", _HOUR_TOKENS),
    ("minutes", _MINUTE_TOKENS),
)

_WORD_RE = re.compile(r"[^\W\d_]+")


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def _shift_months(dt: datetime, months: int) -> datetime:
    total = dt.year * 12 + (dt.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return dt.replace(year=year, month=month, day=min(dt.day, last_day))


def relative_to_iso(raw: str, now: Optional[datetime] = None) -> Optional[str]:
    """``"5 days ago"`` / ``"3 yıl önce"`` / ``"vor 2 Jahren"`` -> ISO-8601 instant."""
    lower = (raw or "").strip().lower()
    if not lower:
        return None
    m = re.search(r"\d+", lower)
    if not m:
        return None
    n = int(m.group(0))
    if n <= 0:
        return None
    words = set(_WORD_RE.findall(lower))
    unit = next((name for name, tokens in _UNITS if words & tokens), None)
    if unit is None:
        return None
    base = _now(now)
    if unit == "years":
        then = _shift_months(base, 12 * n)
    elif unit == "months":
        then = _shift_months(base, n)
    else:
        then = base - timedelta(**{unit: n})
    return then.astimezone(timezone.utc).strftime(ISO_FMT)


_EN_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
    "january": 1, "february": 2, "march": 3, "april": 4, "june": 6, "july": 7,
    "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
}
_TR_MONTHS = {
    "oca": 1, "ocak": 1, "şub": 2, "şubat": 2, "mar": 3, "mart": 3,
    "nis": 4, "nisan": 4, "may": 5, "mayıs": 5, "haz": 6, "haziran": 6,
    "tem": 7, "temmuz": 7, "ağu": 8, "ağustos": 8, "eyl": 9, "eylül": 9,
    "eki": 10, "ekim": 10, "kas": 11, "kasım": 11, "ara": 12, "aralık": 12,
}
_EN_DATE_RE = re.compile(r"^([^\W\d_]+)\.?\s+(\d{1,2}),\s*(\d{4})$")
_TR_DATE_RE = re.compile(r"^(\d{1,2})\s+([^\W\d_]+)\.?\s+(\d{4})$")
_ISO_DAY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")


def _midnight_iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return datetime(year, month, day, tzinfo=timezone.utc).strftime(ISO_FMT)
    except ValueError:
        return None


def absolute_date_to_iso(raw: str) -> Optional[str]:
    """``Sep 11, 2025`` / ``11 Eylül 2025`` / ``2025-09-11`` -> UTC midnight ISO."""
    s = (raw or "").strip()
    if not s:
        return None
    m = _ISO_DAY_RE.match(s)
    if m:
        return _midnight_iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    m = _EN_DATE_RE.match(s)
    if m and m.group(1).lower() in _EN_MONTHS:
        return _midnight_iso(int(m.group(3)), _EN_MONTHS[m.group(1).lower()], int(m.group(2)))
    m = _TR_DATE_RE.match(s)
    if m and m.group(2).lower() in _TR_MONTHS:
        return _midnight_iso(int(m.group(3)), _TR_MONTHS[m.group(2).lower()], int(m.group(1)))
    return None


def parse_iso(iso: str) -> Optional[datetime]:
    try:
        dt = datetime.fromisoformat(iso.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def format_relative(iso: str, now: Optional[datetime] = None) -> str:
    """ISO instant -> ``"3 weeks ago"``; unparseable input is returned as-is."""
    then = parse_iso(iso)
    if then is None:
        return iso
    base = _now(now)
    months = (base.year - then.year) * 12 + (base.month - then.month)
    if (base.day, base.time()) < (then.day, then.time()):
        months -= 1

    def ago(n: int, unit: str) -> str:
        return f"1 {unit} ago" if n == 1 else f"{n} {unit}s ago"

    if months >= 12:
        return ago(months // 12, "year")
    if months > 0:
        return ago(months, "month")
    delta = base - then
    if delta.days >= 7:
        return ago(delta.days // 7, "week")
    if delta.days > 0:
        return ago(delta.days, "day")
    hours = delta.seconds // 3600
    if hours > 0:
        return ago(hours, "hour")
    minutes = delta.seconds // 60
    if minutes > 0:
        return ago(minutes, "minute")
    return "Just now"


def normalize_published(
    raw: str, iso: Optional[str] = None, now: Optional[datetime] = None
) -> Tuple[str, Optional[str]]:
    """Returns ``(display, iso)``: known ISO first, then absolute, then relative, then passthrough."""
    if iso:
        return format_relative(iso, now), iso
    trimmed = (raw or "").strip()
    if not trimmed:
        return "", None
    abs_iso = absolute_date_to_iso(trimmed)
    if abs_iso:
        return format_relative(abs_iso, now), abs_iso
    rel_iso = relative_to_iso(trimmed, now)
    if rel_iso:
        return format_relative(rel_iso, now), rel_iso
    return trimmed, None


# ------------------ durations / urls ------------------

def duration_to_seconds(text: str) -> Optional[int]:
    """``9:58`` -> 598, ``1:02:03`` -> 3723."""
    s = (text or "").strip()
    if not s or ":" not in s:
        return None
    try:
        parts = [int(p) for p in s.split(":")]
    except ValueError:
        return None
    if len(parts) == 2:
        return parts[0] * 60 + parts[1]
    if len(parts) == 3:
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    return None


def is_under_one_minute(duration_text: str, seconds: Optional[int] = None) -> bool:
    if seconds is None:
        seconds = duration_to_seconds(duration_text)
    return seconds is not None and seconds < 60


def normalize_url(raw: str) -> str:
    s = (raw or "").strip()
    if not s:
        return ""
    s = s.split("?", 1)[0]
    if s.startswith("//"):
        return "https:" + s
    if s.startswith("http://"):
        return "https://" + s[len("http://"):]
    return s


THUMBNAIL_QUALITIES = ("default", "mqdefault", "hqdefault", "sddefault", "maxresdefault")


def thumbnail_url(video_id: str, quality: str = "mqdefault") -> str:
    if quality not in THUMBNAIL_QUALITIES:
        quality = "mqdefault"
    return f"https://i.ytimg.com/vi/{video_id}/{quality}.jpg"
