"""
Locale/region query composition.

Pure functions only: everything here is deterministic given its arguments
and never touches the network or the cache.
"""
import re
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from models import CustomCategory, Video

GLOBAL_REGION = "GLOBAL"

SUPPORTED_REGIONS: Tuple[str, ...] = (
    GLOBAL_REGION,
    # Americas
    "US", "CA", "MX", "BR", "AR", "CL", "CO", "PE", "VE", "UY", "PY", "BO", "EC", "GT", "CR", "PA", "DO", "PR",
    # Europe
    "GB", "IE", "FR", "DE", "IT", "ES", "PT", "NL", "BE", "LU", "CH", "AT", "SE", "NO", "DK", "FI", "IS",
    "PL", "CZ", "SK", "HU", "RO", "BG", "GR", "HR", "SI", "RS", "BA", "MK", "AL", "LT", "LV", "EE", "UA",
    # Middle East & Africa
    "TR", "IL", "SA", "AE", "QA", "KW", "BH", "OM", "EG", "MA", "TN", "DZ", "ZA", "NG", "KE", "GH", "TZ", "UG",
    # Asia Pacific
    "JP", "KR", "CN", "TW", "HK", "SG", "MY", "ID", "PH", "TH", "VN", "IN", "PK", "BD", "LK", "AU", "NZ",
)

_REGION_NAMES_EN: Dict[str, str] = {
    "US": "United States", "CA": "Canada", "MX": "Mexico", "BR": "Brazil", "AR": "Argentina",
    "CL": "Chile", "CO": "Colombia", "PE": "Peru", "VE": "Venezuela", "UY": "Uruguay",
    "PY": "Paraguay", "BO": "Bolivia", "EC": "Ecuador", "GT": "Guatemala", "CR": "Costa Rica",
    "PA": "Panama", "DO": "Dominican Republic", "PR": "Puerto Rico",
    "GB": "United Kingdom", "IE": "Ireland", "FR": "France", "DE": "Germany", "IT": "Italy",
    "ES": "Spain", "PT": "Portugal", "NL": "Netherlands", "BE": "Belgium", "LU": "Luxembourg",
    "CH": "Switzerland", "AT": "Austria", "SE": "Sweden", "NO": "Norway", "DK": "Denmark",
    "FI": "Finland", "IS": "Iceland", "PL": "Poland", "CZ": "Czechia", "SK": "Slovakia",
    "HU": "Hungary", "RO": "Romania", "BG": "Bulgaria", "GR": "Greece", "HR": "Croatia",
    "SI": "Slovenia", "RS": "Serbia", "BA": "Bosnia & Herzegovina", "MK": "North Macedonia",
    "AL": "Albania", "LT": "Lithuania", "LV": "Latvia", "EE": "Estonia", "UA": "Ukraine",
    "TR": "Türkiye", "IL": "Israel", "SA": "Saudi Arabia", "AE": "United Arab Emirates",
    "QA": "Qatar", "KW": "Kuwait", "BH": "Bahrain", "OM": "Oman", "EG": "Egypt", "MA": "Morocco",
    "TN": "Tunisia", "DZ": "Algeria", "ZA": "South Africa", "NG": "Nigeria", "KE": "Kenya",
    "GH": "Ghana", "TZ": "Tanzania", "UG": "Uganda",
    "JP": "Japan", "KR": "South Korea", "CN": "China", "TW": "Taiwan", "HK": "Hong Kong",
    "SG": "Singapore", "MY": "Malaysia", "ID": "Indonesia", "PH": "Philippines", "TH": "Thailand",
    "VN": "Vietnam", "IN": "India", "PK": "Pakistan", "BD": "Bangladesh", "LK": "Sri Lanka",
    "AU": "Australia", "NZ": "New Zealand",
}

_REGION_NAMES_LOCAL: Dict[str, Dict[str, str]] = {
    "tr": {
        "US": "Amerika Birleşik Devletleri", "GB": "Birleşik Krallık", "DE": "Almanya",
        "FR": "Fransa", "IT": "İtalya", "ES": "İspanya", "NL": "Hollanda", "TR": "Türkiye",
        "RU": "Rusya", "JP": "Japonya", "KR": "Güney Kore", "BR": "Brezilya", "MX": "Meksika",
        "CA": "Kanada", "AU": "Avustralya", "IN": "Hindistan", "AZ": "Azerbaycan",
        "GR": "Yunanistan", "BG": "Bulgaristan", "SA": "Suudi Arabistan", "AE": "Birleşik Arap Emirlikleri",
        "EG": "Mısır", "AT": "Avusturya", "CH": "İsviçre", "SE": "İsveç", "NO": "Norveç",
        "DK": "Danimarka", "FI": "Finlandiya", "PL": "Polonya", "UA": "Ukrayna", "CN": "Çin",
    },
    "de": {
        "US": "Vereinigte Staaten", "GB": "Vereinigtes Königreich", "DE": "Deutschland",
        "AT": "Österreich", "CH": "Schweiz", "FR": "Frankreich", "IT": "Italien", "ES": "Spanien",
        "NL": "Niederlande", "TR": "Türkei", "PL": "Polen", "JP": "Japan", "BR": "Brasilien",
    },
    "es": {
        "US": "Estados Unidos", "ES": "España", "MX": "México", "AR": "Argentina", "CO": "Colombia",
        "CL": "Chile", "PE": "Perú", "DE": "Alemania", "FR": "Francia", "GB": "Reino Unido",
        "BR": "Brasil", "TR": "Turquía",
    },
    "fr": {
        "US": "États-Unis", "FR": "France", "BE": "Belgique", "CH": "Suisse", "CA": "Canada",
        "DE": "Allemagne", "ES": "Espagne", "GB": "Royaume-Uni", "MA": "Maroc", "TR": "Turquie",
    },
}

_PREFERRED_HL: Dict[str, str] = {}
for _hl, _codes in (
    ("tr", ("TR",)),
    ("de", ("DE", "AT", "CH")),
    ("fr", ("FR", "MA", "TN", "DZ")),
    ("es", ("ES", "MX", "AR", "CL", "CO", "PE", "VE", "UY", "PY", "BO", "EC", "GT", "CR", "PA", "DO", "PR")),
    ("it", ("IT",)), ("pt", ("PT", "BR")), ("ru", ("RU",)), ("uk", ("UA",)), ("pl", ("PL",)),
    ("cs", ("CZ",)), ("sk", ("SK",)), ("hu", ("HU",)), ("ro", ("RO",)), ("bg", ("BG",)),
    ("el", ("GR",)), ("nl", ("NL", "BE", "LU")), ("sv", ("SE",)), ("no", ("NO",)), ("da", ("DK",)),
    ("fi", ("FI",)), ("ja", ("JP",)), ("ko", ("KR",)), ("zh", ("CN", "TW", "HK")), ("id", ("ID",)),
    ("ms", ("MY",)), ("th", ("TH",)), ("vi", ("VN",)), ("he", ("IL",)),
    ("ar", ("SA", "AE", "QA", "KW", "BH", "OM", "EG")),
):
    for _code in _codes:
        _PREFERRED_HL[_code] = _hl

TRENDING_TERMS: Dict[str, Tuple[str, ...]] = {
    "en": ("trending", "viral", "popular"),
    "tr": ("trend", "viral", "popüler"),
    "es": ("tendencias", "viral", "populares"),
    "de": ("trends", "viral", "beliebt"),
    "fr": ("tendances", "viral", "populaire"),
    "it": ("tendenze", "virale", "popolari"),
    "pt": ("em alta", "viral", "populares"),
    "ru": ("в тренде", "виральные", "популярные"),
    "ja": ("急上昇", "バズ", "人気"),
    "ko": ("급상승", "바이럴", "인기"),
    "zh": ("趋势", "热门", "流行"),
    "nl": ("trending", "viral", "populair"),
    "pl": ("na czasie", "viral", "popularne"),
    "sv": ("trendar", "viral", "populära"),
    "no": ("trender", "viral", "populære"),
    "da": ("trender", "viral", "populære"),
    "fi": ("trendaavat", "viraali", "suositut"),
    "cs": ("trendy", "virální", "populární"),
    "sk": ("trendy", "virálne", "populárne"),
}

SHORTS_MARKERS: Dict[str, Tuple[str, ...]] = {
    "en": ("#shorts", "shorts", "short video"),
    "tr": ("#shorts", "shorts", "kısa video", "kısa"),
    "es": ("#shorts", "shorts", "video corto", "corto"),
    "de": ("#shorts", "shorts", "kurzvideo", "kurz"),
    "fr": ("#shorts", "shorts", "vidéo courte", "court"),
    "it": ("#shorts", "shorts", "video corto", "corto"),
    "pt": ("#shorts", "shorts", "vídeo curto", "curto"),
    "ru": ("#shorts", "shorts", "короткое видео", "короткие"),
    "uk": ("#shorts", "shorts", "коротке відео", "короткі"),
    "ar": ("#shorts", "shorts", "فيديو قصير"),
    "ja": ("#shorts", "shorts", "ショート", "短い動画"),
    "ko": ("#shorts", "shorts", "쇼츠", "짧은 영상"),
    "zh": ("#shorts", "shorts", "短视频", "短片"),
    "nl": ("#shorts", "shorts", "kort filmpje", "kort"),
    "pl": ("#shorts", "shorts", "krótkie wideo", "krótki"),
    "sv": ("#shorts", "shorts", "kort video", "kort"),
    "no": ("#shorts", "shorts", "kort video", "kort"),
    "da": ("#shorts", "shorts", "kort video", "kort"),
    "fi": ("#shorts", "shorts", "lyhyt video", "lyhyt"),
    "cs": ("#shorts", "shorts", "krátké video", "krátké"),
    "sk": ("#shorts", "shorts", "krátke video", "krátke"),
    "hu": ("#shorts", "shorts", "rövid videó", "rövid"),
    "ro": ("#shorts", "shorts", "video scurt", "scurt"),
    "bg": ("#shorts", "shorts", "кратко видео", "кратко"),
    "el": ("#shorts", "shorts", "σύντομο βίντεο", "σύντομο"),
    "id": ("#shorts", "shorts", "video pendek", "pendek"),
    "ms": ("#shorts", "shorts", "video pendek", "pendek"),
    "th": ("#shorts", "shorts", "วิดีโอสั้น", "สั้น"),
    "vi": ("#shorts", "shorts", "video ngắn", "ngắn"),
    "he": ("#shorts", "shorts"),
}

STOPWORDS: Dict[str, frozenset] = {
    "tr": frozenset({
        "ve", "ile", "bir", "bu", "şu", "o", "için", "mi", "mu", "mü", "de", "da", "en", "çok", "az",
        "ama", "fakat", "ya", "ki", "şimdi", "gibi", "yeni", "son", "ilk", "neden",
    }),
    "es": frozenset({"y", "de", "la", "el", "los", "las", "un", "una", "para", "con", "en", "por", "del", "al", "como"}),
    "de": frozenset({"und", "der", "die", "das", "ein", "eine", "mit", "für", "ist", "im", "am", "als", "wie"}),
    "fr": frozenset({"et", "le", "la", "les", "un", "une", "des", "pour", "avec", "est", "dans", "sur", "comme"}),
    "en": frozenset({
        "and", "the", "a", "an", "for", "with", "on", "in", "of", "to", "is", "are", "new", "best",
        "top", "how", "why", "what",
    }),
}

MAX_SHORTS_QUERIES = 20
DEFAULT_HOME_QUERIES = ("popular videos", "recommended videos")


def dedupe_casefold(items: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for item in items:
        key = item.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def _clean(s: Optional[str]) -> str:
    return (s or "").strip()


def preferred_hl(region: Optional[str], default: str = "en") -> str:
    if not region or region.upper() == GLOBAL_REGION:
        return default
    return _PREFERRED_HL.get(region.upper(), "en")


def region_display_name(hl: str, gl: Optional[str]) -> Optional[str]:
    """Human-readable region name in ``hl`` when known, English otherwise; ``None`` without a region."""
    if not gl or gl.upper() == GLOBAL_REGION:
        return None
    code = gl.upper()
    local = _REGION_NAMES_LOCAL.get((hl or "").lower(), {})
    return local.get(code) or _REGION_NAMES_EN.get(code) or code


def flag_emoji(gl: str) -> str:
    if len(gl or "") != 2 or not gl.isalpha():
        return "\U0001F310"
    return "".join(chr(0x1F1E6 + ord(ch) - ord("A")) for ch in gl.upper())


def shorts_markers(hl: str) -> Tuple[str, ...]:
    return SHORTS_MARKERS.get(hl, SHORTS_MARKERS["en"])


def trending_terms(hl: str) -> Tuple[str, ...]:
    return TRENDING_TERMS.get(hl, TRENDING_TERMS["en"])


def _category_base(custom: CustomCategory) -> str:
    parts = [p for p in [_clean(custom.primary_keyword)] if p] + custom.extra_keywords
    return " ".join(parts)


def build_shorts_seed_queries(hl: str, gl: Optional[str], custom: Optional[CustomCategory] = None) -> List[str]:
    region = region_display_name(hl, gl)
    markers = shorts_markers(hl)
    queries: List[str] = []

    if custom is not None:
        base = _category_base(custom)
        if base:
            for m in markers[:4]:
                if region:
                    queries.append(f"{base} {m} {region}")
                queries.append(f"{base} {m}")
            if region:
                queries.append(f"{base} {region} #shorts")
            queries.append(f"{base} #shorts")

    if region:
        queries += [f"{m} {region}" for m in markers]
    queries += list(markers)

    if custom is None:
        for t in trending_terms(hl)[:3]:
            for m in markers[:3]:
                if region:
                    queries.append(f"{t} {m} {region}")
                queries.append(f"{t} {m}")

    return dedupe_casefold(queries)[:MAX_SHORTS_QUERIES]


def build_home_seed_queries(
    hl: str, gl: Optional[str], top_channels: Sequence[str], top_words: Sequence[str]
) -> List[str]:
    queries = [f"{ch} new videos" for ch in top_channels]
    queries += list(top_words)
    region = region_display_name(hl, gl)
    if region:
        queries += [f"{w} {region}" for w in list(top_words)[:3]]
    if not queries:
        queries = list(DEFAULT_HOME_QUERIES)
    return dedupe_casefold(queries)


def build_custom_category_queries(hl: str, gl: Optional[str], custom: CustomCategory) -> List[str]:
    primary = _clean(custom.primary_keyword)
    extras = custom.extra_keywords
    candidates: List[str] = []
    base = _category_base(custom)
    if base:
        candidates.append(base)
    candidates += [f"{primary} {e}" for e in extras]
    region = region_display_name(hl, gl)
    if region:
        candidates.append(f"{primary} {region}")
    if primary:
        candidates.append(f"{primary} video")
    return dedupe_casefold(c.strip() for c in candidates if c.strip())


_TOKEN_RE = re.compile(r"[^\W_]+")


def title_keywords(title: str, hl: str = "en") -> List[str]:
    stop = STOPWORDS.get(hl, STOPWORDS["en"])
    return [t for t in _TOKEN_RE.findall(title.lower()) if len(t) > 2 and not t.isdigit() and t not in stop]


def frequent_seeds(
    history: Iterable[Video], hl: str = "en", channel_limit: int = 3, word_limit: int = 6
) -> Tuple[List[str], List[str]]:
    """Most frequent channel titles and title keywords in a watch history."""
    channels: Counter = Counter()
    words: Counter = Counter()
    for video in history:
        if video.channel_title:
            channels[video.channel_title] += 1
        words.update(title_keywords(video.title, hl))
    return (
        [name for name, _ in channels.most_common(channel_limit)],
        [word for word, _ in words.most_common(word_limit)],
    )


def cookie_header_value(hl: Optional[str], gl: Optional[str]) -> str:
    """Consent bypass plus ``PREF`` locale steering; ``gl`` is dropped when empty."""
    lang = _clean(hl) or "en"
    pref = f"hl={lang}"
    region = _clean(gl)
    if region and region.upper() != GLOBAL_REGION:
        pref += f"&gl={region}"
    return f"SOCS=CAI; CONSENT=YES+; PREF={pref}"
