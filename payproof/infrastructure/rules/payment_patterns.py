"""
Payment patterns — parsing determinístico do texto OCR.

Funções puras que reconhecem, em texto de screenshot de e-wallet:
valores com marcador de moeda, códigos de referência, métodos de
pagamento (por palavra-chave) e timestamps nos formatos comuns dos
apps das Filipinas e da Malásia.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

# ─── Moedas ─────────────────────────────────────────────

CURRENCY_MARKERS = {
    "₱": "PHP",
    "PHP": "PHP",
    "Php": "PHP",
    "RM": "MYR",
    "MYR": "MYR",
}

_NUMBER = r"\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?"

_MARKED_AMOUNT = re.compile(
    rf"(?<![A-Za-z])(?P<marker>₱|PHP|Php|RM|MYR)\s?(?P<number>{_NUMBER})(?![\d,])"
)
_BARE_DECIMAL = re.compile(r"(?<![\d,.])(?P<number>\d{1,3}(?:,\d{3})+\.\d{2}|\d+\.\d{2})(?![\d])")

# ─── Referências ────────────────────────────────────────

_LABELED_REFERENCE = re.compile(
    r"\b(?:ref(?:erence)?|txn|transaction)"
    r"(?:\s*(?:no|number|id|code|#)\.?)?"
    r"\s*[:#.]?\s*"
    r"(?P<ref>[A-Za-z0-9][A-Za-z0-9-]{5,23})",
    re.IGNORECASE,
)
_CODE_REFERENCE = re.compile(r"\b[A-Z]{2,3}-[A-Z0-9]{6,12}\b")

# ─── Métodos ────────────────────────────────────────────

METHOD_KEYWORDS: dict[str, tuple[str, ...]] = {
    # Filipinas
    "gcash": ("gcash", "g-cash", "globe cash"),
    "maya": ("paymaya", "pay maya", "maya"),
    "bpi": ("bpi", "bank of the philippine islands"),
    "bdo": ("bdo", "banco de oro"),
    "metrobank": ("metrobank",),
    "unionbank": ("unionbank", "union bank"),
    # Malásia
    "maybank": ("maybank2u", "maybank"),
    "cimb": ("cimb",),
    "touch_n_go": ("touch 'n go", "touch n go", "touchngo", "tng ewallet", "tng"),
    "boost": ("boost",),
    "public_bank": ("public bank", "pbe"),
    "hong_leong": ("hong leong",),
    # Ambos
    "grabpay": ("grabpay", "grab pay"),
}

METHOD_CURRENCIES: dict[str, frozenset[str]] = {
    "gcash": frozenset({"PHP"}),
    "maya": frozenset({"PHP"}),
    "bpi": frozenset({"PHP"}),
    "bdo": frozenset({"PHP"}),
    "metrobank": frozenset({"PHP"}),
    "unionbank": frozenset({"PHP"}),
    "maybank": frozenset({"MYR"}),
    "cimb": frozenset({"MYR"}),
    "touch_n_go": frozenset({"MYR"}),
    "boost": frozenset({"MYR"}),
    "public_bank": frozenset({"MYR"}),
    "hong_leong": frozenset({"MYR"}),
    "grabpay": frozenset({"PHP", "MYR"}),
}

_KEYWORD_PATTERNS = {
    method: [re.compile(rf"(?<![a-z0-9]){re.escape(k)}(?![a-z0-9])") for k in keywords]
    for method, keywords in METHOD_KEYWORDS.items()
}

# ─── Timestamps ─────────────────────────────────────────

TIMESTAMP_FORMATS = (
    "%b %d, %Y %I:%M %p",
    "%B %d, %Y %I:%M %p",
    "%b %d, %Y %H:%M",
    "%d %b %Y %I:%M %p",
    "%d %b %Y %H:%M",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%m-%d-%Y %H:%M",
    "%m-%d-%Y %I:%M %p",
)

_TIMESTAMP_IN_TEXT = re.compile(
    r"(?:[A-Z][a-z]{2,8} \d{1,2}, \d{4},? \d{1,2}:\d{2}(?: ?[AP]M)?)"
    r"|(?:\d{1,2} [A-Z][a-z]{2} \d{4},? \d{1,2}:\d{2}(?: ?[AP]M)?)"
    r"|(?:\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}(?::\d{2})?)"
    r"|(?:\d{1,2}/\d{1,2}/\d{4} \d{1,2}:\d{2}(?::\d{2})?)"
    r"|(?:\d{2}-\d{2}-\d{4} \d{1,2}:\d{2}(?: ?[AP]M)?)"
)


@dataclass(frozen=True)
class AmountHit:
    """Valor encontrado no texto."""
    amount: Decimal
    currency: str | None          # None = número sem marcador de moeda
    raw: str


def _to_decimal(number: str) -> Decimal | None:
    try:
        return Decimal(number.replace(",", "")).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def extract_amounts(
    text: str,
    min_amount: Decimal = Decimal("1.00"),
    max_amount: Decimal = Decimal("100000.00"),
) -> list[AmountHit]:
    """
    Valores monetários plausíveis, marcados com moeda primeiro.

    Números sem marcador só entram se tiverem duas casas decimais
    (evita pegar telefones, datas e números de conta).
    """
    hits: list[AmountHit] = []
    seen: set[tuple[Decimal, str | None]] = set()
    marked_spans: list[tuple[int, int]] = []

    for m in _MARKED_AMOUNT.finditer(text):
        value = _to_decimal(m.group("number"))
        marked_spans.append(m.span("number"))
        if value is None or not (min_amount <= value <= max_amount):
            continue
        currency = CURRENCY_MARKERS[m.group("marker")]
        if (value, currency) not in seen:
            seen.add((value, currency))
            hits.append(AmountHit(value, currency, m.group(0)))

    for m in _BARE_DECIMAL.finditer(text):
        start, end = m.span("number")
        if any(s <= start < e for s, e in marked_spans):
            continue
        value = _to_decimal(m.group("number"))
        if value is None or not (min_amount <= value <= max_amount):
            continue
        if any(h.amount == value for h in hits):
            continue
        if (value, None) not in seen:
            seen.add((value, None))
            hits.append(AmountHit(value, None, m.group(0)))

    return hits


def normalize_reference(ref: str | None) -> str:
    """Comparação case/whitespace-insensitive."""
    if not ref:
        return ""
    return re.sub(r"\s+", "", ref).upper()


def extract_references(text: str) -> list[str]:
    """Códigos de referência/transação, na ordem em que aparecem."""
    refs: list[str] = []
    seen: set[str] = set()

    for m in _LABELED_REFERENCE.finditer(text):
        ref = m.group("ref").strip("-")
        if not any(c.isdigit() for c in ref):
            continue
        key = normalize_reference(ref)
        if key not in seen:
            seen.add(key)
            refs.append(ref)

    for m in _CODE_REFERENCE.finditer(text):
        key = normalize_reference(m.group(0))
        if key not in seen:
            seen.add(key)
            refs.append(m.group(0))

    return refs


def reference_in_text(reference: str, text: str) -> bool:
    """A referência aparece no texto (ignorando caixa e espaços)?"""
    ref = normalize_reference(reference)
    return bool(ref) and ref in normalize_reference(text)


def detect_methods(text: str) -> list[str]:
    """Métodos de pagamento citados no texto (por palavra-chave)."""
    lowered = text.lower()
    found = []
    for method, patterns in _KEYWORD_PATTERNS.items():
        if any(p.search(lowered) for p in patterns):
            found.append(method)
    return found


def normalize_method(name: str | None) -> str:
    """
    Nome livre → chave canônica ("GCash" → "gcash", "Touch 'n Go" → "touch_n_go").

    Retorna "unknown" quando vazio; nomes não reconhecidos viram
    snake_case em minúsculas.
    """
    if not name or not name.strip():
        return "unknown"
    detected = detect_methods(name)
    if detected:
        return detected[0]
    return re.sub(r"[^a-z0-9]+", "_", name.strip().lower()).strip("_") or "unknown"


def method_currencies(method: str) -> frozenset[str]:
    return METHOD_CURRENCIES.get(method, frozenset())


def detect_currency(text: str) -> str | None:
    """Moeda dominante pelos marcadores do texto."""
    counts = {"PHP": 0, "MYR": 0}
    for m in _MARKED_AMOUNT.finditer(text):
        counts[CURRENCY_MARKERS[m.group("marker")]] += 1
    if counts["PHP"] == counts["MYR"]:
        for method in detect_methods(text):
            currencies = method_currencies(method)
            if len(currencies) == 1:
                return next(iter(currencies))
        return None
    return "PHP" if counts["PHP"] > counts["MYR"] else "MYR"


def parse_timestamp(value: str | None, local_utc_offset_hours: int = 8) -> datetime | None:
    """
    Converte o timestamp exibido no app em datetime UTC.

    Valores sem fuso são interpretados no horário local dos apps
    (UTC+8 para PH e MY).
    """
    if not value:
        return None
    text = re.sub(r"\s+", " ", value.strip()).replace(" ,", ",")
    local_tz = timezone(timedelta(hours=local_utc_offset_hours))

    parsed = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        cleaned = re.sub(r"(\d{4}),", r"\1", text)
        for fmt in TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(cleaned, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=local_tz)
    return parsed.astimezone(timezone.utc)


def extract_timestamps(text: str, local_utc_offset_hours: int = 8) -> list[datetime]:
    """Timestamps reconhecíveis no texto OCR, já em UTC."""
    found = []
    for m in _TIMESTAMP_IN_TEXT.finditer(text):
        ts = parse_timestamp(m.group(0), local_utc_offset_hours)
        if ts is not None and ts not in found:
            found.append(ts)
    return found
