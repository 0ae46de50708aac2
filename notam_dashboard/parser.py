"""Parser module: turns raw upstream NOTAM items into NotamRecord instances."""
import html
import json
import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from notam_dashboard.models.notam import (
    Category,
    FreeformItem,
    NotamRecord,
    RawItem,
    Source,
    StructuredItem,
    is_valid_code,
    normalize_code,
)

logger = logging.getLogger(__name__)


LABEL_RE = re.compile(r'^([A-Z])\)\s*(.*)$')
INLINE_LABEL_RE = re.compile(r'\s+(?=[A-GQ]\)\s)')
LABELLED_TEXT_RE = re.compile(r'(^|\n)\s*[BCEQ]\)', re.MULTILINE)
NOTAM_NUMBER_RE = re.compile(r'\b([A-Z]\d{1,4}/\d{2})\b')
NOTAM_TYPE_RE = re.compile(r'\bNOTAM([NRC])\b')
DATE_TOKEN_RE = re.compile(r'(\d{12}|\d{10}|PERM)')
FRENCH_MARK_RE = re.compile(r'\b(FR|FRENCH):')
Q_CODE_RE = re.compile(r'/(Q[A-Z]{2,4})(?=/|\s|$)')

ISO_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}')
FAA_DATE_RE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})(?:\s+(\d{2}):?(\d{2}))?$')
TZ_SUFFIX_RE = re.compile(r'\s*(EST|UTC|GMT)$')

SUMMARY_MIN_SENTENCE = 20
SUMMARY_MAX_SENTENCE = 150
SUMMARY_MAX_CHARS = 180

# Field names that mark a dict as already structured
STRUCTURED_KEYS = (
    'number', 'notamNumber', 'effectiveStart', 'effectiveEnd', 'validFrom', 'validTo',
    'body', 'summary', 'simpleText', 'classification', 'qLine',
)

ABBREVIATIONS = (
    (re.compile(r'\bDEP\b'), 'DEPARTURE'),
    (re.compile(r'\bEXP\b'), 'EXPECT'),
    (re.compile(r'\bDLA\b'), 'DELAY'),
    (re.compile(r'\bCTC\b'), 'CONTACT'),
    (re.compile(r'\bFIR\b'), 'FLIGHT INFORMATION REGION'),
    (re.compile(r'\bIFR\b'), 'INSTRUMENT FLIGHT RULES'),
    (re.compile(r'\bU/S\b'), 'UNSERVICEABLE'),
    (re.compile(r'\bCLSD\b'), 'CLOSED'),
    (re.compile(r'\bRWY\b'), 'RUNWAY'),
    (re.compile(r'\bTWY\b'), 'TAXIWAY'),
)

# Q-code prefix -> category, longest prefixes first
Q_CODE_CATEGORIES = (
    ('QMRLC', Category.RUNWAY_CLOSURE),   # Runway closed
    ('QMXLC', Category.TAXIWAY_CLOSURE),  # Taxiway closed
    ('QFU', Category.FUEL),               # Fuel availability
    ('QI', Category.NAVIGATION_AID),      # ILS and components
    ('QN', Category.NAVIGATION_AID),      # VOR, DME, NDB, TACAN
)

# At most two words between the subject and the closure keyword
_NEAR = r'(?:\s+[\w/,.-]+){0,2}\s+'

KEYWORD_CATEGORIES = (
    (re.compile(r'\b(RUNWAY|RWY)\b' + _NEAR + r'(CLSD|CLOSED|CLOSURE)\b'), Category.RUNWAY_CLOSURE),
    (re.compile(r'\b(CLSD|CLOSED)\s+(RUNWAY|RWY)\b'), Category.RUNWAY_CLOSURE),
    (re.compile(r'\b(TAXIWAY|TWY)\b' + _NEAR + r'(CLSD|CLOSED|CLOSURE)\b'), Category.TAXIWAY_CLOSURE),
    (re.compile(r'\b(CLSD|CLOSED)\s+(TAXIWAY|TWY)\b'), Category.TAXIWAY_CLOSURE),
    (re.compile(r'\b(RSC|RUNWAY\s+SURFACE\s+CONDITIONS?)\b'), Category.RUNWAY_CONDITION),
    (re.compile(r'\b(CRFI|FRICTION)\b'), Category.FRICTION_INDEX),
    (re.compile(r'\b(ILS|INSTRUMENT\s+LANDING|LOCALIZER|GLIDESLOPE|GLIDEPATH|VOR|DME|NDB|TACAN)\b'),
     Category.NAVIGATION_AID),
    (re.compile(r'\b(FUEL|REFUEL|AVGAS|JET\s*A(-1)?)\b'), Category.FUEL),
)


@dataclass
class FreeformParts:
    """Fields recovered from one block of ICAO-formatted NOTAM text."""
    number: str = ''
    notam_type: str = ''
    q_line: str = ''
    location: str = ''
    valid_from: str = ''
    valid_to: str = ''
    permanent: bool = False
    schedule: str = ''
    body_lines: List[str] = field(default_factory=list)

    @property
    def body(self) -> str:
        return ' '.join(self.body_lines)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse an upstream date into an aware UTC datetime.

    Accepted forms: ISO-8601 strings, ``YYMMDDHHmm``, ``YYYYMMDDHHmm``,
    FAA ``MM/DD/YYYY HHmm`` and ``PERM`` (returns None). Trailing
    EST/UTC/GMT markers are informational and dropped; NOTAM times are UTC.

    Returns:
        Aware datetime in UTC, or None when the value cannot be parsed
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        dt = value
    else:
        text = TZ_SUFFIX_RE.sub('', str(value).strip().upper())
        if not text or text == 'PERM':
            return None
        try:
            if ISO_DATE_RE.match(text):
                dt = datetime.fromisoformat(text.replace('Z', '+00:00'))
            elif re.fullmatch(r'\d{10}', text):
                yy = int(text[0:2])
                year = 2000 + yy if yy < 50 else 1900 + yy
                dt = datetime(year, int(text[2:4]), int(text[4:6]), int(text[6:8]), int(text[8:10]))
            elif re.fullmatch(r'\d{12}', text):
                dt = datetime(int(text[0:4]), int(text[4:6]), int(text[6:8]),
                              int(text[8:10]), int(text[10:12]))
            else:
                faa = FAA_DATE_RE.match(text)
                if not faa:
                    return None
                month, day, year, hour, minute = faa.groups()
                dt = datetime(int(year), int(month), int(day), int(hour or 0), int(minute or 0))
        except ValueError as e:
            logger.debug(f"Could not parse date '{value}': {e}")
            return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format as ``YYYY-MM-DDTHH:MM:SS.sssZ``."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S') + f'.{dt.microsecond // 1000:03d}Z'


def normalize_date(value: Any) -> Optional[str]:
    """Parse and re-format a date, or None if unparseable."""
    dt = parse_date(value)
    return format_iso(dt) if dt else None


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------

def clean_text(content: Optional[str]) -> str:
    """Unescape, collapse whitespace and expand common NOTAM abbreviations."""
    if not content:
        return ''
    text = re.sub(r'\s+', ' ', html.unescape(content)).strip()
    for pattern, replacement in ABBREVIATIONS:
        text = pattern.sub(replacement, text)
    return text


def make_summary(content: str) -> str:
    """First sentence when it has a sensible length, else a truncated body."""
    if not content:
        return ''
    first_sentence = re.split(r'[.!?]', content)[0].strip()
    if SUMMARY_MIN_SENTENCE < len(first_sentence) < SUMMARY_MAX_SENTENCE:
        return first_sentence
    if len(content) > SUMMARY_MAX_CHARS:
        return content[:SUMMARY_MAX_CHARS - 3].strip() + '...'
    return content.strip()


def extract_q_code(q_line: Optional[str]) -> str:
    """Pull the Q-code (e.g. ``QMRLC``) out of a Q-line."""
    if not q_line:
        return ''
    match = Q_CODE_RE.search(q_line)
    return match.group(1) if match else ''


def classify(text: str, q_line: str = '', cancelled: bool = False) -> Category:
    """
    Derive a category: Q-code table first, keyword rules second.

    Args:
        text: Summary and body text
        q_line: Raw Q-line, may be empty
        cancelled: The notice cancels another one

    Returns:
        Category, OTHER when nothing matches
    """
    if cancelled:
        return Category.CANCELLED

    q_code = extract_q_code(q_line)
    if q_code:
        for prefix, category in Q_CODE_CATEGORIES:
            if q_code.startswith(prefix):
                return category

    content = (text or '').upper()
    for pattern, category in KEYWORD_CATEGORIES:
        if pattern.search(content):
            return category
    return Category.OTHER


# ---------------------------------------------------------------------------
# Free-form ICAO text
# ---------------------------------------------------------------------------

def _segments(text: str) -> List[str]:
    segments = []
    for line in re.split(r'[\r\n]+', text):
        line = line.strip()
        if not line:
            continue
        if LABEL_RE.match(line):
            segments.extend(s.strip() for s in INLINE_LABEL_RE.split(line) if s.strip())
        else:
            segments.append(line)
    return segments


def _date_token(value: str) -> str:
    match = DATE_TOKEN_RE.search(value)
    return match.group(1) if match else ''


def parse_freeform_text(text: str) -> FreeformParts:
    """
    Parse ICAO-formatted NOTAM text line by line.

    Lines starting with a letter and ``)`` are labelled; unlabelled lines that
    follow ``E)`` continue the body until the next label. Text without any
    ``E)`` line is used whole as the body.
    """
    parts = FreeformParts()
    header_lines = []
    loose_lines = []
    in_body = False
    seen_label = False
    seen_body = False

    for segment in _segments(text or ''):
        match = LABEL_RE.match(segment)
        if match:
            seen_label = True
            label, value = match.group(1), match.group(2).strip()
            in_body = label == 'E'
            if label == 'Q':
                parts.q_line = segment
            elif label == 'A':
                parts.location = value.split()[0] if value else ''
            elif label == 'B':
                parts.valid_from = _date_token(value)
            elif label == 'C':
                parts.valid_to = _date_token(value)
                parts.permanent = parts.valid_to == 'PERM'
            elif label == 'D':
                parts.schedule = value
            elif label == 'E':
                seen_body = True
                if value:
                    parts.body_lines.append(value)
            continue

        if in_body:
            if FRENCH_MARK_RE.search(segment):
                in_body = False
                continue
            parts.body_lines.append(segment)
        elif not seen_label:
            header_lines.append(segment)
        else:
            loose_lines.append(segment)

    header = ' '.join(header_lines)
    number_match = NOTAM_NUMBER_RE.search(header)
    if number_match:
        parts.number = number_match.group(1)
    type_match = NOTAM_TYPE_RE.search(header)
    if type_match:
        parts.notam_type = type_match.group(1)

    if not seen_body:
        # No E) section: plain-language notice, use everything that is not a label
        parts.body_lines = header_lines + loose_lines

    if parts.permanent:
        parts.valid_to = ''
    return parts


# ---------------------------------------------------------------------------
# Boundary: decide the item shape once
# ---------------------------------------------------------------------------

def _first(fields: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = fields.get(key)
        if value not in (None, ''):
            return value
    return None


def _unwrap_json_text(text: str) -> str:
    """NAV CANADA sometimes nests ``{"raw": ..., "english": ...}`` in the text field."""
    stripped = text.strip()
    if not stripped.startswith('{'):
        return text
    try:
        nested = json.loads(stripped)
    except ValueError:
        return text
    if not isinstance(nested, dict):
        return text
    raw = nested.get('raw')
    if isinstance(raw, str) and LABELLED_TEXT_RE.search(raw):
        return raw
    return nested.get('english') or raw or text


def _flatten_feature(properties: Dict[str, Any]) -> Dict[str, Any]:
    core = properties.get('coreNOTAMData') or {}
    fields = dict(core.get('notam') or {})
    for translation in core.get('notamTranslation') or []:
        if not isinstance(translation, dict):
            continue
        if translation.get('simpleText') and 'simpleText' not in fields:
            fields['simpleText'] = translation['simpleText']
        if translation.get('formattedText') and 'formattedText' not in fields:
            fields['formattedText'] = translation['formattedText']
    return fields


def to_raw_item(item: Any) -> Optional[RawItem]:
    """
    Decide whether an upstream item is structured or free-form.

    Returns:
        StructuredItem, FreeformItem, or None when the shape is not recognised
    """
    if isinstance(item, (StructuredItem, FreeformItem)):
        return item
    if isinstance(item, str):
        return FreeformItem(text=item) if item.strip() else None
    if not isinstance(item, dict):
        return None

    properties = item.get('properties')
    if isinstance(properties, dict) and isinstance(properties.get('coreNOTAMData'), dict):
        return StructuredItem(fields=_flatten_feature(properties))

    icao_message = item.get('icaoMessage')
    if isinstance(icao_message, str) and icao_message.strip():
        return FreeformItem(text=icao_message, fields=item)

    text = _first(item, 'raw', 'text', 'message', 'fullText')
    has_structured_keys = any(key in item for key in STRUCTURED_KEYS)
    if isinstance(text, str) and text.strip():
        text = _unwrap_json_text(text)
        if not has_structured_keys or LABELLED_TEXT_RE.search(text):
            return FreeformItem(text=text, fields=item)

    if has_structured_keys:
        return StructuredItem(fields=dict(item))
    return None


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def _is_cancel(notam_type: str, fields: Dict[str, Any], text: str) -> bool:
    return (
        notam_type == 'C'
        or bool(fields.get('cancelledOrExpired'))
        or 'NOTAMC' in (text or '')
    )


def _from_structured(item: StructuredItem, code: str, index_hint: int, source: Source) -> Optional[NotamRecord]:
    fields = item.fields
    body = clean_text(_first(fields, 'text', 'body', 'simpleText', 'formattedText', 'summary'))
    explicit_summary = clean_text(_first(fields, 'summary'))
    if not body and not explicit_summary:
        logger.warning(f"Skipping structured item {index_hint} for {code}: no text content")
        return None
    body = body or explicit_summary

    number = str(_first(fields, 'number', 'notamNumber', 'notamId', 'id') or '')

    q_line = _first(fields, 'qLine') or ''
    formatted = _first(fields, 'formattedText') or ''
    if not q_line and 'Q)' in formatted:
        q_line = next((line for line in formatted.splitlines() if 'Q)' in line), '')

    raw_type = str(_first(fields, 'type') or '').upper()
    notam_type = raw_type if re.fullmatch(r'[A-Z]', raw_type) else ''

    valid_from = normalize_date(_first(fields, 'effectiveStart', 'validFrom', 'startDate', 'start'))
    valid_to = normalize_date(_first(fields, 'effectiveEnd', 'validTo', 'endDate', 'end'))
    issued = normalize_date(_first(fields, 'issued', 'issueDate', 'issuedDate')) or valid_from
    valid_from = valid_from or issued

    summary = make_summary(explicit_summary or body)
    cancelled = _is_cancel(notam_type, fields, _first(fields, 'text') or '')

    return NotamRecord(
        id=f"{code}-{number or index_hint}",
        code=code,
        number=number,
        category=classify(f"{summary} {body}", q_line, cancelled),
        valid_from=valid_from,
        valid_to=valid_to,
        issued=issued,
        summary=summary,
        body=body,
        q_line=q_line,
        source=source,
        notam_type=notam_type,
        location=str(_first(fields, 'icaoLocation', 'location', 'site', 'icao') or code),
    )


def _from_freeform(item: FreeformItem, code: str, index_hint: int, source: Source) -> Optional[NotamRecord]:
    parts = parse_freeform_text(item.text)
    body = clean_text(parts.body)
    if not body:
        logger.warning(f"Skipping free-form item {index_hint} for {code}: empty body")
        return None

    fields = item.fields
    number = parts.number or str(_first(fields, 'notamNumber', 'notamId', 'number', 'id') or '')

    valid_from = (normalize_date(parts.valid_from)
                  or normalize_date(_first(fields, 'startDate', 'start', 'startValidity', 'validFrom')))
    if parts.permanent:
        valid_to = None
    else:
        valid_to = (normalize_date(parts.valid_to)
                    or normalize_date(_first(fields, 'endDate', 'end', 'endValidity', 'validTo')))
    issued = normalize_date(_first(fields, 'issueDate', 'issued', 'issuedDate')) or valid_from

    raw_type = str(_first(fields, 'type') or '').upper()
    notam_type = parts.notam_type or (raw_type if re.fullmatch(r'[A-Z]', raw_type) else '')

    summary = make_summary(body)
    cancelled = _is_cancel(notam_type, fields, item.text)

    return NotamRecord(
        id=f"{code}-{number or index_hint}",
        code=code,
        number=number,
        category=classify(f"{summary} {body}", parts.q_line, cancelled),
        valid_from=valid_from,
        valid_to=valid_to,
        issued=issued,
        summary=summary,
        body=body,
        q_line=parts.q_line,
        source=source,
        notam_type=notam_type,
        location=parts.location or str(_first(fields, 'site', 'icao', 'facilityDesignator') or code),
    )


def normalize(raw_item: Any, code: str, index_hint: int, source: Source = Source.PRIMARY) -> Optional[NotamRecord]:
    """
    Convert one upstream item into a NotamRecord.

    Never raises: a malformed item yields None so the rest of the batch
    can still be processed.

    Args:
        raw_item: Item as received from either provider
        code: Airport code the item was fetched for
        index_hint: Position of the item in its batch, used for the id when
            the item has no notice number
        source: Provider that served the item

    Returns:
        NotamRecord or None
    """
    try:
        code = normalize_code(code)
        if not is_valid_code(code):
            logger.warning(f"Refusing to normalize item for invalid code '{code}'")
            return None

        item = to_raw_item(raw_item)
        if item is None:
            logger.warning(f"Unrecognised NOTAM item {index_hint} for {code}: {type(raw_item).__name__}")
            return None

        if isinstance(item, FreeformItem):
            return _from_freeform(item, code, index_hint, source)
        return _from_structured(item, code, index_hint, source)

    except Exception as e:
        logger.warning(f"Failed to normalize NOTAM item {index_hint} for {code}: {e}")
        return None


def normalize_batch(items: Iterable[Any], code: str, source: Source = Source.PRIMARY) -> List[NotamRecord]:
    """
    Normalize a batch, dropping failures and keeping ids unique.

    Returns:
        List of records in batch order
    """
    records = []
    seen_ids = set()
    for index, raw_item in enumerate(items or []):
        record = normalize(raw_item, code, index, source)
        if record is None:
            continue
        if record.id in seen_ids:
            record.id = f"{record.id}-{index}"
        seen_ids.add(record.id)
        records.append(record)
    return records
