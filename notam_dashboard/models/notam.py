"""NOTAM domain model."""
import re
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Iterable, Union
from dataclasses import dataclass, field, asdict
from enum import Enum

from notam_dashboard.errors import InvalidAirportCodeError


ICAO_CODE_RE = re.compile(r'^[A-Z]{4}$')


class Category(Enum):
    """Coarse NOTAM category, derived locally from the Q-code or the text."""
    RUNWAY_CLOSURE = "rwy"
    TAXIWAY_CLOSURE = "twy"
    RUNWAY_CONDITION = "rsc"
    FRICTION_INDEX = "crfi"
    NAVIGATION_AID = "ils"
    FUEL = "fuel"
    CANCELLED = "cancelled"
    OTHER = "other"

    @property
    def title(self) -> str:
        return CATEGORY_TITLES[self]

    @property
    def priority(self) -> int:
        """Sort priority, lower first."""
        return CATEGORY_PRIORITIES[self]


CATEGORY_TITLES = {
    Category.RUNWAY_CLOSURE: "RUNWAY CLOSURE",
    Category.TAXIWAY_CLOSURE: "TAXIWAY CLOSURE",
    Category.RUNWAY_CONDITION: "RUNWAY CONDITIONS",
    Category.FRICTION_INDEX: "FRICTION INDEX",
    Category.NAVIGATION_AID: "ILS/NAV AID",
    Category.FUEL: "FUEL SERVICES",
    Category.CANCELLED: "CANCELLED",
    Category.OTHER: "GENERAL NOTAM",
}

CATEGORY_PRIORITIES = {
    Category.RUNWAY_CLOSURE: 1,
    Category.TAXIWAY_CLOSURE: 2,
    Category.RUNWAY_CONDITION: 3,
    Category.FRICTION_INDEX: 4,
    Category.NAVIGATION_AID: 5,
    Category.FUEL: 6,
    Category.OTHER: 7,
    Category.CANCELLED: 8,
}


class Source(Enum):
    """Which upstream provider produced a record."""
    PRIMARY = "primary"      # FAA NOTAM API
    SECONDARY = "secondary"  # NAV CANADA CFPS

    @classmethod
    def parse(cls, value: Any) -> 'Source':
        """Map an envelope ``source`` tag to a Source, defaulting to PRIMARY."""
        if isinstance(value, cls):
            return value
        text = str(value or '').strip().lower()
        if text in ('secondary', 'navcan', 'nav canada') or text.startswith('navcan'):
            return cls.SECONDARY
        return cls.PRIMARY


class FetchStatus(Enum):
    """Per airport code fetch state."""
    QUEUED = "queued"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


def normalize_code(code: Any) -> str:
    """Uppercase and strip a user-supplied airport code."""
    return str(code or '').strip().upper()


def is_valid_code(code: Any) -> bool:
    """True for exactly four uppercase letters."""
    return isinstance(code, str) and bool(ICAO_CODE_RE.match(code))


def validate_codes(codes: Iterable[Any]) -> List[str]:
    """
    Normalize a batch of codes, rejecting the whole batch if any is malformed.

    Duplicates are dropped, first occurrence order is kept.

    Raises:
        InvalidAirportCodeError: if one or more codes are malformed
    """
    result = []
    invalid = []
    for raw in codes:
        code = normalize_code(raw)
        if not is_valid_code(code):
            invalid.append(raw)
        elif code not in result:
            result.append(code)
    if invalid:
        raise InvalidAirportCodeError(invalid)
    return result


@dataclass
class NotamRecord:
    """Canonical NOTAM record for one airport, regardless of provider."""

    id: str
    code: str
    number: str = ''
    category: Category = Category.OTHER
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    issued: Optional[str] = None
    summary: str = ''
    body: str = ''
    q_line: str = ''
    source: Source = Source.PRIMARY
    notam_type: str = ''
    location: str = ''

    @property
    def is_permanent(self) -> bool:
        """No end of validity."""
        return self.valid_to is None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-friendly dictionary for the local cache."""
        result = asdict(self)
        result['category'] = self.category.value
        result['source'] = self.source.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NotamRecord':
        """Rebuild a record from :meth:`to_dict` output."""
        try:
            category = Category(data.get('category', 'other'))
        except ValueError:
            category = Category.OTHER
        return cls(
            id=data['id'],
            code=data['code'],
            number=data.get('number') or '',
            category=category,
            valid_from=data.get('valid_from'),
            valid_to=data.get('valid_to'),
            issued=data.get('issued'),
            summary=data.get('summary') or '',
            body=data.get('body') or '',
            q_line=data.get('q_line') or '',
            source=Source.parse(data.get('source')),
            notam_type=data.get('notam_type') or '',
            location=data.get('location') or '',
        )

    def __repr__(self) -> str:
        """Compact single-line representation."""
        return f"<NotamRecord {self.id} {self.category.value} {self.source.value}>"


@dataclass(frozen=True)
class NewNotamMarker:
    """UI highlight for a record detected as new; purged after the highlight window."""
    record_id: str
    code: str
    detected_at: float


@dataclass
class ScheduleQueueEntry:
    """A pending fetch inside the scheduler queue."""
    code: str
    retries: int = 0
    silent: bool = False
    generation: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Raw upstream items, decided once at the normalizer boundary
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StructuredItem:
    """Item with named fields (FAA geoJSON feature, flattened)."""
    fields: Dict[str, Any]
    kind: str = "structured"


@dataclass(frozen=True)
class FreeformItem:
    """Item carrying one block of ICAO-formatted text plus optional side fields."""
    text: str
    fields: Dict[str, Any] = field(default_factory=dict)
    kind: str = "freeform"


RawItem = Union[StructuredItem, FreeformItem]


@dataclass
class FetchResult:
    """Outcome of one Fetch Gateway call."""
    ok: bool
    records: List[NotamRecord] = field(default_factory=list)
    source: Optional[Source] = None
    error: Optional[str] = None
    details: Optional[str] = None

    @classmethod
    def success(cls, records: List[NotamRecord], source: Source = Source.PRIMARY) -> 'FetchResult':
        return cls(ok=True, records=list(records), source=source)

    @classmethod
    def failure(cls, error: str, details: Optional[str] = None) -> 'FetchResult':
        return cls(ok=False, error=error, details=details)


@dataclass
class ChangeEvent:
    """Change detection result for one code, published to the notification layer."""
    code: str
    added: List[NotamRecord]
    removed: List[NotamRecord]
    silent: bool = False
    detected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
