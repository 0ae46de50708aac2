"""Change detection between two record sets of the same airport code."""
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass
class ChangeSet:
    """Records present only in the new set, and only in the previous set."""
    added: List[Any] = field(default_factory=list)
    removed: List[Any] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed)


def _field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def record_key(record: Any) -> str:
    """
    Identity key for a record: id, else notice number, else a content fingerprint.

    Works on NotamRecord instances and on plain mappings (e.g. cached dicts).
    """
    record_id = _field(record, 'id')
    if record_id:
        return f"id:{record_id}"
    number = _field(record, 'number')
    if number:
        return f"number:{number}"

    fingerprint = '|'.join(
        str(_field(record, name) or '') for name in ('code', 'summary', 'body', 'valid_from')
    )
    return "sha1:" + hashlib.sha1(fingerprint.encode('utf-8')).hexdigest()


def diff(previous: Optional[Iterable[Any]], new: Optional[Iterable[Any]]) -> ChangeSet:
    """
    Compare two record collections by identity key.

    None is treated as an empty collection. Order within ``added`` and
    ``removed`` follows the input order.

    Args:
        previous: Records from the last successful fetch
        new: Records from the current fetch

    Returns:
        ChangeSet
    """
    previous = list(previous or [])
    new = list(new or [])

    previous_keys = {record_key(r) for r in previous}
    new_keys = {record_key(r) for r in new}

    added = [r for r in new if record_key(r) not in previous_keys]
    removed = [r for r in previous if record_key(r) not in new_keys]

    if added or removed:
        logger.debug(f"Diff: {len(added)} added, {len(removed)} removed")
    return ChangeSet(added=added, removed=removed)
