"""Locate the NOTAM item list inside an upstream JSON payload.

Upstream payloads come in several shapes (bare lists, ``items``, ``alpha``,
``report.notams`` ...). Each shape is an :class:`ExtractionStrategy`; the first
strategy whose predicate matches extracts the list.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Sequence

logger = logging.getLogger(__name__)

NOTAM_FIELDS = (
    'id', 'notamId', 'number', 'text', 'raw', 'message', 'summary',
    'start', 'end', 'issued', 'site', 'icao', 'properties', 'icaoMessage',
)


@dataclass(frozen=True)
class ExtractionStrategy:
    """A named predicate + extractor pair."""
    name: str
    matches: Callable[[Any, str], bool]
    extract: Callable[[Any, str], List[Any]]


def looks_like_notam(obj: Any) -> bool:
    """Check whether a dict carries any field a NOTAM item usually has."""
    return isinstance(obj, dict) and any(key in obj for key in NOTAM_FIELDS)


def _list_at(*path: str) -> Callable[[Any, str], bool]:
    def matches(payload: Any, code: str) -> bool:
        node = payload
        for key in path:
            if not isinstance(node, dict) or key not in node:
                return False
            node = node[key]
        return isinstance(node, list)
    return matches


def _get_at(*path: str) -> Callable[[Any, str], List[Any]]:
    def extract(payload: Any, code: str) -> List[Any]:
        node = payload
        for key in path:
            node = node[key]
        return list(node)
    return extract


def _report_object(payload: Any, code: str) -> bool:
    return isinstance(payload, dict) and isinstance(payload.get('report'), dict)


def _code_keyed(payload: Any, code: str) -> bool:
    if not isinstance(payload, dict) or code not in payload:
        return False
    node = payload[code]
    return isinstance(node, list) or (isinstance(node, dict) and isinstance(node.get('notams'), list))


def _extract_code_keyed(payload: Any, code: str) -> List[Any]:
    node = payload[code]
    return list(node if isinstance(node, list) else node['notams'])


def _first_notam_list(payload: Any, code: str) -> bool:
    return isinstance(payload, dict) and any(
        isinstance(value, list) and value and looks_like_notam(value[0])
        for value in payload.values()
    )


def _extract_first_notam_list(payload: Any, code: str) -> List[Any]:
    for key, value in payload.items():
        if isinstance(value, list) and value and looks_like_notam(value[0]):
            logger.debug(f"Found NOTAM data for {code} in key: {key}")
            return list(value)
    return []


DEFAULT_STRATEGIES: Sequence[ExtractionStrategy] = (
    ExtractionStrategy('list', lambda p, c: isinstance(p, list), lambda p, c: list(p)),
    ExtractionStrategy('items', _list_at('items'), _get_at('items')),
    ExtractionStrategy('alpha', _list_at('alpha'), _get_at('alpha')),
    ExtractionStrategy('notams', _list_at('notams'), _get_at('notams')),
    ExtractionStrategy('data', _list_at('data'), _get_at('data')),
    ExtractionStrategy('report.notams', _list_at('report', 'notams'), _get_at('report', 'notams')),
    ExtractionStrategy('report.alpha', _list_at('report', 'alpha'), _get_at('report', 'alpha')),
    ExtractionStrategy('report', _report_object, lambda p, c: [p['report']]),
    ExtractionStrategy('code', _code_keyed, _extract_code_keyed),
    ExtractionStrategy('first-notam-list', _first_notam_list, _extract_first_notam_list),
)

# The FAA API always wraps its features in ``items``; anything else is malformed.
PRIMARY_STRATEGIES: Sequence[ExtractionStrategy] = (
    ExtractionStrategy('items', _list_at('items'), _get_at('items')),
)


def find_strategy(payload: Any, code: str,
                  strategies: Sequence[ExtractionStrategy] = DEFAULT_STRATEGIES):
    """Return the first strategy matching ``payload``, or None."""
    for strategy in strategies:
        if strategy.matches(payload, code):
            return strategy
    return None


def extract_items(payload: Any, code: str,
                  strategies: Sequence[ExtractionStrategy] = DEFAULT_STRATEGIES) -> List[Any]:
    """
    Extract the raw item list from an upstream payload.

    Args:
        payload: Decoded JSON body
        code: Airport code the payload was requested for
        strategies: Ordered strategies to try

    Returns:
        The item list of the first matching strategy, or an empty list
    """
    strategy = find_strategy(payload, code, strategies)
    if strategy is None:
        logger.debug(f"No extraction strategy matched payload for {code}: {type(payload).__name__}")
        return []
    items = strategy.extract(payload, code)
    logger.debug(f"Extracted {len(items)} item(s) for {code} using '{strategy.name}'")
    return items
