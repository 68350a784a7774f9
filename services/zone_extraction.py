"""
Zone id extraction from provider exclusion payloads.

The ad network has returned the excluded-zone list under different field names across API
versions (`zone`, `zone_ids`, `zones`, `data`, ...), as bare arrays, and as arrays of objects.
Extraction is an ordered list of strategies; the first one that recognises the payload wins:

    1. configured_path  - the operator-supplied dotted path (PROVIDER_GET_BLACKLIST_JSON_PATH)
    2. root_list        - the payload itself is an array
    3. named_field      - a conventional top-level field, or one level below it
    4. deep_scan        - any array of primitives or zone-shaped objects anywhere in the payload

A strategy returns None when it does not apply, and a (possibly empty) list when it does, so
"the provider reported no zones" stays distinguishable from "the payload was not understood".
"""
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

# Conventional field names, probed in order.
ZONE_LIST_FIELDS = ('zone', 'zone_ids', 'zoneIds', 'zones', 'data', 'items', 'result')

# Keys that carry the zone id inside a zone-shaped object, in priority order.
ZONE_ID_KEYS = (
    'zone_id', 'zoneId', 'publisher_zone_id', 'publisherZoneId',
    'placement_id', 'placementId', 'id', 'zone', 'value', 'key',
)


@dataclass
class ExtractionResult:
    zones: List[str] = field(default_factory=list)
    strategy: Optional[str] = None

    @property
    def recognized(self):
        return self.strategy is not None


def normalize_zone_id(value) -> Optional[str]:
    """
    Canonicalises a zone id candidate to a trimmed string.

    Integral floats ("123.0" or 123.0) collapse to their integer form so ids read back from
    loosely-typed JSON compare equal to ids stored in the ledger. Booleans, containers and
    blank strings are not zone ids.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value != value or value in (float('inf'), float('-inf')):
            return None
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit():
            return text
        try:
            as_float = float(text)
        except ValueError:
            return text
        if as_float.is_integer() and '.' in text:
            return str(int(as_float))
        return text
    return None


def zone_id_from_object(obj: dict) -> Optional[str]:
    for key in ZONE_ID_KEYS:
        if key in obj and obj[key] is not None and not isinstance(obj[key], (dict, list)):
            return normalize_zone_id(obj[key])
    return None


def _is_zone_like(item) -> bool:
    if isinstance(item, dict):
        return zone_id_from_object(item) is not None
    return normalize_zone_id(item) is not None


def zone_ids_from_list(items) -> List[str]:
    """Maps a list of primitives and/or zone objects to unique zone ids, first-seen order."""
    seen = set()
    zones = []
    for item in items:
        zone_id = zone_id_from_object(item) if isinstance(item, dict) else normalize_zone_id(item)
        if zone_id is None or zone_id in seen:
            continue
        seen.add(zone_id)
        zones.append(zone_id)
    return zones


def resolve_json_path(payload, path: Optional[str]):
    """Walks a dotted path ('data.zone_ids', 'items.0.zones'). Returns None if any step is missing."""
    if not path:
        return None
    node = payload
    for key in path.split('.'):
        if not key:
            continue
        if isinstance(node, dict):
            node = node.get(key)
        elif isinstance(node, list) and key.isdigit() and int(key) < len(node):
            node = node[int(key)]
        else:
            return None
        if node is None:
            return None
    return node


def from_configured_path(payload, json_path=None):
    node = resolve_json_path(payload, json_path)
    if isinstance(node, list):
        return zone_ids_from_list(node)
    return None


def from_root_list(payload, json_path=None):
    if isinstance(payload, list):
        return zone_ids_from_list(payload)
    return None


def from_named_fields(payload, json_path=None):
    if not isinstance(payload, dict):
        return None
    for name in ZONE_LIST_FIELDS:
        node = payload.get(name)
        if isinstance(node, list):
            return zone_ids_from_list(node)
    # Envelopes such as {"data": {"zone_ids": [...]}}.
    for name in ZONE_LIST_FIELDS:
        node = payload.get(name)
        if isinstance(node, dict):
            for inner in ZONE_LIST_FIELDS:
                if isinstance(node.get(inner), list):
                    return zone_ids_from_list(node[inner])
    return None


def from_deep_scan(payload, json_path=None):
    """
    Structural fallback: collects ids from every non-empty array whose elements are all
    primitives or zone-shaped objects, wherever it sits in the payload.
    """
    found = []
    matched = False
    stack = [payload]
    while stack:
        node = stack.pop()
        if isinstance(node, list):
            if node and all(_is_zone_like(item) for item in node):
                matched = True
                found.extend(zone_ids_from_list(node))
                continue
            stack.extend(reversed(node))
        elif isinstance(node, dict):
            stack.extend(reversed(list(node.values())))
    if not matched:
        return None
    return zone_ids_from_list(found)


STRATEGIES: Tuple[Tuple[str, Callable[..., Any]], ...] = (
    ('configured_path', from_configured_path),
    ('root_list', from_root_list),
    ('named_field', from_named_fields),
    ('deep_scan', from_deep_scan),
)


def extract_zone_ids(payload, json_path: Optional[str] = None) -> ExtractionResult:
    """Runs the extraction strategies in order and reports which one matched."""
    for name, strategy in STRATEGIES:
        zones = strategy(payload, json_path)
        if zones is not None:
            return ExtractionResult(zones=zones, strategy=name)
    return ExtractionResult()
