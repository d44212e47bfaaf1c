"""
Defensive coercion of loosely-structured backend output.

Backends are asked for a specific JSON shape but regularly wrap arrays in
objects, return a single object instead of an array, or surround the JSON
with prose. The functions here recover the canonical shapes and report the
outcome as one of three variants:

* ``FieldList``   - field definitions recovered from a detection run
* ``FieldValues`` - a flat field name -> value map recovered from a merge
* ``Empty``       - nothing usable was recovered

They are pure and total: malformed input yields ``Empty``, never an exception.
"""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Set, Union

from dualscan.constants import NON_FIELD_KEYS
from dualscan.envelope import load_json
from dualscan.models import FieldDefinition, MergedExtraction, StructuredExtraction

_EXTRACTION_ENVELOPE_KEYS = frozenset({"text", "confidence", "metadata"})
_MAX_UNWRAP_DEPTH = 4


@dataclass(frozen=True)
class FieldList:
    fields: List[FieldDefinition] = field(default_factory=list)


@dataclass(frozen=True)
class FieldValues:
    values: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Empty:
    reason: str = ""


EMPTY = Empty()

FieldListOutcome = Union[FieldList, Empty]
FieldValuesOutcome = Union[FieldValues, Empty]


def _decode(value: Any) -> Any:
    if isinstance(value, (StructuredExtraction, MergedExtraction)):
        return value.to_dict()
    if isinstance(value, str):
        return load_json(value)
    return value


def _envelope_key(value: Dict[str, Any]) -> Optional[str]:
    if "mergedText" in value:
        return "mergedText"
    # A form may legitimately have a field called "text"
    if "text" in value and set(value) <= _EXTRACTION_ENVELOPE_KEYS:
        return "text"
    return None


def _unwrap_envelope(value: Any) -> Any:
    """Peel ``mergedText``/``text`` envelopes, decoding JSON-encoded payloads on the way."""
    value = _decode(value)
    for _ in range(_MAX_UNWRAP_DEPTH):
        if not isinstance(value, dict):
            break
        key = _envelope_key(value)
        if key is None:
            break
        inner = value[key]
        if isinstance(inner, str):
            decoded = load_json(inner)
            # Plain prose inside the envelope carries no structure
            if decoded is None:
                return None
            inner = decoded
        value = inner
    return value


def _looks_like_field(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    has_type = any(key in value for key in ("fieldType", "field_type"))
    return bool(value.get("name")) and has_type


def _find_field_array(value: Any) -> Optional[List[Any]]:
    # (a) already an array
    if isinstance(value, list):
        return value
    if not isinstance(value, dict):
        return None
    # (b) an object whose single property is an array
    if len(value) == 1:
        only = next(iter(value.values()))
        if isinstance(only, list):
            return only
    # (c) a single field definition
    if _looks_like_field(value):
        return [value]
    # (d) nothing usable
    return None


def _canonical_fields(items: List[Any]) -> List[FieldDefinition]:
    """Drop unnamed and duplicate entries and renumber order densely from 1."""
    fields: List[FieldDefinition] = []
    seen: Set[str] = set()
    for item in items:
        if isinstance(item, FieldDefinition):
            definition = replace(item)
        elif isinstance(item, dict):
            definition = FieldDefinition.from_dict(item)
        else:
            continue
        if not definition.name or definition.name in seen:
            continue
        seen.add(definition.name)
        fields.append(definition)

    # Entries without a usable order keep their position after the ordered ones
    fields.sort(key=lambda f: (f.order <= 0, max(f.order, 0)))
    for index, definition in enumerate(fields, start=1):
        definition.order = index
    return fields


def normalize_fields(raw: Any) -> FieldListOutcome:
    """
    Recover a list of field definitions from a detection reply.

    Tried in order, first match wins: the value is an array; the value is an
    object with exactly one property holding an array; the value is a single
    field definition. Anything else is ``Empty``.

    Args:
        raw: Reply text, decoded JSON, an envelope or a previous ``FieldList``

    Returns:
        FieldList with at least one field, or Empty
    """
    if isinstance(raw, FieldList):
        return raw if raw.fields else EMPTY

    value = _unwrap_envelope(raw)
    items = _find_field_array(value)
    if items is None:
        return Empty("no field array found")

    fields = _canonical_fields(items)
    if not fields:
        return Empty("field array held no named fields")
    return FieldList(fields=fields)


def normalize_values(raw: Any) -> FieldValuesOutcome:
    """
    Recover a flat field name -> value map from a reconciled extraction.

    Envelopes are unwrapped, JSON-encoded payloads decoded and arrays reduced
    to their first element. Nested objects and well-known non-field keys
    (analysis, error, success, message, details) are discarded.

    Args:
        raw: Stored merge output, decoded JSON or a previous ``FieldValues``

    Returns:
        FieldValues with at least one entry, or Empty
    """
    if isinstance(raw, FieldValues):
        return raw if raw.values else EMPTY

    value = _unwrap_envelope(raw)
    if isinstance(value, list):
        value = value[0] if value else None
        value = _unwrap_envelope(value)
    if not isinstance(value, dict):
        return Empty("no field map found")

    values = {
        str(key): item
        for key, item in value.items()
        if key not in NON_FIELD_KEYS and not isinstance(item, dict)
    }
    if not values:
        return Empty("field map held no leaf values")
    return FieldValues(values=values)
