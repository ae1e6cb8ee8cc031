"""
Pure data operations for data_transform and combine nodes.

None of these call out to providers or storage. They receive the node's
resolved slot values and return the node's primary output.
"""

import json
from typing import Any, Callable, Dict, List

from .context import MISSING, lookup_path


def _first_value(values: Dict[str, Any], parameters: Dict[str, Any]) -> Any:
    source = parameters.get("source")
    if source:
        if source not in values:
            raise ValueError(f"source slot '{source}' is not an input of this node")
        return values[source]
    if not values:
        raise ValueError("node has no inputs")
    return next(iter(values.values()))


def identity(values: Dict[str, Any], parameters: Dict[str, Any]) -> Any:
    """Single input passes through; several inputs become an object."""
    if len(values) == 1:
        return next(iter(values.values()))
    return dict(values)


def pick(values: Dict[str, Any], parameters: Dict[str, Any]) -> Any:
    path = parameters.get("path")
    if not path:
        raise ValueError("pick requires a 'path' parameter")
    value = lookup_path(_first_value(values, parameters), path)
    if value is MISSING:
        if "default" in parameters:
            return parameters["default"]
        raise ValueError(f"path '{path}' not found")
    return value


def flatten(values: Dict[str, Any], parameters: Dict[str, Any]) -> List[Any]:
    value = _first_value(values, parameters)
    if not isinstance(value, list):
        raise ValueError(f"flatten expects a list, got {type(value).__name__}")
    flat: List[Any] = []
    for item in value:
        if isinstance(item, list):
            flat.extend(item)
        else:
            flat.append(item)
    return flat


def json_parse(values: Dict[str, Any], parameters: Dict[str, Any]) -> Any:
    value = _first_value(values, parameters)
    if not isinstance(value, str):
        return value
    return parse_json_text(value)


def merge_by_index(values: Dict[str, Any], parameters: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Attach items of other lists to the items of a base list by position.

    Parameters:
        base: Slot holding the list of objects to extend
        fields: {field_name: slot_name} for each list to merge in

    Example:
        personas=[{"name": "Ana"}], images=[{"index": 0, "url": "u"}]
        base="personas", fields={"image": "images"}
        -> [{"name": "Ana", "image": {"index": 0, "url": "u"}}]
    """
    base_slot = parameters.get("base")
    fields = parameters.get("fields") or {}
    if not base_slot or base_slot not in values:
        raise ValueError("merge_by_index requires a 'base' parameter naming an input slot")

    base = values[base_slot]
    if not isinstance(base, list):
        raise ValueError(f"base slot '{base_slot}' must hold a list")

    merged = []
    for i, item in enumerate(base):
        record = dict(item) if isinstance(item, dict) else {"value": item}
        for field_name, slot in fields.items():
            others = values.get(slot)
            record[field_name] = others[i] if isinstance(others, list) and i < len(others) else None
        merged.append(record)
    return merged


def parse_json_text(text: str) -> Any:
    """Parse model output as JSON, tolerating Markdown code fences."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return json.loads(cleaned.strip())


TRANSFORMS: Dict[str, Callable[[Dict[str, Any], Dict[str, Any]], Any]] = {
    "identity": identity,
    "pick": pick,
    "flatten": flatten,
    "json_parse": json_parse,
    "merge_by_index": merge_by_index,
}


def combine(values: Dict[str, Any], mode: str, separator: str) -> Any:
    """Aggregate every input slot, in slot order."""
    if mode == "object":
        return dict(values)
    if mode == "list":
        return list(values.values())
    if mode == "concat":
        parts = []
        for value in values.values():
            if value is None:
                continue
            parts.append(value if isinstance(value, str) else json.dumps(value, ensure_ascii=False))
        return separator.join(parts)
    raise ValueError(f"Unknown combine mode: {mode}")
