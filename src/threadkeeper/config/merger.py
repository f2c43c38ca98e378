"""
Configuration merger for threadkeeper.

Layers later config files over earlier ones. List-valued settings such
as ``rotation.extra_stopwords`` can be extended with a ``+key`` or
reduced with a ``-key`` instead of being replaced.
"""

from typing import Any


def _apply_list_op(current: Any, op: str, items: list[Any]) -> list[Any] | None:
    if not isinstance(current, list):
        return list(items) if op == "+" else None
    if op == "+":
        return current + [item for item in items if item not in current]
    return [item for item in current if item not in items]


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Merge ``override`` onto ``base`` without mutating either.

    Nested sections merge recursively, ``None`` deletes a key, ``+key``
    appends missing list items and ``-key`` removes list items. Anything
    else replaces the base value.

    Examples:
        >>> deep_merge({"extra_stopwords": ["foo"]}, {"+extra_stopwords": ["bar"]})
        {'extra_stopwords': ['foo', 'bar']}
    """
    merged = dict(base)

    for key, value in override.items():
        if key[:1] in ("+", "-") and isinstance(value, list):
            name = key[1:]
            updated = _apply_list_op(merged.get(name), key[0], value)
            if updated is not None:
                merged[name] = updated
            continue

        if value is None:
            merged.pop(key, None)
        elif isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value

    return merged


def set_nested_value(config: dict[str, Any], key_path: str, value: Any) -> dict[str, Any]:
    """Set ``value`` at a dotted path such as ``rotation.timezone``, creating sections."""
    *parents, leaf = key_path.split(".")
    section = config
    for key in parents:
        if not isinstance(section.get(key), dict):
            section[key] = {}
        section = section[key]
    section[leaf] = value
    return config
