from collections.abc import Mapping
from typing import Any, Dict, Optional

from imaginify.errors import ValidationFailure


def deep_merge(existing: Mapping, new: Optional[Mapping]) -> Dict[str, Any]:
    """Merge ``new`` over ``existing`` and return a fresh dict.

    Keys present in ``new`` win. When both sides hold a mapping under the
    same key the two are merged recursively. Keys only in ``existing`` are
    kept. Neither argument is mutated.
    """
    if new is None and isinstance(existing, Mapping):
        return dict(existing)
    if not isinstance(existing, Mapping) or not isinstance(new, Mapping):
        raise ValidationFailure(
            f"Cannot merge {type(new).__name__} into {type(existing).__name__}"
        )

    output = dict(existing)
    for key, value in new.items():
        current = output.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            output[key] = deep_merge(current, value)
        elif isinstance(value, Mapping):
            output[key] = deep_merge({}, value)
        else:
            output[key] = value
    return output
