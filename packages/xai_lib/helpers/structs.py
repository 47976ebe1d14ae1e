# packages/xai_lib/helpers/structs.py

from typing import Any, Dict, Mapping


def flatten_dict(d: Mapping, parent_key: str = "", sep: str = ".") -> Dict[str, Any]:
    """
    Flattens nested situational context into dotted keys.
    Example: {"weather": {"wind_speed": 22}} -> {"weather.wind_speed": 22}
    Lists and other values are kept as leaves.
    """
    flat: Dict[str, Any] = {}
    for key, value in d.items():
        path = f"{parent_key}{sep}{key}" if parent_key else str(key)
        if isinstance(value, Mapping):
            flat.update(flatten_dict(value, path, sep=sep))
        else:
            flat[path] = value
    return flat
