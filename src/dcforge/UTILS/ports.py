"""
Helpers for comma-separated option values and forwarded port lists.
"""
from typing import Any, Iterable, List, Optional, Union

Port = Union[int, str]


def split_csv(value: Optional[Union[str, Iterable[str]]]) -> List[str]:
    """
    Split a comma-separated string into trimmed, non-empty items.
    Lists are accepted too so callers can pass either form.
    """
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = list(value)
    return [str(part).strip() for part in parts if str(part).strip()]


def normalize_port(value: Any) -> Any:
    """
    Turn "3000" into 3000. Anything that is not a plain integer is returned
    unchanged (strings stripped) so validation can report it.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.isascii() and text.isdigit():
            return int(text)
        return text
    return value


def parse_port_list(value: Optional[Union[str, Iterable[Any]]]) -> List[Port]:
    """
    Parse "3000, 8080" (or a list) into normalised ports, keeping invalid entries.
    """
    if value is None:
        return []
    if isinstance(value, str):
        items: List[Any] = split_csv(value)
    else:
        items = list(value)
    return [normalize_port(item) for item in items]


def _port_key(value: Any):
    return (type(value).__name__, repr(value))


def dedupe_ports(ports: Iterable[Any]) -> List[Port]:
    """Normalise then drop repeats, keeping the first occurrence of each port."""
    seen = set()
    result = []
    for port in ports:
        port = normalize_port(port)
        key = _port_key(port)
        if key in seen:
            continue
        seen.add(key)
        result.append(port)
    return result


def is_valid_port(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 65535
