"""
Record (de)serialization helpers shared by the domain dataclasses.

The local store keeps plain JSON-safe dicts, so datetimes travel as ISO strings.
"""

from dataclasses import asdict, fields
from datetime import UTC, datetime
from typing import Any


def dt_to_str(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def str_to_dt(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def dump_record(obj: Any) -> dict[str, Any]:
    """Convert a domain dataclass to a JSON-safe dict."""
    data = asdict(obj)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = dt_to_str(value)
    return data


def load_record(cls: type, data: dict[str, Any], datetime_fields: tuple[str, ...]):
    """Build a domain dataclass from a stored dict, ignoring unknown keys."""
    known = {f.name for f in fields(cls)}
    kwargs = {key: value for key, value in data.items() if key in known}
    for name in datetime_fields:
        if name in kwargs:
            kwargs[name] = str_to_dt(kwargs[name])
    return cls(**kwargs)
