from __future__ import annotations

from .errors import InvalidName


def clean_name(value: str | None, *, label: str = "Name") -> str:
    """Strip a display name, rejecting blanks."""
    name = (value or "").strip()
    if not name:
        raise InvalidName(f"{label} must not be empty.")
    return name
