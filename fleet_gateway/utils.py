"""
Pure helpers for shaping upstream telemetry records.

All functions are stateless; upstream bodies are treated as loosely typed
JSON and every accessor tolerates missing or malformed fields.
"""

from __future__ import annotations

import math
import re
import unicodedata
from datetime import datetime
from typing import Any

_NON_WORD = re.compile(r"[^\w]+", re.ASCII)
_ID_SEPARATORS = re.compile(r"[,\s]+")


def as_list(data: Any) -> list[Any]:
    """Normalize an upstream body: None -> [], object -> [object], list unchanged."""
    if isinstance(data, list):
        return data
    if data is None or data == "" or data is False:
        return []
    return [data]


def to_number(value: Any) -> float | None:
    """
    Coerce a JSON value to a finite float.

    Returns None for missing, boolean, non-numeric and non-finite values so
    callers can skip them instead of folding garbage into an aggregate.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_timestamp(value: Any) -> float:
    """Parse an ISO-8601 timestamp to epoch seconds; unparsable values give 0."""
    if not value or not isinstance(value, str):
        return 0.0
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    return parsed.timestamp()


def parse_id_list(value: Any) -> list[int]:
    """Split a comma/whitespace separated id list, keeping numeric ids only."""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [i for item in value for i in parse_id_list(item)]
    ids: list[int] = []
    for token in _ID_SEPARATORS.split(str(value)):
        number = to_number(token)
        if number is not None and number.is_integer():
            ids.append(int(number))
    return ids


def nested_get(record: Any, *path: str) -> Any:
    """Walk nested dicts, returning None as soon as a level is missing."""
    current = record
    for part in path:
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def company_from_username(username: str | None) -> str:
    """
    Derive a company slug from a login such as ``jane.doe@acme.com``.

    The part before ``@`` is accent-folded, runs of non-word characters
    become ``-``, edges are trimmed and the result is lower-cased.
    """
    base = str(username or "").split("@")[0]
    folded = unicodedata.normalize("NFKD", base)
    slug = _NON_WORD.sub("-", folded).strip("-").lower()
    return slug or "default"


def make_auth_header(password: str | None) -> str | None:
    """Build the session cookie forwarded upstream; None without a password."""
    if not password:
        return None
    return f"JSESSIONID={password}"
