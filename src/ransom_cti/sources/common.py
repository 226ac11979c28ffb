"""
Shared helpers for feed adapters.

Feeds rename fields between API versions, so every extracted value comes
from an ordered list of candidate field names.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ransom_cti.core.errors import TransientFetchError
from ransom_cti.core.http import HttpClient, build_http_client

logger = logging.getLogger(__name__)

RECORD_CONTAINER_KEYS = ("victims", "posts", "data", "results", "items")


def default_client(client: Optional[HttpClient] = None) -> HttpClient:
    return client or build_http_client()


def safe_str(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def first_present(row: Dict[str, Any], candidates: Sequence[str]) -> Optional[Any]:
    """Return the first candidate field holding a non-empty value."""
    for key in candidates:
        value = row.get(key)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        if isinstance(value, (list, dict)) and not value:
            continue
        return value
    return None


def pick_fields(row: Dict[str, Any], keys: Iterable[str]) -> Dict[str, Any]:
    """Subset of the original payload kept as raw_data."""
    return {key: row[key] for key in keys if row.get(key) not in (None, "")}


def unwrap_records(data: Any, keys: Sequence[str] = RECORD_CONTAINER_KEYS) -> List[Dict[str, Any]]:
    """
    Feeds answer either with a bare list or with a dict wrapping one.
    Non-dict entries are dropped.

    Raises TransientFetchError for any other payload shape (e.g. an error
    object returned with HTTP 200).
    """
    if isinstance(data, dict):
        for key in keys:
            if isinstance(data.get(key), list):
                data = data[key]
                break
        else:
            raise TransientFetchError(
                f"Unexpected payload: object without a record list (keys: {sorted(data)[:5]})"
            )
    if not isinstance(data, list):
        raise TransientFetchError(f"Unexpected payload type {type(data).__name__}")
    return [row for row in data if isinstance(row, dict)]


def fetch_json_with_fallback(client: HttpClient, urls: Sequence[str]) -> Any:
    """
    Try each URL in order and return the first decoded JSON body.

    Raises TransientFetchError when every URL fails.
    """
    last_error: Optional[TransientFetchError] = None
    for url in urls:
        try:
            return client.get_json(url)
        except TransientFetchError as e:
            logger.warning(f"Endpoint failed, trying next: {e}")
            last_error = e

    if last_error is None:
        raise TransientFetchError("No endpoints configured")
    raise TransientFetchError(
        f"All endpoints failed ({', '.join(urls)}): {last_error}",
        url=last_error.url,
    ) from last_error


def group_entries(data: Any) -> List[Dict[str, Any]]:
    """
    Normalize a groups payload to a list of dicts with a "name" key.

    Group catalogues are either lists of names or lists of objects.
    """
    entries: List[Dict[str, Any]] = []
    if isinstance(data, dict):
        data = data.get("groups") or data.get("data") or []
    if not isinstance(data, list):
        return entries
    for item in data:
        if isinstance(item, str) and item.strip():
            entries.append({"name": item.strip()})
        elif isinstance(item, dict) and safe_str(item.get("name")):
            entries.append(item)
    return entries
