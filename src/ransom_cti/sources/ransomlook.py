import logging
from typing import Any, Dict, List, Optional

from ransom_cti.core import config
from ransom_cti.core.http import HttpClient
from ransom_cti.core.models import ActorSeed, RawClaim
from ransom_cti.sources.common import (
    default_client,
    fetch_json_with_fallback,
    first_present,
    group_entries,
    pick_fields,
    safe_str,
    unwrap_records,
)

logger = logging.getLogger(__name__)

SOURCE_NAME = config.SOURCE_RANSOMLOOK
BASE_URL = config.RANSOMLOOK_API

# last 30 days, falling back to the 500 most recent posts
POST_ENDPOINTS = ("/last/30", "/recent/500")
GROUPS_ENDPOINT = "/groups"

GROUP_FIELDS = ("group_name", "group")
VICTIM_FIELDS = ("post_title", "victim", "name")
DATE_FIELDS = ("discovered", "published")
URL_FIELDS = ("post_url", "link")

RAW_FIELDS = ("group_name", "post_title", "discovered", "published", "description", "website", "country")


def fetch_groups(client: Optional[HttpClient] = None) -> List[ActorSeed]:
    http_client = default_client(client)
    data = http_client.get_json(BASE_URL + GROUPS_ENDPOINT)

    seeds = []
    for group in group_entries(data):
        name = safe_str(group.get("name"))
        seeds.append(
            ActorSeed(
                name=name,
                metadata={
                    "ransomlook_name": name,
                    "locations": group.get("locations") or [],
                    "profile": group.get("profile") or [],
                },
            )
        )
    return seeds


def fetch_posts(client: Optional[HttpClient] = None) -> List[Dict[str, Any]]:
    http_client = default_client(client)
    data = fetch_json_with_fallback(http_client, [BASE_URL + path for path in POST_ENDPOINTS])
    return unwrap_records(data)


def row_to_claim(row: Dict[str, Any]) -> RawClaim:
    return RawClaim(
        group_name=first_present(row, GROUP_FIELDS),
        victim_name=first_present(row, VICTIM_FIELDS),
        discovered_raw=first_present(row, DATE_FIELDS),
        country=row.get("country"),
        website=row.get("website"),
        description=row.get("description"),
        source_url=first_present(row, URL_FIELDS),
        raw=pick_fields(row, RAW_FIELDS),
    )


def build_claims(client: Optional[HttpClient] = None) -> List[RawClaim]:
    """RansomLook structure: { group_name, post_title, discovered, description, link, ... }"""
    posts = fetch_posts(client)
    return [row_to_claim(row) for row in posts]
