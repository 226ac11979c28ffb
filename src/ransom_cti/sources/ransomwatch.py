import logging
from typing import Any, Dict, List, Optional

from ransom_cti.core import config
from ransom_cti.core.http import HttpClient
from ransom_cti.core.models import ActorSeed, RawClaim
from ransom_cti.sources.common import (
    default_client,
    first_present,
    group_entries,
    pick_fields,
    safe_str,
    unwrap_records,
)

logger = logging.getLogger(__name__)

SOURCE_NAME = config.SOURCE_RANSOMWATCH
POSTS_URL = config.RANSOMWATCH_POSTS_URL
GROUPS_URL = config.RANSOMWATCH_GROUPS_URL

RAW_FIELDS = ("group_name", "post_title", "discovered", "post_url", "website")


def fetch_groups(client: Optional[HttpClient] = None) -> List[ActorSeed]:
    """groups.json: [{name, parser, profile, locations, ...}]"""
    http_client = default_client(client)
    data = http_client.get_json(GROUPS_URL)

    seeds = []
    for group in group_entries(data):
        name = safe_str(group.get("name"))
        seeds.append(
            ActorSeed(
                name=name,
                metadata={
                    "ransomwatch_name": name,
                    "parser": group.get("parser") or None,
                    "profile": group.get("profile") or [],
                },
            )
        )
    return seeds


def row_to_claim(row: Dict[str, Any]) -> RawClaim:
    # discovered looks like "2024-03-01 21:44:10.064656"
    return RawClaim(
        group_name=row.get("group_name"),
        victim_name=first_present(row, ("post_title",)),
        discovered_raw=first_present(row, ("discovered",)),
        website=row.get("website"),
        source_url=first_present(row, ("post_url",)),
        raw=pick_fields(row, RAW_FIELDS),
    )


def build_claims(client: Optional[HttpClient] = None) -> List[RawClaim]:
    http_client = default_client(client)
    posts = unwrap_records(http_client.get_json(POSTS_URL))
    logger.debug(f"{SOURCE_NAME}: {len(posts)} posts in mirror")
    return [row_to_claim(row) for row in posts]
