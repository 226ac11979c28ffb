import logging
from typing import Any, Dict, List, Optional

from ransom_cti.core import config
from ransom_cti.core.http import HttpClient
from ransom_cti.core.models import ActorSeed, RawClaim
from ransom_cti.core.utils import strip_html
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

SOURCE_NAME = config.SOURCE_RANSOMWARE_LIVE
BASE_URL = config.RANSOMWARE_LIVE_API

# /recentcyberattacks is only used when /recentvictims fails
VICTIM_ENDPOINTS = ("/recentvictims", "/recentcyberattacks")
GROUPS_ENDPOINT = "/groups"

GROUP_FIELDS = ("group_name", "group")
VICTIM_FIELDS = ("victim", "post_title", "name")
DATE_FIELDS = ("discovered", "published", "date", "attackdate")
SECTOR_FIELDS = ("activity", "sector", "industry")
WEBSITE_FIELDS = ("website", "domain", "url")
COUNTRY_FIELDS = ("country", "countrycode")
URL_FIELDS = ("post_url", "url", "claim_url")

RAW_FIELDS = (
    "group_name", "group", "victim", "post_title", "discovered", "published",
    "attackdate", "activity", "sector", "industry", "country", "website", "domain", "description",
)


def fetch_groups(client: Optional[HttpClient] = None) -> List[ActorSeed]:
    """Group catalogue from /groups, used to pre-create actors with metadata."""
    http_client = default_client(client)
    data = http_client.get_json(BASE_URL + GROUPS_ENDPOINT)

    seeds: List[ActorSeed] = []
    for group in group_entries(data):
        name = safe_str(group.get("name"))
        seeds.append(
            ActorSeed(
                name=name,
                description=strip_html(group.get("description")),
                metadata={
                    "ransomware_live_name": name,
                    "url": group.get("url") or None,
                    "profiles": group.get("profiles") or [],
                },
            )
        )
    return seeds


def fetch_victims(client: Optional[HttpClient] = None) -> List[Dict[str, Any]]:
    http_client = default_client(client)
    data = fetch_json_with_fallback(http_client, [BASE_URL + path for path in VICTIM_ENDPOINTS])
    return unwrap_records(data)


def row_to_claim(row: Dict[str, Any]) -> RawClaim:
    return RawClaim(
        group_name=first_present(row, GROUP_FIELDS),
        victim_name=first_present(row, VICTIM_FIELDS),
        discovered_raw=first_present(row, DATE_FIELDS),
        country=first_present(row, COUNTRY_FIELDS),
        website=first_present(row, WEBSITE_FIELDS),
        description=row.get("description"),
        api_provided_sector=first_present(row, SECTOR_FIELDS),
        activity=row.get("activity"),
        source_url=first_present(row, URL_FIELDS),
        raw=pick_fields(row, RAW_FIELDS),
    )


def build_claims(client: Optional[HttpClient] = None) -> List[RawClaim]:
    """
    Map ransomware.live recent victims to RawClaims.

    Sample fields from the API:
      activity, attackdate, discovered, domain, claim_url, url, group,
      country, description, press, screenshot, victim
    """
    records = fetch_victims(client)
    claims = [row_to_claim(row) for row in records]
    logger.debug(f"{SOURCE_NAME}: mapped {len(claims)} victim records")
    return claims
