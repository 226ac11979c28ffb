from __future__ import annotations

import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import requests

from ransom_cti.core import config
from ransom_cti.core.errors import TransientFetchError

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    url: str
    status_code: int
    text: str


class HttpClient:
    """
    HTTP client for upstream JSON feeds.

    Features:
    - Rotating User-Agent headers
    - Randomized delays between calls
    - Retry with linear backoff on network errors and HTTP >= 400
    """

    def __init__(
        self,
        *,
        timeout: int = config.REQUEST_TIMEOUT_SECONDS,
        user_agents: Optional[Iterable[str]] = None,
        min_delay: float = config.HTTP_MIN_DELAY,
        max_delay: float = config.HTTP_MAX_DELAY,
        max_retries: int = config.HTTP_MAX_RETRIES,
    ) -> None:
        self.session = requests.Session()
        self.timeout = timeout
        self.user_agents = list(user_agents or config.HTTP_USER_AGENTS)
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.max_retries = max_retries

    def _random_headers(self) -> dict:
        return {
            "User-Agent": random.choice(self.user_agents),
            "Accept": "application/json, text/plain;q=0.9, */*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Connection": "keep-alive",
        }

    def _sleep_a_bit(self) -> None:
        if self.max_delay <= 0:
            return
        time.sleep(random.uniform(self.min_delay, self.max_delay))

    def get(self, url: str) -> HttpResponse:
        """
        Perform a GET with retries.

        Raises requests.RequestException / requests.HTTPError once retries
        are exhausted.
        """
        retries = 0

        while True:
            self._sleep_a_bit()
            try:
                resp = self.session.get(
                    url,
                    timeout=self.timeout,
                    headers=self._random_headers(),
                )
            except requests.RequestException:
                retries += 1
                if retries > self.max_retries:
                    raise
                logger.debug(f"Request to {url} failed, retry {retries}/{self.max_retries}")
                time.sleep(config.HTTP_BACKOFF_BASE * retries)
                continue

            if resp.status_code >= 400:
                retries += 1
                if retries > self.max_retries:
                    resp.raise_for_status()
                logger.debug(f"HTTP {resp.status_code} for {url}, retry {retries}/{self.max_retries}")
                time.sleep(config.HTTP_BACKOFF_BASE * retries)
                continue

            return HttpResponse(
                url=resp.url,
                status_code=resp.status_code,
                text=resp.text,
            )

    def get_json(self, url: str) -> Any:
        """
        GET a URL and decode its JSON body.

        Every failure mode (network, HTTP status, decoding) surfaces as
        TransientFetchError so callers can abort just the affected feed.
        """
        try:
            resp = self.get(url)
        except requests.RequestException as e:
            raise TransientFetchError(f"Failed to fetch {url}: {e}", url=url) from e

        try:
            return json.loads(resp.text)
        except ValueError as e:
            raise TransientFetchError(f"Failed to parse JSON from {url}: {e}", url=url) from e


def build_http_client() -> HttpClient:
    return HttpClient()
