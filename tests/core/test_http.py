"""Tests for the HTTP client's error surfacing."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from ransom_cti.core.errors import TransientFetchError
from ransom_cti.core.http import HttpClient


def _response(status_code=200, text="[]"):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    resp.url = "http://feed"
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"HTTP {status_code}")
    return resp


@pytest.fixture
def client():
    http = HttpClient(min_delay=0, max_delay=0, max_retries=1)
    http.session = MagicMock()
    with patch("ransom_cti.core.http.time.sleep"):
        yield http


class TestGetJson:
    def test_decodes_body(self, client):
        client.session.get.return_value = _response(text='{"victims": [1]}')
        assert client.get_json("http://feed") == {"victims": [1]}

    def test_retries_then_succeeds(self, client):
        client.session.get.side_effect = [requests.ConnectionError("reset"), _response(text="[1]")]
        assert client.get_json("http://feed") == [1]
        assert client.session.get.call_count == 2

    def test_http_error_after_retries(self, client):
        client.session.get.return_value = _response(status_code=503)
        with pytest.raises(TransientFetchError) as exc_info:
            client.get_json("http://feed")
        assert exc_info.value.url == "http://feed"
        assert client.session.get.call_count == 2

    def test_invalid_json(self, client):
        client.session.get.return_value = _response(text="<html>oops</html>")
        with pytest.raises(TransientFetchError):
            client.get_json("http://feed")

    def test_network_error(self, client):
        client.session.get.side_effect = requests.Timeout("slow")
        with pytest.raises(TransientFetchError):
            client.get_json("http://feed")


class TestGet:
    def test_returns_response(self, client):
        client.session.get.return_value = _response(text="ok")

        resp = client.get("http://feed")

        assert (resp.url, resp.status_code, resp.text) == ("http://feed", 200, "ok")

    def test_not_found_is_retried_then_raised(self, client):
        client.session.get.return_value = _response(status_code=404)

        with pytest.raises(requests.HTTPError):
            client.get("http://feed")
        assert client.session.get.call_count == 2
