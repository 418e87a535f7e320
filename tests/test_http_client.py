from __future__ import annotations

import pytest
import requests

from src.errors import ParseError, RateLimited, SourceUnavailable
from src.ingest.http import PoliteHttpClient


def _response(status_code: int, body: str = "") -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = body.encode("utf-8")
    response.encoding = "utf-8"
    response.url = "https://example.test/api"
    return response


def _client_returning(monkeypatch, outcome) -> tuple[PoliteHttpClient, list[dict]]:  # noqa: ANN001
    client = PoliteHttpClient(requests_per_second=0)
    calls: list[dict] = []

    def _fake_request(**kwargs):  # noqa: ANN003, ANN202
        calls.append(kwargs)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(client._session, "request", _fake_request)
    return client, calls


def test_get_json_returns_payload(monkeypatch) -> None:  # noqa: ANN001
    client, _ = _client_returning(monkeypatch, _response(200, '{"INFO": {"list": []}}'))

    assert client.get_json("https://example.test/api", params={"pageNo": 1}) == {"INFO": {"list": []}}


def test_post_text_sends_form_and_headers(monkeypatch) -> None:  # noqa: ANN001
    client, calls = _client_returning(monkeypatch, _response(200, "<table></table>"))

    html = client.post_text("https://example.test/list", data={"page": 2}, headers={"Referer": "x"})

    assert html == "<table></table>"
    assert calls[0]["method"] == "POST"
    assert calls[0]["data"] == {"page": 2}
    assert calls[0]["headers"] == {"Referer": "x"}
    assert calls[0]["timeout"] == client.timeout_tuple


def test_http_429_maps_to_rate_limited(monkeypatch) -> None:  # noqa: ANN001
    client, _ = _client_returning(monkeypatch, _response(429))

    with pytest.raises(RateLimited):
        client.get_text("https://example.test/api")


def test_http_5xx_maps_to_source_unavailable(monkeypatch) -> None:  # noqa: ANN001
    client, _ = _client_returning(monkeypatch, _response(503))

    with pytest.raises(SourceUnavailable):
        client.get_text("https://example.test/api")


def test_network_errors_map_to_source_unavailable(monkeypatch) -> None:  # noqa: ANN001
    timeout_client, _ = _client_returning(monkeypatch, requests.ReadTimeout("slow"))
    with pytest.raises(SourceUnavailable):
        timeout_client.get_text("https://example.test/api")

    connection_client, _ = _client_returning(monkeypatch, requests.ConnectionError("refused"))
    with pytest.raises(SourceUnavailable):
        connection_client.get_text("https://example.test/api")


def test_invalid_json_maps_to_parse_error(monkeypatch) -> None:  # noqa: ANN001
    client, _ = _client_returning(monkeypatch, _response(200, "<html>maintenance</html>"))

    with pytest.raises(ParseError):
        client.get_json("https://example.test/api")


def test_timeout_tuple_bounds_connect_timeout() -> None:
    assert PoliteHttpClient(timeout_seconds=20.0).timeout_tuple == (5.0, 20.0)
    assert PoliteHttpClient(timeout_seconds=0.5).timeout_tuple == (1.0, 1.0)
