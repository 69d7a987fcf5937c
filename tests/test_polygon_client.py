import asyncio

import aiohttp
import pytest

from adapters.polygon_client import (
    ParseError,
    PolygonClient,
    TransportError,
    UpstreamStatusError,
    mask_api_key,
)

API_KEY = "secret-key-123"


class FakeResponse:
    def __init__(self, status=200, payload=None, text="", json_error=None):
        self.status = status
        self._payload = payload
        self._text = text
        self._json_error = json_error

    async def json(self, content_type=None):
        if self._json_error:
            raise self._json_error
        return self._payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Replays queued responses (or raises queued exceptions) per GET."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {}), timeout))
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


@pytest.fixture
def sleeps(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("adapters.polygon_client.asyncio.sleep", fake_sleep)
    return delays


def _client(responses, **kwargs):
    session = FakeSession(responses)
    return PolygonClient(API_KEY, session=session, **kwargs), session


def test_get_json_success_adds_api_key():
    client, session = _client([FakeResponse(payload={"results": [1, 2]})])

    data = asyncio.run(client.get_json("/v2/aggs/ticker/SPY/prev", {"adjusted": "true"}))

    assert data == {"results": [1, 2]}
    url, params, timeout = session.calls[0]
    assert url == "https://api.polygon.io/v2/aggs/ticker/SPY/prev"
    assert params == {"adjusted": "true", "apiKey": API_KEY}
    assert timeout.total == 30


def test_absolute_next_url_used_as_is():
    client, session = _client([FakeResponse(payload={})])
    next_url = "https://api.polygon.io/v3/trades/O:SPY251121C00100000?cursor=abc"

    asyncio.run(client.get_json(next_url))

    assert session.calls[0][0] == next_url


def test_retries_status_then_succeeds(sleeps):
    client, session = _client([
        FakeResponse(status=502, text="bad gateway"),
        FakeResponse(payload={"ok": True}),
    ])

    assert asyncio.run(client.get_json("/v3/x")) == {"ok": True}
    assert len(session.calls) == 2
    assert sleeps == [1.0]
    assert client.get_metrics()['retry_count'] == 1


def test_timeouts_exhaust_with_backoff(sleeps):
    client, session = _client([asyncio.TimeoutError()] * 3)

    with pytest.raises(TransportError):
        asyncio.run(client.get_json("/v3/x"))

    assert len(session.calls) == 3
    assert sleeps == [1.0, 2.0]


def test_connection_error_is_transport_error(sleeps):
    client, _ = _client([aiohttp.ClientConnectionError("reset")], max_retries=1)

    with pytest.raises(TransportError) as exc:
        asyncio.run(client.get_json("/v3/x"))

    assert "ClientConnectionError" in str(exc.value)
    assert sleeps == []


def test_final_status_error_masks_key(sleeps):
    body = f"forbidden for key {API_KEY}"
    client, _ = _client([FakeResponse(status=403, text=body)] * 2, max_retries=2)

    with pytest.raises(UpstreamStatusError) as exc:
        asyncio.run(client.get_json("/v3/x"))

    assert exc.value.status == 403
    assert API_KEY not in str(exc.value)


def test_malformed_json_not_retried(sleeps):
    client, session = _client([FakeResponse(json_error=ValueError("Expecting value"))])

    with pytest.raises(ParseError):
        asyncio.run(client.get_json("/v3/x"))

    assert len(session.calls) == 1
    assert sleeps == []


def test_non_object_json_is_parse_error():
    client, _ = _client([FakeResponse(payload=["not", "an", "object"])])

    with pytest.raises(ParseError):
        asyncio.run(client.get_json("/v3/x"))


def test_backoff_doubles():
    client = PolygonClient(API_KEY, backoff_base=0.5)

    assert [client.backoff_delay(a) for a in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 4.0]


def test_external_session_not_closed():
    client, session = _client([])

    asyncio.run(client.close())

    assert not session.closed


def test_mask_api_key():
    assert mask_api_key(f"https://x?apiKey={API_KEY}", API_KEY) == "https://x?apiKey=API_KEY_HIDDEN"
    assert mask_api_key("nothing here", API_KEY) == "nothing here"
