import unittest
from unittest.mock import MagicMock, patch

import pytest
import requests

import services.geocoding as geocoding
from config import Configuration
from services.geocoding import GeocodingError, NominatimClient, RateGate


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "params": params, "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


MANILA_HIT = [
    {
        "lat": "14.5995",
        "lon": "120.9842",
        "display_name": "Manila, Metro Manila, Philippines",
        "address": {"city": "Manila", "country": "Philippines"},
    }
]


@pytest.fixture
def cfg():
    return Configuration(geocode_min_interval_sec=0.0, nominatim_user_agent="test-agent/1.0")


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(geocoding.time, "sleep", lambda _s: None)


def test_geocode_parses_first_hit(cfg):
    session = FakeSession([FakeResponse(payload=MANILA_HIT)])
    result = NominatimClient(cfg, session=session).geocode("  Manila ")

    assert (result.lat, result.lng) == (14.5995, 120.9842)
    assert result.address_details["city"] == "Manila"
    assert result.cached is False
    call = session.calls[0]
    assert call["url"].endswith("/search")
    assert call["params"]["q"] == "Manila"
    assert call["params"]["format"] == "json"
    assert call["headers"]["User-Agent"] == "test-agent/1.0"


def test_geocode_is_cached_case_insensitively(cfg):
    session = FakeSession([FakeResponse(payload=MANILA_HIT)])
    client = NominatimClient(cfg, session=session)

    client.geocode("Manila")
    again = client.geocode("MANILA")

    assert again.cached is True
    assert len(session.calls) == 1
    assert client.cache_stats() == {"keys": 1, "hits": 1, "misses": 1}


def test_geocode_not_found(cfg):
    client = NominatimClient(cfg, session=FakeSession([FakeResponse(payload=[])]))
    with pytest.raises(GeocodingError) as excinfo:
        client.geocode("nowhere at all")
    assert excinfo.value.not_found


def test_geocode_rejects_blank_address(cfg):
    session = FakeSession([])
    with pytest.raises(GeocodingError):
        NominatimClient(cfg, session=session).geocode("   ")
    assert session.calls == []


def test_retries_on_server_error(cfg):
    session = FakeSession([FakeResponse(503, text="busy"), FakeResponse(payload=MANILA_HIT)])
    result = NominatimClient(cfg, session=session).geocode("Manila")
    assert result.lat == 14.5995
    assert len(session.calls) == 2


def test_gives_up_after_retries(cfg):
    session = FakeSession([requests.ConnectionError("down")] * 4)
    with pytest.raises(GeocodingError) as excinfo:
        NominatimClient(cfg, session=session).geocode("Manila")
    assert not excinfo.value.not_found
    assert len(session.calls) == 4


def test_client_error_is_not_retried(cfg):
    session = FakeSession([FakeResponse(400, text="bad request")])
    with pytest.raises(GeocodingError):
        NominatimClient(cfg, session=session).geocode("Manila")
    assert len(session.calls) == 1


def test_reverse_geocode(cfg):
    payload = {"display_name": "Ermita, Manila", "address": {"suburb": "Ermita"}}
    session = FakeSession([FakeResponse(payload=payload)])
    client = NominatimClient(cfg, session=session)

    result = client.reverse(14.58, 120.98)

    assert result.display_name == "Ermita, Manila"
    assert (result.lat, result.lng) == (14.58, 120.98)
    assert session.calls[0]["url"].endswith("/reverse")
    assert client.reverse(14.58, 120.98).cached is True


def test_reverse_not_found(cfg):
    client = NominatimClient(cfg, session=FakeSession([FakeResponse(payload={"error": "Unable to geocode"})]))
    with pytest.raises(GeocodingError) as excinfo:
        client.reverse(0.0, 0.0)
    assert excinfo.value.not_found


def test_reverse_validates_range(cfg):
    client = NominatimClient(cfg, session=FakeSession([]))
    with pytest.raises(GeocodingError):
        client.reverse(95.0, 0.0)
    with pytest.raises(GeocodingError):
        client.reverse(0.0, 200.0)


def test_clear_cache(cfg):
    session = FakeSession([FakeResponse(payload=MANILA_HIT), FakeResponse(payload=MANILA_HIT)])
    client = NominatimClient(cfg, session=session)
    client.geocode("Manila")
    client.clear_cache()
    assert client.geocode("Manila").cached is False
    assert len(session.calls) == 2


def test_rate_gate_spaces_calls():
    clock = {"t": 100.0}
    slept = []

    def sleep(seconds):
        slept.append(seconds)
        clock["t"] += seconds

    gate = RateGate(1.0, clock=lambda: clock["t"], sleep=sleep)
    with gate:
        pass
    clock["t"] += 0.25
    with gate:
        pass
    clock["t"] += 5.0
    with gate:
        pass

    assert slept == [pytest.approx(0.75)]


class TestNominatimSession(unittest.TestCase):
    @patch("services.geocoding.requests.Session")
    def test_default_session_and_timeout(self, mock_session_cls):
        session = mock_session_cls.return_value
        session.get.return_value = FakeResponse(payload=MANILA_HIT)

        client = NominatimClient(Configuration(geocode_min_interval_sec=0.0, geocode_timeout=4))
        client.geocode("Manila")

        mock_session_cls.assert_called_once_with()
        args, kwargs = session.get.call_args
        self.assertEqual(args[0], "https://nominatim.openstreetmap.org/search")
        self.assertEqual(kwargs["timeout"], 4)
        self.assertEqual(kwargs["params"]["addressdetails"], 1)

    def test_unparseable_body(self):
        session = MagicMock()
        session.get.return_value = FakeResponse(status_code=200, payload=None)
        client = NominatimClient(Configuration(geocode_min_interval_sec=0.0), session=session)
        with self.assertRaises(GeocodingError):
            client.geocode("Manila")
