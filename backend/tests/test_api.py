from datetime import date

import pytest
from fastapi.testclient import TestClient

import main
from models import Coordinate, GeocodeResult, ProductRecord
from services.analytics import AnalyticsRecorder
from services.catalog import InMemoryCatalog
from services.geocoding import GeocodingError

MANILA = Coordinate(14.5995, 120.9842)


def _catalog() -> InMemoryCatalog:
    today = date.today()
    return InMemoryCatalog(
        [
            ProductRecord(id=1, price=80, quantity=3, location=Coordinate(14.6040, 120.9842),
                          total_shelf_life_days=30, days_already_used=0, listed_at=today,
                          storage_condition="pantry", seller_id="s1"),
            ProductRecord(id=2, price=40, quantity=3, location=Coordinate(14.6220, 120.9842),
                          total_shelf_life_days=30, days_already_used=0, listed_at=today,
                          storage_condition="frozen", seller_id="s2"),
            ProductRecord(id=3, price=60, quantity=3, location=Coordinate(15.5, 120.9842),
                          storage_condition="pantry", seller_id="s1"),
        ]
    )


class FakeGeocoder:
    def __init__(self, error=None):
        self.error = error

    def geocode(self, address):
        if self.error:
            raise self.error
        return GeocodeResult(lat=14.5995, lng=120.9842, display_name=address)

    def reverse(self, lat, lng):
        if self.error:
            raise self.error
        return GeocodeResult(lat=lat, lng=lng, display_name="Ermita", address_details={"suburb": "Ermita"})


@pytest.fixture
def analytics():
    return AnalyticsRecorder()


@pytest.fixture
def client(analytics):
    main.app.dependency_overrides[main.get_catalog] = _catalog
    main.app.dependency_overrides[main.get_analytics] = lambda: analytics
    main.app.dependency_overrides[main.get_geocoder] = lambda: FakeGeocoder()
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_post_search_ranks_nearby_products(client, analytics):
    resp = client.post("/search", json={"location": {"lat": MANILA.lat, "lng": MANILA.lng}})
    assert resp.status_code == 200
    body = resp.json()

    assert [p["id"] for p in body["products"]] == [1, 2]
    assert body["count"] == 2
    assert body["products"][0]["rank"] == 1
    assert body["metadata"]["buyer_location"] == {"lat": MANILA.lat, "lng": MANILA.lng}
    assert body["metadata"]["resolved_config"]["max_radius_km"] == 50
    assert analytics.summary()["searches"] == 1


def test_post_search_applies_storage_and_filter_mode(client):
    payload = {
        "location": {"lat": MANILA.lat, "lng": MANILA.lng},
        "storage_capability": "pantry",
        "config": {"mode": "filter", "sort_by": "price", "sort_order": "asc", "max_radius_km": 150},
    }
    body = client.post("/search", json=payload).json()
    assert [p["id"] for p in body["products"]] == [3, 1]
    assert body["metadata"]["stats"]["filter_breakdown"]["storage"] == 1


def test_post_search_tolerates_bad_config(client):
    payload = {"location": {"lat": MANILA.lat, "lng": MANILA.lng}, "config": {"weight_preset": "bogus", "mode": "???"}}
    resp = client.post("/search", json=payload)
    assert resp.status_code == 200
    assert resp.json()["metadata"]["resolved_config"]["mode"] == "ranking"


def test_post_search_seller_filter(client):
    payload = {"location": {"lat": MANILA.lat, "lng": MANILA.lng}, "seller_id": "s2"}
    assert [p["id"] for p in client.post("/search", json=payload).json()["products"]] == [2]


def test_post_search_rejects_out_of_range_location(client):
    resp = client.post("/search", json={"location": {"lat": 95, "lng": 0}})
    assert resp.status_code == 400


def test_post_search_missing_location_is_400(client):
    assert client.post("/search", json={}).status_code == 400


def test_public_search_uses_percentage_weights(client):
    params = {"lat": MANILA.lat, "lng": MANILA.lng, "proximity_weight": 70, "freshness_weight": 30, "radius": 10}
    body = client.get("/search/public", params=params).json()
    assert body["metadata"]["resolved_config"]["weights"] == {"proximity_weight": 0.7, "freshness_weight": 0.3}
    assert [p["id"] for p in body["products"]] == [1, 2]


def test_public_search_reads_weight_pair_on_one_scale(client):
    params = {"lat": MANILA.lat, "lng": MANILA.lng, "proximity_weight": 1, "freshness_weight": 99}
    resp = client.get("/search/public", params=params)
    assert resp.status_code == 200
    assert resp.json()["metadata"]["resolved_config"]["weights"] == {"proximity_weight": 0.01, "freshness_weight": 0.99}


def test_public_search_accepts_fraction_weights(client):
    params = {"lat": MANILA.lat, "lng": MANILA.lng, "proximity_weight": 1, "freshness_weight": 0}
    body = client.get("/search/public", params=params).json()
    assert body["metadata"]["resolved_config"]["weights"] == {"proximity_weight": 1.0, "freshness_weight": 0.0}


def test_public_search_rejects_unbalanced_weights(client):
    params = {"lat": MANILA.lat, "lng": MANILA.lng, "proximity_weight": 70, "freshness_weight": 50}
    resp = client.get("/search/public", params=params)
    assert resp.status_code == 400
    assert "weights" in resp.json()["detail"]


def test_public_search_rejects_unknown_preset(client):
    params = {"lat": MANILA.lat, "lng": MANILA.lng, "weight_preset": "bogus"}
    resp = client.get("/search/public", params=params)
    assert resp.status_code == 400
    assert "weight_preset" in resp.json()["detail"]


def test_public_search_preset(client):
    params = {"lat": MANILA.lat, "lng": MANILA.lng, "weight_preset": "extreme-freshness"}
    body = client.get("/search/public", params=params).json()
    assert body["metadata"]["resolved_config"]["weight_preset"] == "extreme-freshness"


def test_public_search_rejects_bad_mode(client):
    resp = client.get("/search/public", params={"lat": MANILA.lat, "lng": MANILA.lng, "mode": "magic"})
    assert resp.status_code == 400


def test_public_search_requires_coordinates(client):
    assert client.get("/search/public", params={"lat": MANILA.lat}).status_code == 400


def test_geocode(client):
    resp = client.get("/geocode", params={"address": "Manila"})
    assert resp.status_code == 200
    assert resp.json()["display_name"] == "Manila"


def test_geocode_not_found_is_404(client):
    main.app.dependency_overrides[main.get_geocoder] = lambda: FakeGeocoder(GeocodingError("nope", not_found=True))
    assert client.get("/geocode", params={"address": "Atlantis"}).status_code == 404


def test_geocode_upstream_failure_is_502(client):
    main.app.dependency_overrides[main.get_geocoder] = lambda: FakeGeocoder(GeocodingError("upstream 503"))
    assert client.get("/geocode/reverse", params={"lat": 14.58, "lng": 120.98}).status_code == 502


def test_reverse_geocode(client):
    body = client.get("/geocode/reverse", params={"lat": 14.58, "lng": 120.98}).json()
    assert body["address_details"] == {"suburb": "Ermita"}


def test_analytics_summary(client):
    client.post("/search", json={"location": {"lat": MANILA.lat, "lng": MANILA.lng}})
    summary = client.get("/analytics/summary").json()
    assert summary["searches"] == 1
    assert summary["modes"] == {"ranking": 1}


def test_catalog_dependency_accepts_any_product_catalog(analytics):
    class SingleRowCatalog:
        def query(self, location, *, max_radius_km=None, seller_id=None, product_type_id=None, available_only=True):
            return [ProductRecord(id="only", price=5, quantity=1, location=location)]

    main.app.dependency_overrides[main.get_catalog] = SingleRowCatalog
    main.app.dependency_overrides[main.get_analytics] = lambda: analytics
    try:
        body = TestClient(main.app).post("/search", json={"location": {"lat": MANILA.lat, "lng": MANILA.lng}}).json()
    finally:
        main.app.dependency_overrides.clear()
    assert [p["id"] for p in body["products"]] == ["only"]
    assert body["products"][0]["distance_km"] == 0
