"""Tests for the HTTP API."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from tax_service.api import create_app
from tax_service.config import Settings
from tax_service.rates import JurisdictionIndex, JurisdictionRecord

ALLOWED_ORIGIN = "https://shop.example.com"
SAMPLE_RATES = Path(__file__).resolve().parent.parent / "data" / "tax_rates.csv"


def _settings(rates_path: str = "missing.csv") -> Settings:
    return Settings(
        rates_path=rates_path,
        allowed_origins=[ALLOWED_ORIGIN],
        host="127.0.0.1",
        port=3000,
        log_level="WARNING",
    )


@pytest.fixture
def index() -> JurisdictionIndex:
    return JurisdictionIndex(
        {
            "90210": JurisdictionRecord(
                "CA", "BEVERLY HILLS", 7.25, 6.0, 0.25, 1.0, 0.0
            ),
            "73301": JurisdictionRecord("TX", "AUSTIN", 8.25, 6.25, 0.0, 1.0, 1.0),
        }
    )


@pytest.fixture
def client(index: JurisdictionIndex) -> TestClient:
    return TestClient(create_app(_settings(), index=index))


def _payload(**overrides) -> dict:
    payload = {
        "products": [{"price": 100, "quantity": 1}],
        "sellerZip": "73301",
        "sellerState": "Texas",
        "buyerZip": "90210",
        "buyerState": "California",
        "deliveryMethod": "Shipping",
        "taxRuleType": "Destination-Based",
        "isTaxExempt": False,
        "taxOverrideGroup": None,
    }
    payload.update(overrides)
    return payload


# ── calculate-tax ────────────────────────────────────────────────────


def test_calculate_tax(client: TestClient):
    response = client.post("/calculate-tax", json=_payload())
    assert response.status_code == 200
    assert response.json() == {
        "deliveryMethod": "Shipping",
        "taxRuleType": "Destination-Based",
        "taxRegion": "BEVERLY HILLS",
        "totalPrice": "100.00",
        "totalTax": "7.25",
        "finalTotal": "107.25",
        "breakdown": {
            "stateTax": "6.00",
            "countyTax": "0.25",
            "cityTax": "1.00",
            "specialTax": "0.00",
        },
    }


def test_calculate_tax_origin_based(client: TestClient):
    response = client.post("/calculate-tax", json=_payload(taxRuleType="Origin-Based"))
    body = response.json()
    assert body["taxRegion"] == "AUSTIN"
    assert body["totalTax"] == "8.25"


def test_custom_rate_and_reduction(client: TestClient):
    payload = _payload(
        products=[
            {"price": 100, "quantity": 2, "useCustomTax": True, "customTaxRate": 50}
        ],
        taxOverrideGroup="50% Reduction",
    )
    body = client.post("/calculate-tax", json=payload).json()
    assert body["totalPrice"] == "100.00"
    assert body["breakdown"]["stateTax"] == "3.00"
    assert body["breakdown"]["cityTax"] == "0.50"
    assert body["breakdown"]["countyTax"] == "0.25"


def test_exempt_order(client: TestClient):
    body = client.post("/calculate-tax", json=_payload(isTaxExempt=True)).json()
    assert body["totalTax"] == "0.00"
    assert body["finalTotal"] == "100.00"


def test_per_product_rounding_over_http(client: TestClient):
    payload = _payload(
        products=[{"price": 10.005, "quantity": 1}, {"price": 10.005, "quantity": 1}]
    )
    body = client.post("/calculate-tax", json=payload).json()
    # 10.005 * 6% = 0.6003 -> 0.60 twice
    assert body["breakdown"]["stateTax"] == "1.20"


def test_numeric_zip_codes_accepted(client: TestClient):
    response = client.post("/calculate-tax", json=_payload(buyerZip=90210))
    assert response.status_code == 200


# ── Errors ───────────────────────────────────────────────────────────


def test_unknown_zip_is_bad_request(client: TestClient):
    response = client.post("/calculate-tax", json=_payload(buyerZip="00000"))
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid ZIP code."}


def test_state_mismatch_is_bad_request(client: TestClient):
    response = client.post("/calculate-tax", json=_payload(sellerState="CA"))
    assert response.status_code == 400
    assert response.json() == {
        "error": "Seller ZIP code 73301 does not match state CA. Expected: TX."
    }


def test_malformed_body_is_bad_request(client: TestClient):
    response = client.post("/calculate-tax", json={"products": "lots"})
    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid request")


def test_negative_price_rejected(client: TestClient):
    payload = _payload(products=[{"price": -5, "quantity": 1}])
    response = client.post("/calculate-tax", json=payload)
    assert response.status_code == 400


def test_huge_price_is_bad_request(client: TestClient):
    payload = _payload(products=[{"price": 1e30, "quantity": 1}])
    response = client.post("/calculate-tax", json=payload)
    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid request")


def test_infinite_price_is_bad_request(client: TestClient):
    body = (
        '{"products": [{"price": Infinity, "quantity": 1}], '
        '"sellerZip": "73301", "sellerState": "TX", '
        '"buyerZip": "90210", "buyerState": "CA"}'
    )
    response = client.post(
        "/calculate-tax",
        content=body,
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.parametrize(
    "product",
    [
        {"price": 100, "quantity": 2.5},
        {"price": 100, "quantity": 10_000_000},
        {"price": 100, "useCustomTax": True, "customTaxRate": -50},
        {"price": 100, "useCustomTax": True, "customTaxRate": 1e30},
    ],
)
def test_out_of_range_line_items_are_bad_requests(client: TestClient, product):
    response = client.post("/calculate-tax", json=_payload(products=[product]))
    assert response.status_code == 400
    assert "error" in response.json()


def test_unknown_route(client: TestClient):
    response = client.get("/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"error": "Route not found"}


# ── Cross-origin policy ──────────────────────────────────────────────


def test_allowed_origin_gets_cors_headers(client: TestClient):
    response = client.post(
        "/calculate-tax", json=_payload(), headers={"Origin": ALLOWED_ORIGIN}
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
    assert response.headers["access-control-allow-credentials"] == "true"


def test_foreign_origin_rejected(client: TestClient):
    response = client.post(
        "/calculate-tax",
        json=_payload(),
        headers={"Origin": "https://evil.example.com"},
    )
    assert response.status_code == 403
    assert response.json() == {
        "error": "CORS policy does not allow access from this origin"
    }


def test_preflight_from_allowed_origin(client: TestClient):
    response = client.options(
        "/calculate-tax",
        headers={
            "Origin": ALLOWED_ORIGIN,
            "Access-Control-Request-Method": "POST",
        },
    )
    assert response.status_code == 200
    assert "POST" in response.headers["access-control-allow-methods"]


# ── Startup & readiness ──────────────────────────────────────────────


def test_not_ready_without_index():
    client = TestClient(create_app(_settings(), index=None))
    response = client.post("/calculate-tax", json=_payload())
    assert response.status_code == 503
    assert response.json() == {"error": "Tax rates are not loaded."}
    assert client.get("/healthz").status_code == 503


def test_healthz(client: TestClient):
    assert client.get("/healthz").json() == {"status": "ok", "jurisdictions": 2}


def test_lifespan_loads_rate_table():
    app = create_app(_settings(str(SAMPLE_RATES)))
    with TestClient(app) as client:
        response = client.post("/calculate-tax", json=_payload())
        assert response.status_code == 200
        assert response.json()["taxRegion"] == "BEVERLY HILLS"


def test_startup_fails_without_rate_table(tmp_path: Path):
    from tax_service.rates import RateTableError

    app = create_app(_settings(str(tmp_path / "missing.csv")))
    with pytest.raises(RateTableError):
        with TestClient(app):
            pass
