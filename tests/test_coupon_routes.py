from datetime import datetime, timedelta, timezone

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coupons_api.core import config
from coupons_api.core.database import Base, get_db
from coupons_api.core.errors import register_exception_handlers
from coupons_api.models.coupon import Coupon
from coupons_api.routers.coupons import router as coupons_router
from tests.fixtures_data import BIG_SPENDER_COUPON, CREATE_COUPON_PAYLOAD, FLAT50_COUPON, SAVE10_COUPON


def _build_client(*coupons):
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    for values in coupons:
        db.add(Coupon(**values))
    db.commit()

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(coupons_router)

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app), db


class BrokenQuery:
    def filter(self, *_args, **_kwargs):
        raise OperationalError("SELECT coupons", {}, Exception("database is locked"))


class BrokenDb:
    def query(self, *_args, **_kwargs):
        return BrokenQuery()


def _client_with_broken_store():
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(coupons_router)
    app.dependency_overrides[get_db] = lambda: BrokenDb()
    return TestClient(app)


def test_validate_percentage_coupon_happy_path():
    client, _db = _build_client(SAVE10_COUPON)

    response = client.post("/api/coupons/validate", json={"code": "SAVE10", "orderAmount": 200})

    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert body["message"] == "Coupon applied successfully"
    assert body["coupon"]["code"] == "SAVE10"
    assert body["coupon"]["discountType"] == "percentage"
    assert body["coupon"]["discountValue"] == 10
    assert body["coupon"]["discountAmount"] == 20
    assert set(body["coupon"]) == {"id", "code", "discountType", "discountValue", "discountAmount", "description"}


def test_validate_is_case_insensitive():
    client, _db = _build_client(SAVE10_COUPON)

    lower = client.post("/api/coupons/validate", json={"code": "save10", "orderAmount": 100})
    upper = client.post("/api/coupons/validate", json={"code": "SAVE10", "orderAmount": 100})

    assert lower.status_code == upper.status_code == 200
    assert lower.json() == upper.json()


def test_validate_usage_limit_exceeded():
    client, _db = _build_client(dict(SAVE10_COUPON, used_count=100))

    response = client.post("/api/coupons/validate", json={"code": "SAVE10", "orderAmount": 200})

    assert response.status_code == 400
    assert response.json() == {"valid": False, "message": "Coupon usage limit exceeded"}


def test_validate_below_minimum_purchase():
    client, _db = _build_client(BIG_SPENDER_COUPON)

    response = client.post("/api/coupons/validate", json={"code": "BIG500", "orderAmount": 100})

    assert response.status_code == 400
    assert response.json() == {"valid": False, "message": "Minimum purchase amount of ₹500 required"}


def test_validate_unknown_code_returns_404():
    client, _db = _build_client(SAVE10_COUPON)

    response = client.post("/api/coupons/validate", json={"code": "BOGUS", "orderAmount": 100})

    assert response.status_code == 404
    assert response.json() == {"valid": False, "message": "Invalid coupon code"}


def test_validate_inactive_coupon_is_reported_as_invalid_code():
    client, _db = _build_client(dict(SAVE10_COUPON, is_active=False))

    response = client.post("/api/coupons/validate", json={"code": "SAVE10", "orderAmount": 100})

    assert response.status_code == 404
    assert response.json() == {"valid": False, "message": "Invalid coupon code"}


def test_validate_expired_coupon():
    expired = dict(SAVE10_COUPON, expiry_date=datetime.now(timezone.utc) - timedelta(days=1))
    client, _db = _build_client(expired)

    response = client.post("/api/coupons/validate", json={"code": "SAVE10", "orderAmount": 100})

    assert response.status_code == 400
    assert response.json() == {"valid": False, "message": "Coupon has expired"}


def test_validate_fixed_coupon_is_clamped():
    client, _db = _build_client(FLAT50_COUPON)

    response = client.post("/api/coupons/validate", json={"code": "FLAT50", "orderAmount": 30})

    assert response.status_code == 200
    assert response.json()["coupon"]["discountAmount"] == 30


def test_validate_missing_code_is_a_400_not_a_422():
    client, _db = _build_client(SAVE10_COUPON)

    for body in ({}, {"code": ""}, {"orderAmount": 10}):
        response = client.post("/api/coupons/validate", json=body)
        assert response.status_code == 400
        assert response.json() == {"valid": False, "message": "Coupon code is required"}


def test_validate_rejects_order_amounts_beyond_the_money_column():
    client, _db = _build_client(SAVE10_COUPON)

    for amount in (1e27, 100_000_000):
        response = client.post("/api/coupons/validate", json={"code": "SAVE10", "orderAmount": amount})
        assert response.status_code == 422
        assert response.json()["detail"][0]["loc"] == ["body", "orderAmount"]


def test_validate_accepts_the_largest_storable_order_amount():
    client, _db = _build_client(SAVE10_COUPON)

    response = client.post("/api/coupons/validate", json={"code": "SAVE10", "orderAmount": 99_999_999.99})

    assert response.status_code == 200
    assert response.json()["coupon"]["discountAmount"] == 10_000_000.0


def test_validate_does_not_consume_the_coupon():
    client, db = _build_client(SAVE10_COUPON)

    first = client.post("/api/coupons/validate", json={"code": "SAVE10", "orderAmount": 200})
    second = client.post("/api/coupons/validate", json={"code": "SAVE10", "orderAmount": 200})

    assert first.json() == second.json()
    db.expire_all()
    assert db.query(Coupon).filter(Coupon.code == "SAVE10").one().used_count == 5


def test_validate_store_failure_returns_500_body(monkeypatch):
    monkeypatch.setattr(config, "IS_PROD", False)
    client = _client_with_broken_store()

    response = client.post("/api/coupons/validate", json={"code": "SAVE10", "orderAmount": 200})

    assert response.status_code == 500
    body = response.json()
    assert body["valid"] is False
    assert body["message"] == "Server Error"
    assert "database is locked" in body["error"]


def test_store_failure_does_not_leak_details_in_production(monkeypatch):
    monkeypatch.setattr(config, "IS_PROD", True)
    client = _client_with_broken_store()

    validate = client.post("/api/coupons/validate", json={"code": "SAVE10"})
    read = client.get("/api/coupons/1")

    assert validate.status_code == 500
    assert validate.json() == {"valid": False, "message": "Server Error", "error": "Internal Server Error"}
    assert read.status_code == 500
    assert read.json() == {"message": "Server Error", "error": "Internal Server Error"}


def test_create_coupon_normalizes_code_and_returns_201():
    client, _db = _build_client()

    response = client.post("/api/coupons", json=CREATE_COUPON_PAYLOAD)

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "Coupon created successfully"
    assert body["coupon"]["code"] == "WELCOME20"
    assert body["coupon"]["usedCount"] == 0
    assert body["coupon"]["minPurchase"] == 100
    assert body["coupon"]["isExpired"] is False


def test_create_duplicate_code_is_rejected():
    client, _db = _build_client(dict(SAVE10_COUPON, code="WELCOME20"))

    response = client.post("/api/coupons", json=CREATE_COUPON_PAYLOAD)

    assert response.status_code == 400
    assert response.json() == {"message": "Coupon with this code already exists"}


def test_create_requires_admin_token_when_configured(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_TOKEN", "s3cret")
    client, _db = _build_client()

    denied = client.post("/api/coupons", json=CREATE_COUPON_PAYLOAD)
    wrong = client.post("/api/coupons", json=CREATE_COUPON_PAYLOAD, headers={"Authorization": "Bearer nope"})
    allowed = client.post("/api/coupons", json=CREATE_COUPON_PAYLOAD, headers={"Authorization": "Bearer s3cret"})

    assert denied.status_code == 401
    assert wrong.status_code == 401
    assert allowed.status_code == 201


def test_admin_routes_refuse_to_run_unconfigured_in_production(monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_TOKEN", "")
    monkeypatch.setattr(config, "IS_PROD", True)
    client, _db = _build_client()

    response = client.post("/api/coupons", json=CREATE_COUPON_PAYLOAD)

    assert response.status_code == 503


def test_read_coupon_and_missing_coupon():
    client, db = _build_client(SAVE10_COUPON)
    coupon_id = db.query(Coupon.id).filter(Coupon.code == "SAVE10").scalar()

    found = client.get(f"/api/coupons/{coupon_id}")
    missing = client.get("/api/coupons/9999")

    assert found.status_code == 200
    assert found.json()["code"] == "SAVE10"
    assert found.json()["usageLimit"] == 100
    assert missing.status_code == 404
    assert missing.json() == {"message": "Coupon not found"}


def test_update_coupon_partial_fields():
    client, db = _build_client(SAVE10_COUPON)
    coupon_id = db.query(Coupon.id).filter(Coupon.code == "SAVE10").scalar()

    response = client.put(
        f"/api/coupons/{coupon_id}",
        json={"discountValue": 25, "description": None, "discountType": None},
    )

    assert response.status_code == 200
    coupon = response.json()["coupon"]
    assert coupon["discountValue"] == 25
    assert coupon["description"] is None
    assert coupon["discountType"] == "percentage"
    assert coupon["usedCount"] == 5


def test_update_to_existing_code_is_rejected():
    client, db = _build_client(SAVE10_COUPON, FLAT50_COUPON)
    coupon_id = db.query(Coupon.id).filter(Coupon.code == "SAVE10").scalar()

    response = client.put(f"/api/coupons/{coupon_id}", json={"code": "flat50"})

    assert response.status_code == 400
    assert response.json() == {"message": "Coupon with this code already exists"}


def test_toggle_coupon_flips_active_flag():
    client, db = _build_client(SAVE10_COUPON)
    coupon_id = db.query(Coupon.id).filter(Coupon.code == "SAVE10").scalar()

    off = client.put(f"/api/coupons/{coupon_id}/toggle")
    validate = client.post("/api/coupons/validate", json={"code": "SAVE10", "orderAmount": 100})
    on = client.put(f"/api/coupons/{coupon_id}/toggle")

    assert off.json()["message"] == "Coupon deactivated successfully"
    assert off.json()["coupon"]["isActive"] is False
    assert validate.status_code == 404
    assert on.json()["message"] == "Coupon activated successfully"
    assert on.json()["coupon"]["isActive"] is True


def test_delete_coupon():
    client, db = _build_client(SAVE10_COUPON)
    coupon_id = db.query(Coupon.id).filter(Coupon.code == "SAVE10").scalar()

    deleted = client.delete(f"/api/coupons/{coupon_id}")
    again = client.delete(f"/api/coupons/{coupon_id}")

    assert deleted.status_code == 200
    assert deleted.json() == {"message": "Coupon deleted successfully"}
    assert again.status_code == 404


def test_list_coupons_search_filter_and_pagination():
    client, _db = _build_client(
        SAVE10_COUPON,
        BIG_SPENDER_COUPON,
        dict(FLAT50_COUPON, is_active=False),
    )

    everything = client.get("/api/coupons", params={"limit": 2, "sortBy": "code", "sortOrder": "asc"})
    second_page = client.get("/api/coupons", params={"limit": 2, "page": 2, "sortBy": "code", "sortOrder": "asc"})
    searched = client.get("/api/coupons", params={"search": "large"})
    active_only = client.get("/api/coupons", params={"isActive": "true"})

    assert everything.status_code == 200
    assert everything.json()["total"] == 3
    assert everything.json()["totalPages"] == 2
    assert everything.json()["currentPage"] == 1
    assert [c["code"] for c in everything.json()["coupons"]] == ["BIG500", "FLAT50"]
    assert [c["code"] for c in second_page.json()["coupons"]] == ["SAVE10"]
    assert [c["code"] for c in searched.json()["coupons"]] == ["BIG500"]
    assert {c["code"] for c in active_only.json()["coupons"]} == {"SAVE10", "BIG500"}


def test_redeem_consumes_until_limit():
    client, _db = _build_client(FLAT50_COUPON)

    statuses = [client.post("/api/coupons/redeem", json={"code": "flat50"}).status_code for _ in range(4)]
    validate = client.post("/api/coupons/validate", json={"code": "FLAT50", "orderAmount": 100})

    assert statuses == [200, 200, 200, 409]
    assert validate.json() == {"valid": False, "message": "Coupon usage limit exceeded"}
