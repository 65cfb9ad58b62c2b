"""
Unit Tests for the HTTP API

Tests cover:
1. Redeem endpoint success and error mapping
2. Public configuration endpoint
3. Outcome history endpoint
"""

import random

import pytest
from fastapi.testclient import TestClient

from redemption.api import create_app
from redemption.config import Settings
from redemption.decider import OutcomeDecider
from redemption.models import PoolConfig
from redemption.service import RedemptionService
from redemption.sql_storage import PoolRow, SqlStorage
from redemption.storage import POOL_KEY, InMemoryStorage


SETTINGS = Settings(backoff_multiplier=0, symbols=("A", "B", "C"))


def make_client(codes=("CODE-1",), pool=None):
    storage = InMemoryStorage()
    storage.seed(codes=codes, pool=pool)
    service = RedemptionService(
        storage=storage,
        decider=OutcomeDecider(rng=random.Random(4), symbols=SETTINGS.symbols),
        settings=SETTINGS,
    )
    return TestClient(create_app(service=service, settings=SETTINGS))


class TestRedeemEndpoint:
    """Tests for POST /redeem."""

    def test_win(self):
        client = make_client(pool=PoolConfig(remaining=2, win_probability=1.0, reward_label="Free coffee"))

        response = client.post("/redeem", json={"code": "CODE-1"}, headers={"X-Requester-Id": "user-9"})

        assert response.status_code == 200
        body = response.json()
        assert body["won"] is True
        assert body["display_symbols"] == [body["reward_symbol"]] * 3
        assert body["reward_label"] == "Free coffee"
        assert body["remaining_after"] == 1

        outcomes = client.get("/outcomes").json()
        assert outcomes["outcomes"][0]["redeemer_id"] == "user-9"

    def test_reuse_is_conflict(self):
        client = make_client(pool=PoolConfig(remaining=2, win_probability=0.0))

        assert client.post("/redeem", json={"code": "CODE-1"}).status_code == 200
        response = client.post("/redeem", json={"code": "CODE-1"})

        assert response.status_code == 409
        assert response.json()["error"] == "already_used"

    @pytest.mark.parametrize(
        "code,pool,status,error",
        [
            ("", PoolConfig(remaining=1), 400, "invalid_input"),
            ("UNKNOWN", PoolConfig(remaining=1), 404, "not_found"),
            ("CODE-1", None, 503, "config_unavailable"),
        ],
    )
    def test_error_mapping(self, code, pool, status, error):
        client = make_client(pool=pool)

        response = client.post("/redeem", json={"code": code})

        assert response.status_code == status
        assert response.json()["error"] == error
        assert response.json()["detail"]

    @pytest.mark.parametrize("payload", [{}, {"code": 123}, {"code": None}])
    def test_malformed_body_is_invalid_input(self, payload):
        """A body that does not parse is reported like any other bad input."""
        client = make_client(pool=PoolConfig(remaining=1))

        response = client.post("/redeem", json=payload)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "invalid_input"
        assert "code" in body["detail"]


class TestConfigEndpoint:
    """Tests for GET /config."""

    def test_uninitialized_pool_is_empty_object(self):
        client = make_client(pool=None)

        response = client.get("/config")

        assert response.status_code == 200
        assert response.json() == {}

    def test_public_fields_only(self):
        client = make_client(pool=PoolConfig(remaining=4, win_probability=0.25, reward_label="Free coffee"))

        response = client.get("/config")

        assert response.json() == {"reward_label": "Free coffee", "remaining": 4}

    def test_invalid_stored_pool_is_empty_object(self, tmp_path):
        """A pool row that fails validation reads as no configuration."""
        storage = SqlStorage(url=f"sqlite:///{tmp_path / 'config.sqlite3'}")
        with storage.Session() as session:
            session.add(PoolRow(id=POOL_KEY, remaining=3, win_probability=1.5, reward_label="Prize"))
            session.commit()
        client = TestClient(create_app(service=RedemptionService(storage=storage, settings=SETTINGS), settings=SETTINGS))

        response = client.get("/config")

        assert response.status_code == 200
        assert response.json() == {}


class TestSystemEndpoints:
    def test_health(self):
        client = make_client()

        assert client.get("/health").json() == {"status": "healthy", "service": "code-redemption"}

    def test_outcomes_filter(self):
        client = make_client(codes=("CODE-1", "CODE-2"), pool=PoolConfig(remaining=1, win_probability=0.0))
        client.post("/redeem", json={"code": "CODE-1"})
        client.post("/redeem", json={"code": "CODE-2"})

        body = client.get("/outcomes", params={"code": "CODE-2"}).json()

        assert body["total_count"] == 1
        assert body["outcomes"][0]["code"] == "CODE-2"
