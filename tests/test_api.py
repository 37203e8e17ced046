"""
Tests for the read API.
"""

import time

import pytest
from fastapi.testclient import TestClient
from structlog.testing import capture_logs
from web3 import Web3

from reputation_relay.api import create_app
from reputation_relay.ledger import DedupLedger
from reputation_relay.relayer import EventRelayer
from reputation_relay.scores import ScoreQueryFacade
from reputation_relay.submitter import RelaySubmitter

from conftest import USER, FakeChain, FakeReputation

CHECKSUM_USER = Web3.to_checksum_address(USER)


@pytest.fixture
def reputation():
    reputation = FakeReputation()
    reputation.totals[CHECKSUM_USER] = 77
    reputation.protocol_scores[(CHECKSUM_USER, "lending")] = 77
    return reputation


@pytest.fixture
def relayer(registry, reputation):
    chain = FakeChain()
    submitter = RelaySubmitter(chain, reputation, DedupLedger())
    relayer = EventRelayer(chain, registry, submitter)
    relayer.state.checkpoint = 321
    relayer.state.ledger.try_claim("0xaa-0")
    return relayer


@pytest.fixture
def client(relayer, reputation):
    return TestClient(create_app(relayer, ScoreQueryFacade(reputation)))


class TestReputation:
    def test_returns_score(self, client):
        response = client.get(f"/reputation/{USER}")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["address"] == CHECKSUM_USER
        assert body["data"]["totalScore"] == 77
        assert body["data"]["breakdown"]["lending"] == 77

    def test_invalid_address(self, client):
        response = client.get("/reputation/not-an-address")

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid Ethereum address"}

    def test_read_failure_is_not_found(self, client, reputation):
        reputation.read_error = ConnectionError("rpc down")

        response = client.get(f"/reputation/{USER}")

        assert response.status_code == 404
        assert response.json()["success"] is False


class TestHealthAndStats:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert "timestamp" in body

    def test_stats(self, client):
        response = client.get("/stats")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["protocolsMonitored"] == 2
        assert data["eventsProcessed"] == 1
        assert data["checkpoint"] == 321
        assert data["uptime"] >= 0
        assert data["lastPollTime"] is None


class TestLifespan:
    def test_relay_runs_inside_app_and_stops_on_shutdown(self, relayer, reputation):
        relayer.poll_interval_seconds = 0.01
        app = create_app(relayer, ScoreQueryFacade(reputation), run_relayer=True)

        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
            for _ in range(100):
                if relayer.state.last_poll_time is not None:
                    break
                time.sleep(0.01)
            assert client.get("/stats").json()["data"]["lastPollTime"].endswith("+00:00")

        assert not relayer.is_running
        assert relayer.state.checkpoint == 100

    def test_startup_failure_is_logged_and_reported_unhealthy(self, relayer, reputation):
        reputation.owner_error = ConnectionError("rpc down")
        app = create_app(relayer, ScoreQueryFacade(reputation), run_relayer=True)

        with capture_logs() as logs:
            with TestClient(app) as client:
                for _ in range(100):
                    response = client.get("/health")
                    if response.status_code == 503:
                        break
                    time.sleep(0.01)

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
        assert response.json()["success"] is False
        assert not relayer.is_running
        crashes = [log for log in logs if log["event"] == "relayer_crashed"]
        assert crashes and crashes[0]["error"] == "rpc down"
