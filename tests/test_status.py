# tests/test_status.py
"""
Unit Tests for the status HTTP endpoint
"""

from types import SimpleNamespace

from fastapi.testclient import TestClient

from node_trust.cache import CertificateCache
from node_trust.exclusion import ExclusionSet
from node_trust.identity import AuthMode
from node_trust.status import create_status_app
from node_trust.trust_sync import TrustState


def make_agent(**overrides):
    cache = CertificateCache()
    cache.add_public_key("node-b", b"cert-b")
    cache.add_public_key("node-c", b"cert-c")
    agent = SimpleNamespace(
        node_name="node-a",
        auth_mode=AuthMode.PKI,
        running=True,
        trust_sync=SimpleNamespace(state=TrustState.WATCHING),
        certificate_cache=cache,
        exclusion_sync=SimpleNamespace(current=ExclusionSet.of(["10.1.0.0/16"])),
    )
    for key, value in overrides.items():
        setattr(agent, key, value)
    return agent


class TestHealth:
    """/health"""

    def test_running(self):
        client = TestClient(create_status_app(make_agent()))

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "node-trust-agent"}

    def test_starting(self):
        client = TestClient(create_status_app(make_agent(running=False)))

        assert client.get("/health").json()["status"] == "starting"


class TestStatus:
    """/status"""

    def test_pki_agent(self):
        client = TestClient(create_status_app(make_agent()))

        data = client.get("/status").json()

        assert data == {
            "node": "node-a",
            "auth_mode": "PKI",
            "running": True,
            "trust_state": "watching",
            "peers": ["node-b", "node-c"],
            "exclusions": ["10.1.0.0/16"],
        }

    def test_psk_agent_before_exclusions_loaded(self):
        agent = make_agent(
            auth_mode=AuthMode.PSK,
            trust_sync=None,
            certificate_cache=None,
            exclusion_sync=None,
        )
        client = TestClient(create_status_app(agent))

        data = client.get("/status").json()

        assert data["auth_mode"] == "PSK"
        assert data["trust_state"] is None
        assert data["peers"] == []
        assert data["exclusions"] == []
