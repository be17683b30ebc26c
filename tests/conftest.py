# tests/conftest.py
"""
Pytest fixtures for Node Trust Agent tests
Certificates, PKI directories and settings shared by the test modules
"""

import asyncio
import datetime
import sys
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from node_trust.config import Settings  # noqa: E402


def make_certificate(common_name: str):
    """Self-signed EC certificate, returns (key_pem, cert_pem)"""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=1))
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return key_pem, cert.public_bytes(serialization.Encoding.PEM)


async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.005):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(interval)


# ============================================
# Certificates
# ============================================

@pytest.fixture(scope="session")
def cert_factory():
    """Returns a cached certificate per common name"""
    cache = {}

    def factory(common_name: str) -> bytes:
        if common_name not in cache:
            cache[common_name] = make_certificate(common_name)
        return cache[common_name][1]

    return factory


@pytest.fixture
def pki_dir(tmp_path):
    """PKI directory with key.pem, cert.pem and ca.pem"""
    key_pem, cert_pem = make_certificate("node-a")
    _, ca_pem = make_certificate("test-ca")
    (tmp_path / "key.pem").write_bytes(key_pem)
    (tmp_path / "cert.pem").write_bytes(cert_pem)
    (tmp_path / "ca.pem").write_bytes(ca_pem)
    return tmp_path


@pytest.fixture
def wait_until():
    """Async helper polling a predicate until it holds"""
    return _wait_until


# ============================================
# Settings
# ============================================

@pytest.fixture
def settings(pki_dir):
    """PKI settings that never touch iptables or Kubernetes"""
    return Settings(
        KUBERNETES_NODE="node-a",
        AUTH_TYPE="PKI",
        PKI_DIRECTORY=str(pki_dir),
        NODE_CERT_ANNOTATION="node-trust.io/cert",
        EXCLUSION_NAMESPACE="kube-system",
        EXCLUSION_CONFIGMAP="node-trust-exclusions",
        EXCLUSION_KEY="networks",
        EXCLUDER_BACKEND="memory",
        CLUSTER_NETWORKS=["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"],
        EVICT_DELETED_PEERS=False,
        WATCH_BACKOFF_MIN=0.001,
        WATCH_BACKOFF_MAX=0.01,
        STATUS_PORT=0,
        KUBERNETES_PORT="",
        KUBECONFIG="",
    )


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Environment without any agent variable set"""
    for name in Settings.model_fields:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("NODE_TRUST_PKI", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    return monkeypatch
