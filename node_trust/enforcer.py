# node_trust/enforcer.py
"""
Enforcement collaborators

The packet datapath is external; these classes are the in-process
side of it: the token secrets peers are verified with, the policy
table the resolver pushes into, and the workload monitor.
"""

import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .identity import AuthMode

if TYPE_CHECKING:
    from .cache import CertificateCache
    from .pki import PKIMaterial

logger = logging.getLogger('node-trust.enforcer')


class PSKSecrets:
    """Shared secret used by every node"""

    auth_mode = AuthMode.PSK

    def __init__(self, psk: bytes):
        if not psk:
            raise ValueError("PSK must not be empty")
        self.psk = psk

    def peer_key(self, node_name: str) -> Optional[bytes]:
        return self.psk


class PKISecrets:
    """Local key pair plus the cache of peer certificates"""

    auth_mode = AuthMode.PKI

    def __init__(self, material: "PKIMaterial", public_keys: "CertificateCache"):
        self.key_pem = material.key_pem
        self.cert_pem = material.cert_pem
        self.ca_cert_pem = material.ca_cert_pem
        self.public_keys = public_keys

    def peer_key(self, node_name: str) -> Optional[bytes]:
        """Certificate of a peer, None while the peer is unknown"""
        return self.public_keys.get(node_name)


class Enforcer:
    """
    Policy enforcement engine

    Receives policies from the resolver and verifies peers with its secrets.
    """

    def __init__(self, server_id: str, networks: List[str], secrets):
        self.server_id = server_id
        self.networks = list(networks)
        self.secrets = secrets
        self.running = False
        self._policies: Dict[str, Dict[str, Any]] = {}

    @property
    def auth_mode(self) -> AuthMode:
        return self.secrets.auth_mode

    def start(self):
        self.running = True
        logger.info(f"Enforcer started ({self.auth_mode.value}, server id {self.server_id})")

    def stop(self):
        self.running = False
        logger.info("Enforcer stopped")

    def update_policy(self, context_id: str, policy: Dict[str, Any]):
        self._policies[context_id] = policy
        logger.debug(f"Policy updated for {context_id}")

    def remove_policy(self, context_id: str):
        self._policies.pop(context_id, None)

    def policy_for(self, context_id: str) -> Optional[Dict[str, Any]]:
        return self._policies.get(context_id)

    def can_verify(self, node_name: str) -> bool:
        """True once a key for the peer is known"""
        return self.secrets.peer_key(node_name) is not None


class WorkloadMonitor:
    """
    Tracks workload lifecycle events on this node

    With sync_existing, workloads already running at startup are
    reported to the resolver when the monitor starts.
    """

    def __init__(self, resolver=None, sync_existing: bool = True):
        self.resolver = resolver
        self.sync_existing = sync_existing
        self.running = False

    def start(self):
        self.running = True
        if self.sync_existing and self.resolver is not None:
            self.resolver.resync_workloads()
        logger.info("Workload monitor started")

    def stop(self):
        self.running = False
        logger.info("Workload monitor stopped")
