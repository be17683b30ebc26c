# node_trust/cache.py
"""
Certificate Cache

Node name -> PEM certificate. Written by the trust synchronizer,
read by the enforcement engine (possibly from another thread).
"""

import logging
import threading
from typing import Dict, Optional

logger = logging.getLogger('node-trust.cache')


class CertificateCache:
    """
    Locked mapping of peer certificates

    Callers only get copies; the internal dict never leaves this class.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._certs: Dict[str, bytes] = {}

    def add_public_key(self, node_name: str, certificate: bytes) -> bool:
        """
        Add or update the certificate for a node

        Returns:
            True if the cache changed
        """
        with self._lock:
            if self._certs.get(node_name) == certificate:
                return False
            self._certs[node_name] = certificate
        logger.debug(f"Cached certificate for {node_name}")
        return True

    def remove_public_key(self, node_name: str) -> bool:
        with self._lock:
            removed = self._certs.pop(node_name, None) is not None
        if removed:
            logger.debug(f"Evicted certificate for {node_name}")
        return removed

    def get(self, node_name: str) -> Optional[bytes]:
        with self._lock:
            return self._certs.get(node_name)

    def snapshot(self) -> Dict[str, bytes]:
        with self._lock:
            return dict(self._certs)

    def __contains__(self, node_name: str) -> bool:
        with self._lock:
            return node_name in self._certs

    def __len__(self) -> int:
        with self._lock:
            return len(self._certs)
