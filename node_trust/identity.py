# node_trust/identity.py
"""
Node identity and authentication mode
"""

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger('node-trust.identity')

# Maximum server id length carried in enforcement tokens
MAX_SERVER_NAME = 24


class AuthMode(Enum):
    """How enforcement peers authenticate each other"""
    PSK = "PSK"
    PKI = "PKI"

    @classmethod
    def parse(cls, value: str) -> "AuthMode":
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(f"Unknown auth type: {value!r} (expected PSK or PKI)")


def truncate_node_name(name: str, limit: int = MAX_SERVER_NAME) -> str:
    """Cut a node name down to the enforcement layer's server id limit"""
    if len(name) > limit:
        logger.debug(f"Truncating node name {name!r} to {limit} characters")
        return name[:limit]
    return name


@dataclass(frozen=True)
class NodeIdentity:
    """
    Local node identity, built once at startup

    `name` is the enforcement server id (truncated); `object_name` is
    the untruncated name of the node object in the metadata store.
    """
    name: str
    certificate: bytes = b""
    object_name: str = ""

    @classmethod
    def create(cls, name: str, certificate: bytes = b"") -> "NodeIdentity":
        return cls(name=truncate_node_name(name), certificate=certificate, object_name=name)

    @property
    def store_name(self) -> str:
        return self.object_name or self.name

    @property
    def certificate_text(self) -> str:
        return self.certificate.decode()
