# node_trust/pki.py
"""
PKI material loading

Reads the node key pair and CA certificate mounted into the PKI directory.
Material is only loaded and sanity-checked here, never issued.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .errors import KeyMaterialError

logger = logging.getLogger('node-trust.pki')

KEY_PEM_FILE = "key.pem"
CERT_PEM_FILE = "cert.pem"
CA_CERT_PEM_FILE = "ca.pem"


@dataclass(frozen=True)
class PKIMaterial:
    """PEM encoded key material for PKI mode"""
    key_pem: bytes
    cert_pem: bytes
    ca_cert_pem: bytes


def parse_certificate(pem: Union[str, bytes]) -> Optional[x509.Certificate]:
    """
    Parse a PEM certificate

    Returns:
        The certificate, or None if the data is not a PEM X.509 certificate
    """
    if isinstance(pem, str):
        pem = pem.encode()
    try:
        return x509.load_pem_x509_certificate(pem)
    except ValueError:
        return None


def is_valid_certificate(pem: Union[str, bytes]) -> bool:
    return parse_certificate(pem) is not None


def _read(directory: Path, filename: str) -> bytes:
    path = directory / filename
    try:
        return path.read_bytes()
    except OSError as e:
        raise KeyMaterialError(f"Cannot read {path}: {e}") from e


def load_pki(directory: Union[str, Path]) -> PKIMaterial:
    """
    Load key.pem, cert.pem and ca.pem from a directory

    Raises:
        KeyMaterialError: a file is missing or does not hold valid PEM data
    """
    directory = Path(directory)
    key_pem = _read(directory, KEY_PEM_FILE)
    cert_pem = _read(directory, CERT_PEM_FILE)
    ca_cert_pem = _read(directory, CA_CERT_PEM_FILE)

    try:
        serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError) as e:
        raise KeyMaterialError(f"Invalid private key in {directory / KEY_PEM_FILE}: {e}") from e

    for filename, pem in ((CERT_PEM_FILE, cert_pem), (CA_CERT_PEM_FILE, ca_cert_pem)):
        if not is_valid_certificate(pem):
            raise KeyMaterialError(f"Invalid certificate in {directory / filename}")

    logger.info(f"Loaded PKI material from {directory}")
    return PKIMaterial(key_pem=key_pem, cert_pem=cert_pem, ca_cert_pem=ca_cert_pem)
