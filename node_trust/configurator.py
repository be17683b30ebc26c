# node_trust/configurator.py
"""
Collaborator bundles per authentication mode

Both bundles expose the same fields, so the agent wires them without
caring which mode is active:
- policy_updater: the Enforcer
- excluder: receives exclusion sets
- public_key_adder: peer certificate hook (None under PSK)
- monitor: workload monitor
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from .cache import CertificateCache
from .enforcer import Enforcer, PKISecrets, PSKSecrets, WorkloadMonitor
from .firewall.excluder import Excluder
from .identity import AuthMode
from .pki import PKIMaterial, load_pki

logger = logging.getLogger('node-trust.configurator')


@dataclass
class PSKBundle:
    policy_updater: Enforcer
    excluder: Excluder
    monitor: WorkloadMonitor
    public_key_adder: None = None
    auth_mode: AuthMode = AuthMode.PSK


@dataclass
class PKIBundle:
    policy_updater: Enforcer
    excluder: Excluder
    monitor: WorkloadMonitor
    public_key_adder: CertificateCache
    pki: PKIMaterial
    auth_mode: AuthMode = AuthMode.PKI


Bundle = Union[PSKBundle, PKIBundle]


def new_psk_bundle(
    server_id: str,
    networks: List[str],
    resolver,
    psk: bytes,
    excluder: Excluder,
    sync_existing: bool = True,
) -> PSKBundle:
    logger.info("Configuring PSK enforcement")
    return PSKBundle(
        policy_updater=Enforcer(server_id, networks, PSKSecrets(psk)),
        excluder=excluder,
        monitor=WorkloadMonitor(resolver, sync_existing),
    )


def new_pki_bundle(
    server_id: str,
    networks: List[str],
    resolver,
    pki: PKIMaterial,
    excluder: Excluder,
    sync_existing: bool = True,
    cache: Optional[CertificateCache] = None,
) -> PKIBundle:
    logger.info("Configuring PKI enforcement")
    cache = cache if cache is not None else CertificateCache()
    return PKIBundle(
        policy_updater=Enforcer(server_id, networks, PKISecrets(pki, cache)),
        excluder=excluder,
        monitor=WorkloadMonitor(resolver, sync_existing),
        public_key_adder=cache,
        pki=pki,
    )


def new_bundle(settings, resolver, excluder: Excluder) -> Bundle:
    """
    Build the bundle for settings.auth_mode

    Raises:
        KeyMaterialError: PKI mode and the PKI files cannot be loaded
    """
    server_id = settings.node_name
    if settings.auth_mode is AuthMode.PKI:
        pki = load_pki(settings.PKI_DIRECTORY)
        return new_pki_bundle(
            server_id, settings.CLUSTER_NETWORKS, resolver, pki, excluder, settings.EXISTING_WORKLOAD_SYNC
        )
    return new_psk_bundle(
        server_id,
        settings.CLUSTER_NETWORKS,
        resolver,
        settings.NODE_TRUST_PSK.encode(),
        excluder,
        settings.EXISTING_WORKLOAD_SYNC,
    )
