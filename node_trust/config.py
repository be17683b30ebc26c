# node_trust/config.py
"""
Agent configuration

Values come from, in order of precedence:
1) Command line flags
2) Environment variables
3) Defaults
"""

import argparse
import ipaddress
import os
from typing import List, Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings

from .errors import ConfigError
from .identity import AuthMode, truncate_node_name

DEFAULT_CLUSTER_NETWORKS = ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"]
KUBECONFIG_LOCATION = ".kube/config"


class Settings(BaseSettings):
    # Node identity
    KUBERNETES_NODE: str = ""
    NODE_CERT_ANNOTATION: str = "node-trust.io/cert"

    # Authentication
    AUTH_TYPE: str = "PKI"
    PKI_DIRECTORY: str = os.getenv("NODE_TRUST_PKI", "/var/node-trust/")
    NODE_TRUST_PSK: str = "NodeTrust"

    # Kubernetes access (KUBERNETES_PORT is set inside a pod)
    KUBERNETES_PORT: str = ""
    KUBECONFIG: str = ""

    # Networks enforced by this cluster; exclusions must fall inside them
    CLUSTER_NETWORKS: List[str] = DEFAULT_CLUSTER_NETWORKS

    # Cluster-wide exclusion record
    EXCLUSION_NAMESPACE: str = "kube-system"
    EXCLUSION_CONFIGMAP: str = "node-trust-exclusions"
    EXCLUSION_KEY: str = "networks"
    EXCLUDER_BACKEND: str = "iptables"

    EXISTING_WORKLOAD_SYNC: bool = True
    EVICT_DELETED_PEERS: bool = False

    # Watch resubscription backoff (seconds)
    WATCH_BACKOFF_MIN: float = 1.0
    WATCH_BACKOFF_MAX: float = 60.0

    STATUS_PORT: int = 0
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    @property
    def node_name(self) -> str:
        """Node name cut to the enforcement server id limit"""
        return truncate_node_name(self.KUBERNETES_NODE)

    @property
    def auth_mode(self) -> AuthMode:
        return AuthMode.parse(self.AUTH_TYPE)

    @property
    def in_cluster(self) -> bool:
        return bool(self.KUBERNETES_PORT)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Node Trust Agent")
    parser.add_argument("--node", help="Node name in Kubernetes")
    parser.add_argument("--annotation", help="Node annotation key holding the node certificate")
    parser.add_argument("--pki", help="Directory containing key.pem, cert.pem and ca.pem")
    parser.add_argument("--kubeconfig", help="Kubeconfig used to connect to Kubernetes")
    parser.add_argument("--auth", choices=["PSK", "PKI"], help="Authentication mode")
    parser.add_argument(
        "--network",
        action="append",
        dest="networks",
        help="Cluster network CIDR (repeatable)",
    )
    parser.add_argument("--status-port", type=int, help="Status HTTP port, 0 disables it")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level",
    )
    return parser


def load_config(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> Settings:
    """
    Build the effective settings

    Raises:
        ConfigError: node name missing, unknown auth type, bad network or
            an environment value of the wrong type
    """
    args = build_parser().parse_args(argv)
    if settings is None:
        try:
            settings = Settings()
        except ValidationError as e:
            raise ConfigError(f"Invalid environment: {e}") from e

    flags = {
        "KUBERNETES_NODE": args.node,
        "NODE_CERT_ANNOTATION": args.annotation,
        "PKI_DIRECTORY": args.pki,
        "KUBECONFIG": args.kubeconfig,
        "AUTH_TYPE": args.auth,
        "CLUSTER_NETWORKS": args.networks,
        "STATUS_PORT": args.status_port,
        "LOG_LEVEL": args.log_level,
    }
    overrides = {k: v for k, v in flags.items() if v is not None and v != ""}
    settings = settings.model_copy(update=overrides)

    if not settings.KUBERNETES_NODE:
        raise ConfigError("Couldn't load node name: use --node or KUBERNETES_NODE")

    try:
        settings.auth_mode
    except ValueError as e:
        raise ConfigError(str(e)) from e

    for network in settings.CLUSTER_NETWORKS:
        try:
            ipaddress.ip_network(network, strict=False)
        except ValueError:
            raise ConfigError(f"Invalid cluster network: {network!r}")

    if not settings.in_cluster and not settings.KUBECONFIG:
        home = os.environ.get("HOME", "")
        settings = settings.model_copy(update={"KUBECONFIG": os.path.join(home, KUBECONFIG_LOCATION)})

    return settings
