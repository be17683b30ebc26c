# node_trust/resolver.py
"""
Kubernetes policy resolver

Owns the metadata store client and turns local workloads into
policies for the enforcer. Policy computation itself is kept minimal.
"""

import logging
from typing import Any, Dict, Optional

from .store.base import MetadataClient

logger = logging.getLogger('node-trust.resolver')


class KubernetesPolicy:
    """
    Resolves workload labels into enforcement policies
    """

    def __init__(self, store: MetadataClient, node_name: str):
        self.store = store
        self.node_name = node_name
        self.policy_updater = None
        self.excluder = None
        self.running = False
        self.workloads: Dict[str, Dict[str, str]] = {}

    def set_policy_updater(self, updater):
        self.policy_updater = updater

    def set_excluder(self, excluder):
        self.excluder = excluder

    def resolve(self, context_id: str, labels: Dict[str, str]) -> Dict[str, Any]:
        excluded = sorted(self.excluder.excluded) if self.excluder is not None else []
        return {
            "context_id": context_id,
            "node": self.node_name,
            "labels": dict(labels),
            "excluded_networks": excluded,
        }

    def add_workload(self, context_id: str, labels: Optional[Dict[str, str]] = None):
        self.workloads[context_id] = dict(labels or {})
        if self.running and self.policy_updater is not None:
            self.policy_updater.update_policy(context_id, self.resolve(context_id, self.workloads[context_id]))

    def remove_workload(self, context_id: str):
        self.workloads.pop(context_id, None)
        if self.policy_updater is not None:
            self.policy_updater.remove_policy(context_id)

    def resync_workloads(self):
        """Push a policy for every known workload"""
        if self.policy_updater is None:
            return
        for context_id, labels in self.workloads.items():
            self.policy_updater.update_policy(context_id, self.resolve(context_id, labels))
        logger.info(f"Resynced {len(self.workloads)} workloads")

    def run(self):
        if self.policy_updater is None:
            raise RuntimeError("Policy updater must be set before running the resolver")
        self.running = True
        logger.info(f"Policy resolver running for node {self.node_name}")

    def stop(self):
        self.running = False
        logger.info("Policy resolver stopped")
