"""
Gateway labelling of cluster nodes.
"""
import logging
from typing import List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from cloudprep.cloud.types import GATEWAY_LABEL, GATEWAY_LABEL_VALUE
from cloudprep.utils.retry import RetryPolicy, fixed_backoff

logger = logging.getLogger(__name__)

WORKER_ROLE_LABEL = "node-role.kubernetes.io/worker"
MASTER_ROLE_LABELS = ("node-role.kubernetes.io/master", "node-role.kubernetes.io/control-plane")
ZONE_LABEL = "topology.kubernetes.io/zone"

# Label writes are read-modify-write against resourceVersion.
CONFLICT_RETRY = RetryPolicy(
    max_attempts=5,
    backoff=fixed_backoff(0.01),
    retryable=lambda exc: isinstance(exc, ApiException) and exc.status == 409,
)


def load_core_api(kubeconfig: Optional[str] = None) -> client.CoreV1Api:
    """Build a CoreV1Api from a kubeconfig file, falling back to in-cluster config."""
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
    else:
        try:
            config.load_kube_config()
        except config.ConfigException:
            config.load_incluster_config()
    return client.CoreV1Api()


def is_master_node(node) -> bool:
    """A node is a control-plane node if it carries a master/control-plane taint or role label."""
    taints = (node.spec.taints if node.spec else None) or []
    for taint in taints:
        if taint.key in MASTER_ROLE_LABELS and taint.effect == "NoSchedule":
            return True
    labels = node.metadata.labels or {}
    return any(role in labels for role in MASTER_ROLE_LABELS)


class NodeClient:
    """Lists nodes and asserts or retracts the gateway label on them."""

    def __init__(self, core_api: client.CoreV1Api, retry_policy: RetryPolicy = CONFLICT_RETRY):
        self.core_api = core_api
        self.retry_policy = retry_policy
        self.logger = logging.getLogger(f"{__name__}.NodeClient")

    def list_nodes(self, label_selector: str = "") -> List:
        return list(self.core_api.list_node(label_selector=label_selector).items)

    def list_gateway_nodes(self) -> List:
        return self.list_nodes(f"{GATEWAY_LABEL}={GATEWAY_LABEL_VALUE}")

    def list_untagged_workers(self, worker_selector: str = "") -> List:
        """Nodes without the gateway label that are not control-plane nodes."""
        selector = f"!{GATEWAY_LABEL}"
        if worker_selector:
            selector = f"{selector},{worker_selector}"
        return [node for node in self.list_nodes(selector) if not is_master_node(node)]

    def add_gateway_label(self, node_name: str) -> None:
        """Label ``node_name`` as a gateway.

        Raises:
            ApiException: If the node cannot be read or updated.
        """
        self.retry_policy.run(self._set_label, node_name, GATEWAY_LABEL, GATEWAY_LABEL_VALUE)
        self.logger.info(f"Labeled node {node_name} as a gateway")

    def remove_gateway_label(self, node_name: str) -> bool:
        """Remove the gateway label from ``node_name``.

        Returns:
            False if the node or the label was already gone.
        """
        try:
            return self.retry_policy.run(self._set_label, node_name, GATEWAY_LABEL, None)
        except ApiException as e:
            if e.status == 404:
                return False
            raise

    def remove_gateway_label_from_workers(self) -> int:
        """Remove the gateway label from every labeled node. Returns how many were changed."""
        removed = 0
        for node in self.list_gateway_nodes():
            if self.remove_gateway_label(node.metadata.name):
                removed += 1
        return removed

    def _set_label(self, node_name: str, key: str, value: Optional[str]) -> bool:
        node = self.core_api.read_node(node_name)
        labels = dict(node.metadata.labels or {})
        if value is None:
            if key not in labels:
                return False
            del labels[key]
        else:
            if labels.get(key) == value:
                return False
            labels[key] = value
        node.metadata.labels = labels
        self.core_api.replace_node(node_name, node)
        return True
