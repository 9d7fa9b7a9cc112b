"""
Generic Kubernetes provider: gateways are existing worker nodes carrying the gateway label.
No cloud-side rules are managed.
"""
import logging
from typing import List, Sequence

from cloudprep.cloud.provider import GatewayBackend
from cloudprep.cloud.types import KIND_LABELED, EligibleZone, GatewayDeployRequest, GatewayResource, ReconcileResult
from cloudprep.config.config import CloudInfo
from cloudprep.kubernetes.nodes import NodeClient

logger = logging.getLogger(__name__)


class GenericGatewayBackend(GatewayBackend):
    """Label-only gateway backend for clusters without cloud integration."""

    supports_labeling = True

    def __init__(self, info: CloudInfo, nodes: NodeClient):
        super().__init__(info)
        self.nodes = nodes

    def locate_existing(self) -> List[GatewayResource]:
        return [
            GatewayResource(name=node.metadata.name, kind=KIND_LABELED, attributes={"node": node.metadata.name})
            for node in self.nodes.list_gateway_nodes()
        ]

    def ensure_rule_set(self, request: GatewayDeployRequest) -> ReconcileResult:
        return ReconcileResult.NOOP

    def remove_rule_set(self) -> ReconcileResult:
        return ReconcileResult.NOOP

    def list_placement_candidates(
        self, request: GatewayDeployRequest, existing: Sequence[GatewayResource]
    ) -> List[EligibleZone]:
        return [
            EligibleZone(identifier=node.metadata.name, attributes={"node": node.metadata.name})
            for node in self.nodes.list_untagged_workers()
        ]

    def create_gateway_resource(self, target: EligibleZone, request: GatewayDeployRequest) -> GatewayResource:
        self.nodes.add_gateway_label(target.identifier)
        return GatewayResource(name=target.identifier, kind=KIND_LABELED, attributes={"node": target.identifier})

    def delete_gateway_resource(self, resource: GatewayResource) -> bool:
        return self.nodes.remove_gateway_label(resource.name)
