"""
OpenStack (RHOS) cloud provider implementation: security groups and labeled gateway nodes.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import openstack
from openstack import exceptions as os_exceptions
from kubernetes.client.rest import ApiException

from cloudprep.cloud.provider import CloudProvider, GatewayBackend
from cloudprep.cloud.types import (
    KIND_LABELED,
    EligibleZone,
    GatewayDeployRequest,
    GatewayResource,
    PortSpec,
    ReconcileResult,
    SecurityRule,
)
from cloudprep.config.config import CloudInfo
from cloudprep.gateway.reconciler import RuleSetReconciler, RuleSetStore
from cloudprep.kubernetes.nodes import WORKER_ROLE_LABEL, NodeClient
from cloudprep.utils.reporter import Reporter

logger = logging.getLogger(__name__)

GATEWAY_SG_SUFFIX = "-submariner-gw-sg"
WORKER_SG_SUFFIX = "-worker"
INTERNAL_RULE_PREFIX = "Submariner-Internal-"
EXTERNAL_RULE_PREFIX = "Submariner-External-"


def connect(info: CloudInfo):
    """Open an OpenStack connection for the configured cloud (``clouds.yaml`` entry)."""
    return openstack.connect(cloud=info.options.get("cloud_name"), region_name=info.region or None)


def _rule_key(rule: Dict[str, Any]) -> Tuple:
    return (
        rule.get("direction"),
        rule.get("protocol"),
        rule.get("port_range_min"),
        rule.get("port_range_max"),
        rule.get("remote_ip_prefix"),
        rule.get("description"),
    )


class SecurityGroupRuleStore(RuleSetStore):
    """Rules of Neutron security groups."""

    kind = "security group"

    def __init__(self, conn):
        self.conn = conn

    def find(self, group: str):
        return self.conn.network.find_security_group(group, ignore_missing=True)

    def get(self, group: str) -> Optional[List[Dict[str, Any]]]:
        sg = self.find(group)
        if sg is None:
            return None
        return [dict(rule) for rule in sg.security_group_rules or []]

    def rule_name(self, rule: Dict[str, Any]) -> str:
        return rule.get("description") or ""

    def to_provider_rule(self, rule: SecurityRule) -> Dict[str, Any]:
        return {
            "direction": rule.direction,
            "protocol": rule.protocol,
            "port_range_min": rule.port,
            "port_range_max": rule.port,
            "remote_ip_prefix": rule.source,
            "ethertype": "IPv4",
            "description": rule.name,
        }

    def put(self, group: str, rules: List[Dict[str, Any]], exists: bool) -> None:
        sg = self.find(group) if exists else None
        if sg is None:
            sg = self.conn.network.create_security_group(name=group, description="Submariner Gateway")
            current: List[Dict[str, Any]] = []
        else:
            current = [dict(rule) for rule in sg.security_group_rules or []]

        current_keys = {_rule_key(rule) for rule in current}
        for rule in rules:
            if _rule_key(rule) in current_keys:
                continue
            try:
                self.conn.network.create_security_group_rule(security_group_id=sg.id, **rule)
            except os_exceptions.ConflictException:
                logger.debug(f"Rule {rule.get('description')} already exists in {group}")

    def remove(self, group: str, kept: List[Dict[str, Any]], removed: List[Dict[str, Any]]) -> None:
        for rule in removed:
            self.conn.network.delete_security_group_rule(rule["id"], ignore_missing=True)

    def delete(self, group: str) -> bool:
        sg = self.find(group)
        if sg is None:
            return False
        self.conn.network.delete_security_group(sg, ignore_missing=True)
        return True


class RHOSProvider(CloudProvider):
    """OpenStack cloud provider implementation."""

    sdk_errors = (os_exceptions.SDKException,)

    def __init__(self, info: CloudInfo, conn=None, reporter: Optional[Reporter] = None):
        """Initialize OpenStack cloud provider.

        Args:
            info: Cluster identity. ``options.cloud_name`` selects the ``clouds.yaml`` entry.
            conn: ``openstack.connection.Connection``. Opened from ``info`` when omitted.
            reporter: Progress reporter.
        """
        super().__init__(info, reporter)
        self.conn = conn or connect(info)
        self.worker_group = f"{self.infra_id}{WORKER_SG_SUFFIX}"
        self.gateway_group = f"{self.infra_id}{GATEWAY_SG_SUFFIX}"

    def store(self) -> SecurityGroupRuleStore:
        return SecurityGroupRuleStore(self.conn)

    def open_ports(self, ports: Sequence[PortSpec]) -> ReconcileResult:
        with self.translating("opening internal ports"):
            rules = [
                SecurityRule(
                    name=f"{INTERNAL_RULE_PREFIX}{port.protocol}-{port.port}",
                    port=port.port,
                    protocol=port.protocol,
                )
                for port in ports
            ]
            self.reporter.started(f"Opening internal ports in security group {self.worker_group}")
            result = RuleSetReconciler(self.store(), INTERNAL_RULE_PREFIX).ensure_rule_set(self.worker_group, rules)
            self.reporter.succeeded(f"Opened internal ports in security group {self.worker_group}")
            return result

    def close_ports(self) -> ReconcileResult:
        with self.translating("closing internal ports"):
            self.reporter.started(f"Removing internal rules from security group {self.worker_group}")
            result = RuleSetReconciler(self.store(), INTERNAL_RULE_PREFIX).remove_rules_by_prefix(self.worker_group)
            self.reporter.succeeded(f"Removed internal rules from security group {self.worker_group}")
            return result


class RHOSGatewayBackend(GatewayBackend):
    """Existing worker nodes labeled as gateways, with the gateway security group on their servers."""

    supports_labeling = True
    sdk_errors = (os_exceptions.SDKException, ApiException)

    def __init__(self, cloud: RHOSProvider, nodes: NodeClient):
        super().__init__(cloud.info)
        self.cloud = cloud
        self.nodes = nodes

    def locate_existing(self) -> List[GatewayResource]:
        return [
            GatewayResource(name=node.metadata.name, kind=KIND_LABELED, attributes={"node": node.metadata.name})
            for node in self.nodes.list_gateway_nodes()
        ]

    def ensure_rule_set(self, request: GatewayDeployRequest) -> ReconcileResult:
        rules = [
            SecurityRule(
                name=f"{EXTERNAL_RULE_PREFIX}{port.protocol}-{port.port}",
                port=port.port,
                protocol=port.protocol,
            )
            for port in request.public_ports
        ]
        reconciler = RuleSetReconciler(self.cloud.store(), EXTERNAL_RULE_PREFIX)
        return reconciler.ensure_rule_set(self.cloud.gateway_group, rules, create_missing=True)

    def remove_rule_set(self) -> ReconcileResult:
        return RuleSetReconciler(self.cloud.store(), EXTERNAL_RULE_PREFIX).delete_rule_set(self.cloud.gateway_group)

    def list_placement_candidates(
        self, request: GatewayDeployRequest, existing: Sequence[GatewayResource]
    ) -> List[EligibleZone]:
        return [
            EligibleZone(identifier=node.metadata.name, attributes={"node": node.metadata.name})
            for node in self.nodes.list_untagged_workers(WORKER_ROLE_LABEL)
        ]

    def create_gateway_resource(self, target: EligibleZone, request: GatewayDeployRequest) -> GatewayResource:
        node_name = target.attributes["node"]
        self.nodes.add_gateway_label(node_name)
        server = self.cloud.conn.compute.find_server(node_name, ignore_missing=False)
        sg = self.cloud.store().find(self.cloud.gateway_group)
        self.cloud.conn.compute.add_security_group_to_server(server, sg)
        return GatewayResource(name=node_name, kind=KIND_LABELED, attributes={"node": node_name})

    def delete_gateway_resource(self, resource: GatewayResource) -> bool:
        node_name = resource.attributes.get("node", resource.name)
        detached = False
        server = self.cloud.conn.compute.find_server(node_name, ignore_missing=True)
        sg = self.cloud.store().find(self.cloud.gateway_group)
        if server is not None and sg is not None:
            try:
                self.cloud.conn.compute.remove_security_group_from_server(server, sg)
                detached = True
            except os_exceptions.NotFoundException:
                logger.debug(f"Security group {self.cloud.gateway_group} not attached to {node_name}")
        return self.nodes.remove_gateway_label(node_name) or detached

    def finalize_cleanup(self) -> None:
        # Nodes labeled out of band still carry the label after per-gateway removal.
        self.nodes.remove_gateway_label_from_workers()
