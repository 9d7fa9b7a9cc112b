"""
Azure cloud provider implementation: network security groups, load balancer NAT rules
and gateway nodes.
"""
import logging
from typing import List, Optional, Sequence

from azure.core.exceptions import AzureError, ResourceNotFoundError as AzureResourceNotFoundError
from azure.mgmt.network.models import (
    InboundNatRule,
    NetworkSecurityGroup,
    SecurityRule as AzureSecurityRule,
    SubResource,
)
from kubernetes.client.rest import ApiException

from cloudprep.cloud.provider import CloudProvider, GatewayBackend
from cloudprep.cloud.types import (
    KIND_DEDICATED,
    KIND_LABELED,
    EligibleZone,
    GatewayDeployRequest,
    GatewayResource,
    PortSpec,
    ReconcileResult,
    SecurityRule,
)
from cloudprep.config.config import CloudInfo
from cloudprep.errors import UnsupportedOperationError
from cloudprep.gateway.reconciler import RuleSetReconciler, RuleSetStore
from cloudprep.kubernetes.machinesets import MachineSetDeployer
from cloudprep.kubernetes.nodes import WORKER_ROLE_LABEL, ZONE_LABEL, NodeClient
from cloudprep.kubernetes.templates import azure_machine_set, gateway_machine_set_name
from cloudprep.utils.reporter import Reporter

logger = logging.getLogger(__name__)

INTERNAL_SG_SUFFIX = "-nsg"
EXTERNAL_SG_SUFFIX = "-submariner-external-sg"
INTERNAL_RULE_PREFIX = "Submariner-Internal-"
EXTERNAL_RULE_PREFIX = "Submariner-External-"
INBOUND_NAT_RULE_PREFIX = "Submariner-Inbound-"
BASE_PRIORITY_INTERNAL = 2500
BASE_PRIORITY_EXTERNAL = 3500
ALL_NETWORK_CIDR = "0.0.0.0/0"
VIRTUAL_MACHINES = "virtualMachines"
DEFAULT_INSTANCE_TYPE = "Standard_D4s_v3"
OPERATION_TIMEOUT = 300


def azure_protocol(protocol: str) -> str:
    return protocol.capitalize()


def nic_name(node_name: str) -> str:
    return f"{node_name}-nic"


def security_rules(prefix: str, ports: Sequence[PortSpec], base_priority: int) -> List[SecurityRule]:
    """Inbound and outbound allow rules for every port."""
    rules = []
    for i, port in enumerate(ports):
        for direction in ("Inbound", "Outbound"):
            rules.append(
                SecurityRule(
                    name=f"{prefix}{port.protocol}-{port.port}-{direction}",
                    port=port.port,
                    protocol=port.protocol,
                    direction=direction,
                    priority=base_priority + i,
                    source=ALL_NETWORK_CIDR,
                    destination=ALL_NETWORK_CIDR,
                )
            )
    return rules


class NetworkSecurityGroupStore(RuleSetStore):
    """Security rules of network security groups in the cluster resource group."""

    kind = "network security group"

    def __init__(self, network_client, resource_group: str, location: str, timeout: int = OPERATION_TIMEOUT):
        self.network_client = network_client
        self.resource_group = resource_group
        self.location = location
        self.timeout = timeout

    def find(self, group: str) -> Optional[NetworkSecurityGroup]:
        try:
            return self.network_client.network_security_groups.get(self.resource_group, group)
        except AzureResourceNotFoundError:
            return None

    def get(self, group: str) -> Optional[List[AzureSecurityRule]]:
        nsg = self.find(group)
        if nsg is None:
            return None
        return list(nsg.security_rules or [])

    def rule_name(self, rule: AzureSecurityRule) -> str:
        return rule.name

    def to_provider_rule(self, rule: SecurityRule) -> AzureSecurityRule:
        return AzureSecurityRule(
            name=rule.name,
            protocol=azure_protocol(rule.protocol),
            destination_port_range=f"{rule.port}-{rule.port}",
            source_port_range="*",
            source_address_prefix=rule.source,
            destination_address_prefix=rule.destination,
            access="Allow",
            direction=rule.direction,
            priority=rule.priority,
        )

    def put(self, group: str, rules: List[AzureSecurityRule], exists: bool) -> None:
        nsg = self.find(group) if exists else None
        if nsg is None:
            nsg = NetworkSecurityGroup(location=self.location)
        nsg.security_rules = rules
        self.network_client.network_security_groups.begin_create_or_update(
            self.resource_group, group, nsg
        ).result(timeout=self.timeout)

    def delete(self, group: str) -> bool:
        """Detach the group from every network interface, then delete it."""
        nsg = self.find(group)
        if nsg is None:
            return False
        for interface in nsg.network_interfaces or []:
            self.detach(interface.id.rsplit("/", 1)[-1], group)
        try:
            self.network_client.network_security_groups.begin_delete(self.resource_group, group).result(
                timeout=self.timeout
            )
        except AzureResourceNotFoundError:
            return False
        return True

    def attach(self, interface_name: str, group: str) -> None:
        nsg = self.find(group)
        interface = self.network_client.network_interfaces.get(self.resource_group, interface_name)
        interface.network_security_group = NetworkSecurityGroup(id=nsg.id)
        self.network_client.network_interfaces.begin_create_or_update(
            self.resource_group, interface_name, interface
        ).result(timeout=self.timeout)

    def detach(self, interface_name: str, group: str) -> bool:
        try:
            interface = self.network_client.network_interfaces.get(self.resource_group, interface_name)
        except AzureResourceNotFoundError:
            return False
        attached = interface.network_security_group
        if attached is None or not (attached.id or "").endswith(f"/{group}"):
            return False
        interface.network_security_group = None
        self.network_client.network_interfaces.begin_create_or_update(
            self.resource_group, interface_name, interface
        ).result(timeout=self.timeout)
        return True


class LoadBalancerNatStore(RuleSetStore):
    """Inbound NAT rules of the cluster load balancer."""

    kind = "load balancer"

    def __init__(self, network_client, resource_group: str, timeout: int = OPERATION_TIMEOUT):
        self.network_client = network_client
        self.resource_group = resource_group
        self.timeout = timeout
        self._frontend_id: Optional[str] = None

    def find(self, group: str):
        try:
            return self.network_client.load_balancers.get(self.resource_group, group)
        except AzureResourceNotFoundError:
            return None

    def get(self, group: str) -> Optional[List[InboundNatRule]]:
        lb = self.find(group)
        if lb is None:
            return None
        if lb.frontend_ip_configurations:
            self._frontend_id = lb.frontend_ip_configurations[0].id
        return list(lb.inbound_nat_rules or [])

    def rule_name(self, rule: InboundNatRule) -> str:
        return rule.name

    def to_provider_rule(self, rule: SecurityRule) -> InboundNatRule:
        return InboundNatRule(
            name=rule.name,
            protocol=azure_protocol(rule.protocol),
            frontend_port=rule.port,
            backend_port=rule.port,
            idle_timeout_in_minutes=4,
            frontend_ip_configuration=SubResource(id=self._frontend_id),
        )

    def put(self, group: str, rules: List[InboundNatRule], exists: bool) -> None:
        lb = self.find(group)
        lb.inbound_nat_rules = rules
        self.network_client.load_balancers.begin_create_or_update(self.resource_group, group, lb).result(
            timeout=self.timeout
        )

    def delete(self, group: str) -> bool:
        """The load balancer belongs to the cluster; only its NAT rules are ever removed."""
        raise UnsupportedOperationError(f"load balancer {group} is not owned by cloudprep and cannot be deleted")


class AzureProvider(CloudProvider):
    """Azure cloud provider implementation."""

    sdk_errors = (AzureError,)

    def __init__(self, info: CloudInfo, network_client, reporter: Optional[Reporter] = None):
        """Initialize Azure cloud provider.

        Args:
            info: Cluster identity; ``subscription_id`` and ``base_group_name`` are required.
            network_client: ``azure.mgmt.network.NetworkManagementClient``.
            reporter: Progress reporter.
        """
        super().__init__(info, reporter)
        if not info.base_group_name:
            raise ValueError("Azure requires a base_group_name")
        self.network_client = network_client
        self.resource_group = info.base_group_name
        self.internal_group = f"{self.infra_id}{INTERNAL_SG_SUFFIX}"
        self.external_group = f"{self.infra_id}{EXTERNAL_SG_SUFFIX}"

    def store(self) -> NetworkSecurityGroupStore:
        return NetworkSecurityGroupStore(self.network_client, self.resource_group, self.region)

    def open_ports(self, ports: Sequence[PortSpec]) -> ReconcileResult:
        with self.translating("opening internal ports"):
            self.reporter.started(f"Opening internal ports in security group {self.internal_group}")
            reconciler = RuleSetReconciler(self.store(), INTERNAL_RULE_PREFIX)
            result = reconciler.ensure_rule_set(
                self.internal_group, security_rules(INTERNAL_RULE_PREFIX, ports, BASE_PRIORITY_INTERNAL)
            )
            self.reporter.succeeded(f"Opened internal ports in security group {self.internal_group}")
            return result

    def close_ports(self) -> ReconcileResult:
        with self.translating("closing internal ports"):
            self.reporter.started(f"Removing internal rules from security group {self.internal_group}")
            result = RuleSetReconciler(self.store(), INTERNAL_RULE_PREFIX).remove_rules_by_prefix(self.internal_group)
            self.reporter.succeeded(f"Removed internal rules from security group {self.internal_group}")
            return result


class AzureGatewayBackend(GatewayBackend):
    """Gateways as dedicated VMs per availability zone, or as labeled worker nodes."""

    supports_dedicated = True
    supports_labeling = True
    sdk_errors = (AzureError, ApiException)

    def __init__(
        self,
        cloud: AzureProvider,
        compute_client,
        nodes: NodeClient,
        machine_sets: Optional[MachineSetDeployer] = None,
    ):
        super().__init__(cloud.info)
        self.cloud = cloud
        self.compute_client = compute_client
        self.nodes = nodes
        self.machine_sets = machine_sets
        self.supports_dedicated = machine_sets is not None
        self.instance_type = cloud.info.instance_type or DEFAULT_INSTANCE_TYPE
        self.dedicated_prefix = gateway_machine_set_name(self.infra_id, "")

    def locate_existing(self) -> List[GatewayResource]:
        resources = []
        for node in self.nodes.list_gateway_nodes():
            name = node.metadata.name
            zone = (node.metadata.labels or {}).get(ZONE_LABEL)
            if name.startswith(self.dedicated_prefix):
                resources.append(
                    GatewayResource(name=name.rsplit("-", 1)[0], zone=zone, kind=KIND_DEDICATED, attributes={"node": name})
                )
            else:
                resources.append(GatewayResource(name=name, zone=zone, kind=KIND_LABELED, attributes={"node": name}))
        return resources

    def ensure_rule_set(self, request: GatewayDeployRequest) -> ReconcileResult:
        store = self.cloud.store()
        result = RuleSetReconciler(store, EXTERNAL_RULE_PREFIX).ensure_rule_set(
            self.cloud.external_group,
            security_rules(EXTERNAL_RULE_PREFIX, request.public_ports, BASE_PRIORITY_EXTERNAL),
            create_missing=True,
        )
        if request.use_load_balancer:
            nat_rules = [
                SecurityRule(name=f"{INBOUND_NAT_RULE_PREFIX}{port.protocol}-{port.port}", port=port.port, protocol=port.protocol)
                for port in request.public_ports
            ]
            nat_store = LoadBalancerNatStore(self.cloud.network_client, self.cloud.resource_group)
            if RuleSetReconciler(nat_store, INBOUND_NAT_RULE_PREFIX).ensure_rule_set(self.infra_id, nat_rules) == ReconcileResult.APPLIED:
                result = ReconcileResult.APPLIED
        return result

    def remove_rule_set(self) -> ReconcileResult:
        nat_store = LoadBalancerNatStore(self.cloud.network_client, self.cloud.resource_group)
        nat_result = RuleSetReconciler(nat_store, INBOUND_NAT_RULE_PREFIX).remove_rules_by_prefix(self.infra_id)
        result = RuleSetReconciler(self.cloud.store(), EXTERNAL_RULE_PREFIX).delete_rule_set(self.cloud.external_group)
        return ReconcileResult.REMOVED if ReconcileResult.REMOVED in (result, nat_result) else ReconcileResult.NOOP

    def sku_zones(self) -> List[str]:
        """Availability zones of the region offering the gateway VM size."""
        zones: List[str] = []
        for sku in self.compute_client.resource_skus.list(filter=f"location eq '{self.region}'"):
            if sku.resource_type != VIRTUAL_MACHINES or sku.name != self.instance_type:
                continue
            if sku.location_info:
                zones.extend(zone for zone in sku.location_info[0].zones or [] if zone not in zones)
        return zones

    def list_placement_candidates(
        self, request: GatewayDeployRequest, existing: Sequence[GatewayResource]
    ) -> List[EligibleZone]:
        if request.use_dedicated_nodes:
            used = {resource.zone for resource in existing}
            return [
                EligibleZone(identifier=zone, already_hosting_gateway=f"{self.region}-{zone}" in used)
                for zone in self.sku_zones()
            ]
        return [
            EligibleZone(identifier=node.metadata.name, attributes={"node": node.metadata.name})
            for node in self.nodes.list_untagged_workers(WORKER_ROLE_LABEL)
        ]

    def create_gateway_resource(self, target: EligibleZone, request: GatewayDeployRequest) -> GatewayResource:
        if request.use_dedicated_nodes:
            machine_set = azure_machine_set(
                infra_id=self.infra_id,
                region=self.region,
                zone=target.identifier,
                instance_type=self.instance_type,
                resource_group=self.cloud.resource_group,
                security_group=self.cloud.external_group,
                image=self.info.image,
                air_gapped=request.air_gapped,
            )
            self.machine_sets.deploy(machine_set)
            return GatewayResource(
                name=machine_set["metadata"]["name"], zone=f"{self.region}-{target.identifier}", kind=KIND_DEDICATED
            )

        node_name = target.attributes["node"]
        self.nodes.add_gateway_label(node_name)
        self.cloud.store().attach(nic_name(node_name), self.cloud.external_group)
        return GatewayResource(name=node_name, kind=KIND_LABELED, attributes={"node": node_name})

    def delete_gateway_resource(self, resource: GatewayResource) -> bool:
        if resource.kind == KIND_DEDICATED:
            return self.machine_sets.delete(resource.name)
        node_name = resource.attributes.get("node", resource.name)
        detached = self.cloud.store().detach(nic_name(node_name), self.cloud.external_group)
        return self.nodes.remove_gateway_label(node_name) or detached
