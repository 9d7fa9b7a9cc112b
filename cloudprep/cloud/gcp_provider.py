"""
GCP cloud provider implementation: firewall rules and dedicated gateway instances.
"""
import logging
from typing import Dict, List, Optional, Sequence

from google.api_core.exceptions import Conflict, GoogleAPICallError, NotFound
from google.auth.exceptions import GoogleAuthError
from kubernetes.client.rest import ApiException
from google.cloud import compute_v1

from cloudprep.cloud.provider import CloudProvider, GatewayBackend
from cloudprep.cloud.types import (
    KIND_DEDICATED,
    EligibleZone,
    GatewayDeployRequest,
    GatewayResource,
    PortSpec,
    ReconcileResult,
    SecurityRule,
)
from cloudprep.config.config import CloudInfo
from cloudprep.gateway.reconciler import RuleSetReconciler, RuleSetStore
from cloudprep.kubernetes.machinesets import MachineSetDeployer
from cloudprep.kubernetes.templates import gateway_machine_set_name, gcp_machine_set
from cloudprep.utils.reporter import Reporter

logger = logging.getLogger(__name__)

INGRESS = "INGRESS"
EGRESS = "EGRESS"
PUBLIC_PORTS_RULE = "submariner-public-ports"
INTERNAL_PORTS_RULE = "submariner-internal-ports"
GATEWAY_NODE_TAG = "submariner-io-gateway-node"
DEFAULT_INSTANCE_TYPE = "n1-standard-4"
OPERATION_TIMEOUT = 300


def rule_names(infra_id: str, name: str):
    """Return the ingress and egress firewall names for a rule purpose."""
    return f"{infra_id}-{name}-ingress", f"{infra_id}-{name}-egress"


def last_segment(url: str) -> str:
    return url.rsplit("/", 1)[-1] if url else ""


class FirewallStore(RuleSetStore):
    """Firewalls of one VPC network. Each managed rule is a whole firewall resource."""

    kind = "firewall"

    def __init__(self, firewalls: compute_v1.FirewallsClient, project_id: str, timeout: int = OPERATION_TIMEOUT):
        self.firewalls = firewalls
        self.project_id = project_id
        self.timeout = timeout

    def get(self, group: str) -> Optional[List[compute_v1.Firewall]]:
        return [fw for fw in self.firewalls.list(project=self.project_id) if last_segment(fw.network) == last_segment(group)]

    def rule_name(self, rule: compute_v1.Firewall) -> str:
        return rule.name

    def to_provider_rule(self, rule: SecurityRule) -> compute_v1.Firewall:
        firewall = compute_v1.Firewall(
            name=rule.name,
            direction=rule.direction.upper(),
            allowed=[compute_v1.Allowed(I_p_protocol=rule.protocol, ports=[str(rule.port)])],
        )
        if rule.source_group:
            firewall.source_tags = rule.source_group.split(",")
            firewall.target_tags = rule.source_group.split(",")
        elif firewall.direction == EGRESS:
            firewall.destination_ranges = [rule.destination]
        else:
            firewall.source_ranges = [rule.source]
        return firewall

    def put(self, group: str, rules: List[compute_v1.Firewall], exists: bool) -> None:
        """Insert the firewalls of ``rules`` that do not exist yet. Nothing is ever deleted here."""
        wanted: Dict[str, compute_v1.Firewall] = {}
        for rule in rules:
            if rule.name in wanted:
                wanted[rule.name].allowed.extend(rule.allowed)
            else:
                wanted[rule.name] = rule

        current = {fw.name for fw in self.get(group) or []}
        for name, firewall in wanted.items():
            if name in current:
                continue
            firewall.network = group
            try:
                operation = self.firewalls.insert(project=self.project_id, firewall_resource=firewall)
                operation.result(timeout=self.timeout)
            except Conflict:
                logger.debug(f"Firewall {name} already exists")

    def remove(self, group: str, kept: List[compute_v1.Firewall], removed: List[compute_v1.Firewall]) -> None:
        for name in dict.fromkeys(fw.name for fw in removed):
            self.delete(name)

    def delete(self, group: str) -> bool:
        try:
            operation = self.firewalls.delete(project=self.project_id, firewall=group)
            operation.result(timeout=self.timeout)
        except NotFound:
            return False
        return True


class GCPProvider(CloudProvider):
    """GCP cloud provider implementation."""

    sdk_errors = (GoogleAPICallError, GoogleAuthError)

    def __init__(
        self,
        info: CloudInfo,
        firewalls_client: Optional[compute_v1.FirewallsClient] = None,
        reporter: Optional[Reporter] = None,
    ):
        """Initialize GCP cloud provider.

        Args:
            info: Cluster identity; ``project_id`` is required.
            firewalls_client: Firewalls client. Uses application default credentials when omitted.
            reporter: Progress reporter.
        """
        super().__init__(info, reporter)
        if not info.project_id:
            raise ValueError("GCP requires a project_id")
        self.project_id = info.project_id
        self.firewalls = firewalls_client or compute_v1.FirewallsClient()

    @property
    def network(self) -> str:
        return f"projects/{self.project_id}/global/networks/{self.infra_id}-network"

    def store(self) -> FirewallStore:
        return FirewallStore(self.firewalls, self.project_id)

    def reconciler(self, rule_name: str) -> RuleSetReconciler:
        return RuleSetReconciler(self.store(), f"{self.infra_id}-{rule_name}")

    def open_ports(self, ports: Sequence[PortSpec]) -> ReconcileResult:
        with self.translating("opening internal ports"):
            ingress, _ = rule_names(self.infra_id, INTERNAL_PORTS_RULE)
            tags = f"{self.infra_id}-worker,{self.infra_id}-master"
            rules = [
                SecurityRule(name=ingress, port=port.port, protocol=port.protocol, direction=INGRESS, source_group=tags)
                for port in ports
            ]
            self.reporter.started(f"Opening internal ports with firewall rule {ingress}")
            result = self.reconciler(INTERNAL_PORTS_RULE).ensure_rule_set(self.network, rules)
            self.reporter.succeeded(f"Opened internal ports with firewall rule {ingress}")
            return result

    def close_ports(self) -> ReconcileResult:
        with self.translating("closing internal ports"):
            self.reporter.started("Deleting internal firewall rules")
            result = self.reconciler(INTERNAL_PORTS_RULE).remove_rules_by_prefix(self.network)
            self.reporter.succeeded("Deleted internal firewall rules")
            return result


class GCPGatewayBackend(GatewayBackend):
    """Dedicated GCE gateway instances, one per zone of the region."""

    supports_dedicated = True
    sdk_errors = (GoogleAPICallError, GoogleAuthError, ApiException)

    def __init__(
        self,
        cloud: GCPProvider,
        machine_sets: MachineSetDeployer,
        zones_client: Optional[compute_v1.ZonesClient] = None,
        instances_client: Optional[compute_v1.InstancesClient] = None,
        machine_types_client: Optional[compute_v1.MachineTypesClient] = None,
    ):
        super().__init__(cloud.info)
        self.cloud = cloud
        self.machine_sets = machine_sets
        self.zones = zones_client or compute_v1.ZonesClient()
        self.instances = instances_client or compute_v1.InstancesClient()
        self.machine_types = machine_types_client or compute_v1.MachineTypesClient()
        self.instance_type = cloud.info.instance_type or DEFAULT_INSTANCE_TYPE
        self.image = cloud.info.image

    @property
    def project_id(self) -> str:
        return self.cloud.project_id

    def region_zones(self) -> List[str]:
        """Names of the project's zones that belong to this region, in listing order."""
        return [
            zone.name for zone in self.zones.list(project=self.project_id) if last_segment(zone.region) == self.region
        ]

    def locate_existing(self) -> List[GatewayResource]:
        resources = []
        for zone in self.region_zones():
            for instance in self.instances.list(project=self.project_id, zone=zone):
                if GATEWAY_NODE_TAG in list(instance.tags.items):
                    resources.append(
                        GatewayResource(
                            name=gateway_machine_set_name(self.infra_id, zone),
                            zone=zone,
                            kind=KIND_DEDICATED,
                            attributes={"instance": instance.name},
                        )
                    )
                    break
        return resources

    def _external_rules(self, request: GatewayDeployRequest) -> List[SecurityRule]:
        ingress, egress = rule_names(self.infra_id, PUBLIC_PORTS_RULE)
        rules = []
        for port in request.public_ports:
            rules.append(SecurityRule(name=ingress, port=port.port, protocol=port.protocol, direction=INGRESS))
            rules.append(SecurityRule(name=egress, port=port.port, protocol=port.protocol, direction=EGRESS))
        return rules

    def ensure_rule_set(self, request: GatewayDeployRequest) -> ReconcileResult:
        return self.cloud.reconciler(PUBLIC_PORTS_RULE).ensure_rule_set(self.cloud.network, self._external_rules(request))

    def remove_rule_set(self) -> ReconcileResult:
        return self.cloud.reconciler(PUBLIC_PORTS_RULE).remove_rules_by_prefix(self.cloud.network)

    def _offers_machine_type(self, zone: str) -> bool:
        try:
            self.machine_types.get(project=self.project_id, zone=zone, machine_type=self.instance_type)
        except NotFound:
            return False
        return True

    def list_placement_candidates(
        self, request: GatewayDeployRequest, existing: Sequence[GatewayResource]
    ) -> List[EligibleZone]:
        used = {resource.zone for resource in existing}
        return [
            EligibleZone(
                identifier=zone,
                capacity_for_instance_type=self._offers_machine_type(zone),
                already_hosting_gateway=zone in used,
            )
            for zone in self.region_zones()
        ]

    def worker_image(self) -> Optional[str]:
        if not self.image:
            self.image = self.machine_sets.get_worker_node_image(f"{self.infra_id}-worker")
        return self.image

    def create_gateway_resource(self, target: EligibleZone, request: GatewayDeployRequest) -> GatewayResource:
        machine_set = gcp_machine_set(
            infra_id=self.infra_id,
            project_id=self.project_id,
            region=self.region,
            zone=target.identifier,
            image=self.worker_image(),
            instance_type=self.instance_type,
            network_tags=[f"{self.infra_id}-worker", GATEWAY_NODE_TAG],
            air_gapped=request.air_gapped,
        )
        self.machine_sets.deploy(machine_set)
        return GatewayResource(name=machine_set["metadata"]["name"], zone=target.identifier, kind=KIND_DEDICATED)

    def delete_gateway_resource(self, resource: GatewayResource) -> bool:
        return self.machine_sets.delete(resource.name)
