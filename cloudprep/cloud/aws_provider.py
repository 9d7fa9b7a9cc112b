"""
AWS cloud provider implementation: intra-cluster ports, gateway instances and VPC peering.
"""
import ipaddress
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from kubernetes.client.rest import ApiException

from cloudprep.cloud.provider import CloudProvider, GatewayBackend, VpcPeeringCapable
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
from cloudprep.errors import (
    CloudPrepError,
    PermissionDeniedError,
    ResourceNotFoundError,
    TransientProviderError,
    UnsupportedOperationError,
)
from cloudprep.gateway.locator import ResourceLocator
from cloudprep.gateway.reconciler import RuleSetReconciler, RuleSetStore
from cloudprep.kubernetes.machinesets import MachineSetDeployer
from cloudprep.kubernetes.templates import aws_machine_set, gateway_machine_set_name
from cloudprep.utils.reporter import Reporter
from cloudprep.utils.retry import PEERING_RETRY, RetryPolicy, exponential_backoff, with_retries

logger = logging.getLogger(__name__)

INTERNAL_TRAFFIC = "Internal Submariner traffic"
PUBLIC_TRAFFIC = "Public Submariner traffic"
GATEWAY_SG_TEMPLATE = "{infraID}-submariner-gw-sg"
GATEWAY_SG_DESCRIPTION = "Submariner Gateway"
PERMISSIONS_TEST = "permissions-test"

TAG_GATEWAY = {"Key": "submariner.io/gateway", "Value": ""}
TAG_INTERNAL_ELB = {"Key": "kubernetes.io/role/internal-elb", "Value": ""}

# Instance types tried in order when none is configured.
PREFERRED_INSTANCES = ["c5d.large", "m5n.large"]

# Returned while a freshly requested peering is not yet visible to the other side.
RACY_PEERING_CODES = ("InvalidVpcPeeringConnectionID.NotFound", "InvalidVpcPeeringConnection.NotFound")


def error_code(err: BaseException) -> str:
    """Return the AWS error code of a ClientError, or an empty string."""
    if isinstance(err, ClientError):
        return err.response.get("Error", {}).get("Code", "")
    return ""


SECURITY_GROUP_DELETE_RETRY = RetryPolicy(
    max_attempts=30,
    backoff=exponential_backoff(0.5, 1.2, 600.0),
    retryable=lambda exc: error_code(exc) == "DependencyViolation",
)


def ec2_filter(name: str, *values: str) -> Dict[str, Any]:
    return {"Name": name, "Values": list(values)}


def extract_name(tags: Optional[List[Dict[str, str]]]) -> str:
    for tag in tags or []:
        if tag.get("Key") == "Name":
            return tag.get("Value", "")
    return ""


def has_tag(tags: Optional[List[Dict[str, str]]], key: str) -> bool:
    return any(tag.get("Key") == key for tag in tags or [])


def check_permission(err: Optional[ClientError], operation: str) -> None:
    """Interpret the outcome of a dry-run call.

    Raises:
        PermissionDeniedError: If the dry run was rejected as unauthorized.
        ClientError: For any other failure.
    """
    if err is None or error_code(err) == "DryRunOperation":
        return
    if error_code(err) == "UnauthorizedOperation":
        raise PermissionDeniedError(operation)
    raise err


def _racy(fn, **kwargs):
    """Call a peering operation, turning visibility races into transient errors."""
    try:
        return fn(**kwargs)
    except ClientError as e:
        if error_code(e) in RACY_PEERING_CODES:
            raise TransientProviderError(f"VPC peering not visible yet: {e}") from e
        raise


def _flatten(permissions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Split IpPermissions into one entry per source group or CIDR."""
    rules = []
    for perm in permissions:
        base = {"IpProtocol": perm.get("IpProtocol"), "FromPort": perm.get("FromPort"), "ToPort": perm.get("ToPort")}
        for pair in perm.get("UserIdGroupPairs", []):
            rules.append(dict(base, GroupId=pair.get("GroupId"), Description=pair.get("Description", "")))
        for ip_range in perm.get("IpRanges", []):
            rules.append(dict(base, CidrIp=ip_range.get("CidrIp"), Description=ip_range.get("Description", "")))
    return rules


def _to_permission(rule: Dict[str, Any]) -> Dict[str, Any]:
    perm = {k: rule[k] for k in ("IpProtocol", "FromPort", "ToPort") if rule.get(k) is not None}
    if rule.get("GroupId"):
        perm["UserIdGroupPairs"] = [{"GroupId": rule["GroupId"], "Description": rule.get("Description", "")}]
    else:
        perm["IpRanges"] = [{"CidrIp": rule["CidrIp"], "Description": rule.get("Description", "")}]
    return perm


class SecurityGroupStore(RuleSetStore):
    """Ingress rules of EC2 security groups, addressed by group ID or Name tag."""

    kind = "security group"

    def __init__(self, ec2_client, vpc_id: str):
        self.ec2_client = ec2_client
        self.vpc_id = vpc_id

    def find(self, group: str) -> Optional[Dict[str, Any]]:
        try:
            if group.startswith("sg-"):
                response = self.ec2_client.describe_security_groups(GroupIds=[group])
            else:
                response = self.ec2_client.describe_security_groups(
                    Filters=[ec2_filter("vpc-id", self.vpc_id), ec2_filter("tag:Name", group)]
                )
        except ClientError as e:
            if error_code(e) == "InvalidGroup.NotFound":
                return None
            raise
        groups = response.get("SecurityGroups", [])
        return groups[0] if groups else None

    def get(self, group: str) -> Optional[List[Dict[str, Any]]]:
        found = self.find(group)
        if found is None:
            return None
        return _flatten(found.get("IpPermissions", []))

    def rule_name(self, rule: Dict[str, Any]) -> str:
        return rule.get("Description") or ""

    def to_provider_rule(self, rule: SecurityRule) -> Dict[str, Any]:
        provider_rule = {
            "IpProtocol": rule.protocol,
            "FromPort": rule.port,
            "ToPort": rule.port,
            "Description": rule.description or rule.name,
        }
        if rule.source_group:
            provider_rule["GroupId"] = rule.source_group
        else:
            provider_rule["CidrIp"] = rule.source
        return provider_rule

    def put(self, group: str, rules: List[Dict[str, Any]], exists: bool) -> None:
        if not exists:
            self._create(group)
        found = self.find(group)
        if found is None:
            raise ResourceNotFoundError(self.kind, group)
        current = _flatten(found.get("IpPermissions", []))

        added = [rule for rule in rules if rule not in current]
        if not added:
            return
        try:
            self.ec2_client.authorize_security_group_ingress(
                GroupId=found["GroupId"], IpPermissions=[_to_permission(rule) for rule in added]
            )
        except ClientError as e:
            if error_code(e) != "InvalidPermission.Duplicate":
                raise

    def remove(self, group: str, kept: List[Dict[str, Any]], removed: List[Dict[str, Any]]) -> None:
        found = self.find(group)
        if found is None:
            return
        try:
            self.ec2_client.revoke_security_group_ingress(
                GroupId=found["GroupId"], IpPermissions=[_to_permission(rule) for rule in removed]
            )
        except ClientError as e:
            if error_code(e) != "InvalidPermission.NotFound":
                raise

    def delete(self, group: str) -> bool:
        found = self.find(group)
        if found is None:
            return False
        try:
            with_retries(self.ec2_client.delete_security_group, SECURITY_GROUP_DELETE_RETRY, GroupId=found["GroupId"])
        except ClientError as e:
            if error_code(e) == "InvalidGroup.NotFound":
                return False
            raise
        return True

    def _create(self, group: str) -> None:
        try:
            self.ec2_client.create_security_group(
                GroupName=group,
                Description=GATEWAY_SG_DESCRIPTION,
                VpcId=self.vpc_id,
                TagSpecifications=[
                    {"ResourceType": "security-group", "Tags": [{"Key": "Name", "Value": group}]}
                ],
            )
        except ClientError as e:
            if error_code(e) != "InvalidGroup.Duplicate":
                raise


class AWSProvider(CloudProvider, VpcPeeringCapable):
    """AWS cloud provider implementation."""

    sdk_errors = (ClientError, BotoCoreError)

    def __init__(
        self,
        info: CloudInfo,
        ec2_client=None,
        reporter: Optional[Reporter] = None,
        peering_retry: RetryPolicy = PEERING_RETRY,
    ):
        """Initialize AWS cloud provider.

        Args:
            info: Cluster identity. ``options`` may carry ``profile``,
                ``worker_security_group_id``, ``control_plane_security_group_id``,
                ``public_subnet_ids`` and ``vpc_name``.
            ec2_client: EC2 client. Built from the default session when omitted.
            reporter: Progress reporter.
            peering_retry: Policy for accepting a peering and creating its routes.
        """
        super().__init__(info, reporter)
        self.ec2_client = ec2_client or self._get_client("ec2")
        self.peering_retry = peering_retry
        self.worker_sg_id = info.options.get("worker_security_group_id")
        self.control_plane_sg_id = info.options.get("control_plane_security_group_id")
        self.public_subnet_ids = list(info.options.get("public_subnet_ids") or [])
        self.vpc_name = info.options.get("vpc_name", "{infraID}-vpc")
        self.node_sg_suffix: Optional[str] = None
        self.control_plane_sg_suffix: Optional[str] = None
        self._vpc_id: Optional[str] = None

        self.locator = ResourceLocator(self.infra_id, self.region)
        self.locator.register("vpc", by_name=self._find_vpc)
        self.locator.register("subnet", by_tag=self._find_subnets_by_name)

    def _get_client(self, service_name: str):
        session = boto3.session.Session(
            region_name=self.region, profile_name=self.info.options.get("profile")
        )
        return session.client(service_name)

    def filter_by_current_cluster(self) -> Dict[str, Any]:
        return ec2_filter(f"tag:kubernetes.io/cluster/{self.infra_id}", "owned")

    def _find_vpc(self, name: str) -> Optional[Dict[str, Any]]:
        response = self.ec2_client.describe_vpcs(
            Filters=[ec2_filter("tag:Name", name), self.filter_by_current_cluster()]
        )
        vpcs = response.get("Vpcs", [])
        return vpcs[0] if vpcs else None

    def _find_subnets_by_name(self, name_pattern: str) -> List[Dict[str, Any]]:
        return self.describe_subnets(ec2_filter("tag:Name", name_pattern))

    def describe_subnets(self, *filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = self.ec2_client.describe_subnets(
            Filters=[ec2_filter("vpc-id", self.get_vpc_id()), self.filter_by_current_cluster(), *filters]
        )
        return response.get("Subnets", [])

    def get_vpc(self) -> Dict[str, Any]:
        """Return the cluster VPC.

        Raises:
            ResourceNotFoundError: If the cluster has no VPC.
        """
        return self.locator.require("vpc", self.vpc_name)

    def get_vpc_id(self) -> str:
        if self._vpc_id is None:
            self._vpc_id = self.get_vpc()["VpcId"]
        return self._vpc_id

    def public_subnets(self) -> List[Dict[str, Any]]:
        """Public subnets of the cluster, from configuration or by name."""
        if self.public_subnet_ids:
            response = self.ec2_client.describe_subnets(SubnetIds=self.public_subnet_ids)
            return response.get("Subnets", [])
        return self.locator.find_by_tag("subnet", "{infraID}*-public-{region}*")

    def _set_suffixes(self) -> None:
        if self.node_sg_suffix is not None:
            return
        subnets = self.public_subnets()
        if not subnets:
            raise ResourceNotFoundError("public subnet", self.locator.with_info("{infraID}*-public-{region}*"))

        pattern = re.compile(rf"{re.escape(self.infra_id)}.*-subnet-public-{re.escape(self.region)}.*")
        if any(pattern.match(extract_name(subnet.get("Tags"))) for subnet in subnets):
            self.node_sg_suffix, self.control_plane_sg_suffix = "-node", "-controlplane"
        else:
            self.node_sg_suffix, self.control_plane_sg_suffix = "-worker-sg", "-master-sg"

    def worker_security_group(self) -> str:
        """ID or Name tag of the worker security group."""
        if self.worker_sg_id:
            return self.worker_sg_id
        self._set_suffixes()
        return f"{self.infra_id}{self.node_sg_suffix}"

    def control_plane_security_group(self) -> str:
        if self.control_plane_sg_id:
            return self.control_plane_sg_id
        self._set_suffixes()
        return f"{self.infra_id}{self.control_plane_sg_suffix}"

    def store(self) -> SecurityGroupStore:
        return SecurityGroupStore(self.ec2_client, self.get_vpc_id())

    def group_id(self, group: str) -> str:
        found = self.store().find(group)
        if found is None:
            raise ResourceNotFoundError("security group", group)
        return found["GroupId"]

    def dry_run(self, operation: str, fn, **kwargs) -> None:
        """Run a mutating call with DryRun and translate the verdict."""
        try:
            fn(DryRun=True, **kwargs)
        except ClientError as e:
            check_permission(e, operation)

    def open_ports(self, ports: Sequence[PortSpec]) -> ReconcileResult:
        with self.translating("opening internal ports"):
            self.reporter.started("Retrieving VPC ID")
            vpc_id = self.get_vpc_id()
            worker_group = self.worker_security_group()
            master_group = self.control_plane_security_group()
            self.reporter.succeeded(f"Retrieved VPC ID {vpc_id}")

            worker_id = self.group_id(worker_group)
            master_id = self.group_id(master_group)

            self.reporter.started("Validating pre-requisites")
            self.dry_run(
                "authorize security group ingress", self.ec2_client.authorize_security_group_ingress, GroupId=worker_id
            )
            self.reporter.succeeded("Validated pre-requisites")

            worker_rules, master_rules = [], []
            for port in ports:
                worker_rules.append(self._internal_rule(port, worker_id, " between the workers"))
                worker_rules.append(self._internal_rule(port, master_id, " from master to worker nodes"))
                master_rules.append(self._internal_rule(port, worker_id, " from worker to master nodes"))

            self.reporter.started("Opening ports for intra-cluster communications")
            reconciler = RuleSetReconciler(self.store(), INTERNAL_TRAFFIC)
            results = [
                reconciler.ensure_rule_set(worker_group, worker_rules),
                reconciler.ensure_rule_set(master_group, master_rules),
            ]
            self.reporter.succeeded("Opened ports for intra-cluster communications")
            return ReconcileResult.APPLIED if ReconcileResult.APPLIED in results else ReconcileResult.NOOP

    def close_ports(self) -> ReconcileResult:
        with self.translating("closing internal ports"):
            self.reporter.started("Retrieving VPC ID")
            vpc_id = self.get_vpc_id()
            worker_group = self.worker_security_group()
            master_group = self.control_plane_security_group()
            self.reporter.succeeded(f"Retrieved VPC ID {vpc_id}")

            self.reporter.started("Validating pre-requisites")
            self.dry_run(
                "revoke security group ingress",
                self.ec2_client.revoke_security_group_ingress,
                GroupId=self.group_id(worker_group),
            )
            self.reporter.succeeded("Validated pre-requisites")

            self.reporter.started("Revoking intra-cluster communication permissions")
            reconciler = RuleSetReconciler(self.store(), INTERNAL_TRAFFIC)
            results = [reconciler.remove_rules_by_prefix(worker_group), reconciler.remove_rules_by_prefix(master_group)]
            self.reporter.succeeded("Revoked intra-cluster communication permissions")
            return ReconcileResult.REMOVED if ReconcileResult.REMOVED in results else ReconcileResult.NOOP

    @staticmethod
    def _internal_rule(port: PortSpec, source_group: str, suffix: str) -> SecurityRule:
        description = INTERNAL_TRAFFIC + suffix
        return SecurityRule(
            name=description,
            port=port.port,
            protocol=port.protocol,
            source_group=source_group,
            description=description,
        )

    # VPC peering

    def _peering_target(self, target: VpcPeeringCapable) -> "AWSProvider":
        if not isinstance(target, AWSProvider):
            raise UnsupportedOperationError("VPC peering is only supported between AWS clusters")
        return target

    def peering_name(self, target: "AWSProvider") -> str:
        return f"{self.infra_id}-{target.infra_id}"

    def validate_peering_prerequisites(self, target: "AWSProvider") -> None:
        """Check that the two VPCs have non-overlapping CIDR blocks."""
        source_cidr = self.get_vpc().get("CidrBlock")
        target_cidr = target.get_vpc().get("CidrBlock")
        if ipaddress.ip_network(source_cidr).overlaps(ipaddress.ip_network(target_cidr)):
            raise CloudPrepError(f"source VPC CIDR {source_cidr} overlaps with target VPC CIDR {target_cidr}")

    def main_route_table_id(self, vpc_id: str) -> str:
        response = self.ec2_client.describe_route_tables(
            Filters=[ec2_filter("vpc-id", vpc_id), ec2_filter("association.main", "true")]
        )
        tables = response.get("RouteTables", [])
        if not tables:
            raise ResourceNotFoundError("main route table", vpc_id)
        return tables[0]["RouteTableId"]

    def create_vpc_peering(self, target: VpcPeeringCapable) -> None:
        """Peer this cluster's VPC with ``target``'s and route each CIDR through the peering.

        Raises:
            UnsupportedOperationError: If ``target`` is not an AWS cluster.
            CloudPrepError: If the VPC CIDRs overlap.
        """
        with self.translating("creating VPC peering"):
            target = self._peering_target(target)
            self.reporter.started(
                f"Creating VPC Peering between {self.infra_id}/{self.region} and {target.infra_id}/{target.region}"
            )
            self.validate_peering_prerequisites(target)
            source_vpc_id = self.get_vpc_id()
            target_vpc_id = target.get_vpc_id()

            response = self.ec2_client.create_vpc_peering_connection(
                VpcId=source_vpc_id,
                PeerVpcId=target_vpc_id,
                PeerRegion=target.region,
                TagSpecifications=[
                    {
                        "ResourceType": "vpc-peering-connection",
                        "Tags": [{"Key": "Name", "Value": self.peering_name(target)}],
                    }
                ],
            )
            peering = response["VpcPeeringConnection"]
            peering_id = peering["VpcPeeringConnectionId"]
            self.reporter.succeeded(f"Requested VPC Peering with ID {peering_id}")

            self.reporter.started("Accepting VPC Peering")
            self.peering_retry.run(_racy, target.ec2_client.accept_vpc_peering_connection, VpcPeeringConnectionId=peering_id)
            self.reporter.succeeded(f"Accepted VPC Peering with id: {peering_id}")

            source_cidr = self.get_vpc()["CidrBlock"]
            target_cidr = target.get_vpc()["CidrBlock"]

            def create_routes():
                _racy(
                    self.ec2_client.create_route,
                    RouteTableId=self.main_route_table_id(source_vpc_id),
                    DestinationCidrBlock=target_cidr,
                    VpcPeeringConnectionId=peering_id,
                )
                _racy(
                    target.ec2_client.create_route,
                    RouteTableId=target.main_route_table_id(target_vpc_id),
                    DestinationCidrBlock=source_cidr,
                    VpcPeeringConnectionId=peering_id,
                )

            self.reporter.started("Creating routes for VPC Peering")
            self.peering_retry.run(create_routes)
            self.reporter.succeeded("Created VPC Peering")

    def cleanup_vpc_peering(self, target: VpcPeeringCapable) -> None:
        """Delete the routes and the peering created by ``create_vpc_peering``. Absent is success."""
        with self.translating("removing VPC peering"):
            target = self._peering_target(target)
            self.reporter.started(
                f"Removing VPC Peering between {self.infra_id}/{self.region} and {target.infra_id}/{target.region}"
            )
            source_vpc_id = self.get_vpc_id()
            target_vpc_id = target.get_vpc_id()

            response = self.ec2_client.describe_vpc_peering_connections(
                Filters=[
                    ec2_filter("requester-vpc-info.vpc-id", source_vpc_id),
                    ec2_filter("accepter-vpc-info.vpc-id", target_vpc_id),
                    ec2_filter("tag:Name", self.peering_name(target)),
                ]
            )
            connections = response.get("VpcPeeringConnections", [])
            if not connections:
                self.reporter.succeeded("No VPC Peering to remove")
                return
            if len(connections) != 1:
                raise CloudPrepError(f"expecting exactly 1 VpcPeeringConnections, got {len(connections)}")

            peering = connections[0]
            self._delete_route(
                self.ec2_client,
                self.main_route_table_id(source_vpc_id),
                peering.get("AccepterVpcInfo", {}).get("CidrBlock"),
            )
            self._delete_route(
                target.ec2_client,
                target.main_route_table_id(target_vpc_id),
                peering.get("RequesterVpcInfo", {}).get("CidrBlock"),
            )
            self.ec2_client.delete_vpc_peering_connection(VpcPeeringConnectionId=peering["VpcPeeringConnectionId"])
            self.reporter.succeeded("Removed VPC Peering")

    @staticmethod
    def _delete_route(ec2_client, route_table_id: str, cidr: Optional[str]) -> None:
        if not cidr:
            return
        try:
            ec2_client.delete_route(RouteTableId=route_table_id, DestinationCidrBlock=cidr)
        except ClientError as e:
            if error_code(e) != "InvalidRoute.NotFound":
                raise


class AWSGatewayBackend(GatewayBackend):
    """Dedicated EC2 gateway instances deployed as OpenShift machine sets in public subnets."""

    supports_dedicated = True
    sdk_errors = (ClientError, BotoCoreError, ApiException)

    def __init__(self, cloud: AWSProvider, machine_sets: MachineSetDeployer):
        super().__init__(cloud.info)
        self.cloud = cloud
        self.machine_sets = machine_sets
        self.gateway_group = cloud.locator.with_info(GATEWAY_SG_TEMPLATE)
        self._instance_type: Optional[str] = cloud.info.instance_type

    @property
    def ec2_client(self):
        return self.cloud.ec2_client

    def instance_type(self) -> str:
        """The configured instance type, else the first preferred type offered in the region."""
        if self._instance_type:
            return self._instance_type
        for candidate in PREFERRED_INSTANCES:
            response = self.ec2_client.describe_instance_type_offerings(
                LocationType="region",
                Filters=[ec2_filter("location", self.region), ec2_filter("instance-type", candidate)],
            )
            if response.get("InstanceTypeOfferings"):
                self._instance_type = candidate
                return candidate
        raise ResourceNotFoundError("instance type offering", ", ".join(PREFERRED_INSTANCES))

    def offered_zones(self) -> set:
        response = self.ec2_client.describe_instance_type_offerings(
            LocationType="availability-zone",
            Filters=[ec2_filter("instance-type", self.instance_type())],
        )
        return {offering["Location"] for offering in response.get("InstanceTypeOfferings", [])}

    def validate_deploy_prerequisites(self, request: GatewayDeployRequest) -> None:
        vpc_id = self.cloud.get_vpc_id()
        worker_id = self.cloud.group_id(self.cloud.worker_security_group())
        self.cloud.dry_run(
            "create security group",
            self.ec2_client.create_security_group,
            GroupName=PERMISSIONS_TEST,
            Description=PERMISSIONS_TEST,
            VpcId=vpc_id,
        )
        self.cloud.dry_run(
            "authorize security group ingress", self.ec2_client.authorize_security_group_ingress, GroupId=worker_id
        )
        self.cloud.dry_run("describe instance type offerings", self.ec2_client.describe_instance_type_offerings)
        subnets = self.cloud.public_subnets()
        if subnets:
            self.cloud.dry_run(
                "create tags on subnets",
                self.ec2_client.create_tags,
                Resources=[subnets[0]["SubnetId"]],
                Tags=[TAG_GATEWAY],
            )

    def validate_cleanup_prerequisites(self) -> None:
        worker_id = self.cloud.group_id(self.cloud.worker_security_group())
        self.cloud.dry_run("delete security group", self.ec2_client.delete_security_group, GroupId=worker_id)
        for subnet in self._tagged_subnets()[:1]:
            self.cloud.dry_run(
                "delete tags from subnets",
                self.ec2_client.delete_tags,
                Resources=[subnet["SubnetId"]],
                Tags=[TAG_GATEWAY],
            )

    def _tagged_subnets(self) -> List[Dict[str, Any]]:
        return self.cloud.describe_subnets(ec2_filter("tag-key", TAG_GATEWAY["Key"]))

    def locate_existing(self) -> List[GatewayResource]:
        resources = []
        for subnet in self._tagged_subnets():
            zone = subnet.get("AvailabilityZone")
            resources.append(
                GatewayResource(
                    name=gateway_machine_set_name(self.infra_id, zone),
                    zone=zone,
                    kind=KIND_DEDICATED,
                    attributes={"subnet_id": subnet["SubnetId"], "subnet_name": extract_name(subnet.get("Tags"))},
                )
            )
        return resources

    def ensure_rule_set(self, request: GatewayDeployRequest) -> ReconcileResult:
        rules = [
            SecurityRule(
                name=PUBLIC_TRAFFIC,
                port=port.port,
                protocol=port.protocol,
                source="0.0.0.0/0",
                description=PUBLIC_TRAFFIC,
            )
            for port in request.public_ports
        ]
        reconciler = RuleSetReconciler(self.cloud.store(), PUBLIC_TRAFFIC)
        return reconciler.ensure_rule_set(self.gateway_group, rules, create_missing=True)

    def remove_rule_set(self) -> ReconcileResult:
        return RuleSetReconciler(self.cloud.store(), PUBLIC_TRAFFIC).delete_rule_set(self.gateway_group)

    def list_placement_candidates(
        self, request: GatewayDeployRequest, existing: Sequence[GatewayResource]
    ) -> List[EligibleZone]:
        offered = self.offered_zones()
        candidates = []
        for subnet in self.cloud.public_subnets():
            zone = subnet.get("AvailabilityZone")
            candidates.append(
                EligibleZone(
                    identifier=zone,
                    capacity_for_instance_type=zone in offered,
                    already_hosting_gateway=has_tag(subnet.get("Tags"), TAG_GATEWAY["Key"]),
                    attributes={"subnet_id": subnet["SubnetId"], "subnet_name": extract_name(subnet.get("Tags"))},
                )
            )
        return candidates

    def worker_image(self) -> str:
        """AMI of an existing worker instance."""
        if self.info.image:
            return self.info.image
        response = self.ec2_client.describe_instances(
            Filters=[
                ec2_filter("vpc-id", self.cloud.get_vpc_id()),
                ec2_filter("tag:Name", self.cloud.locator.with_info("{infraID}-worker*")),
                self.cloud.filter_by_current_cluster(),
            ]
        )
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                if instance.get("ImageId"):
                    return instance["ImageId"]
        raise ResourceNotFoundError("AMI ID", self.cloud.locator.with_info("{infraID}-worker*"))

    def create_gateway_resource(self, target: EligibleZone, request: GatewayDeployRequest) -> GatewayResource:
        subnet_id = target.attributes["subnet_id"]
        subnet_name = target.attributes["subnet_name"]
        machine_set = aws_machine_set(
            infra_id=self.infra_id,
            region=self.region,
            zone=target.identifier,
            ami_id=self.worker_image(),
            instance_type=self.instance_type(),
            security_groups=[self.cloud.worker_security_group(), self.gateway_group],
            subnet_name=subnet_name,
            air_gapped=request.air_gapped,
        )
        self.machine_sets.deploy(machine_set)
        self.ec2_client.create_tags(Resources=[subnet_id], Tags=[TAG_INTERNAL_ELB, TAG_GATEWAY])
        return GatewayResource(
            name=machine_set["metadata"]["name"],
            zone=target.identifier,
            kind=KIND_DEDICATED,
            attributes=dict(target.attributes),
        )

    def delete_gateway_resource(self, resource: GatewayResource) -> bool:
        deleted = self.machine_sets.delete(resource.name)
        subnet_id = resource.attributes.get("subnet_id")
        if subnet_id:
            self.ec2_client.delete_tags(Resources=[subnet_id], Tags=[TAG_INTERNAL_ELB, TAG_GATEWAY])
            deleted = True
        return deleted
