"""
MachineSet manifests for dedicated gateway instances.
"""
from typing import Any, Dict, List, Optional

from cloudprep.cloud.types import GATEWAY_LABEL, GATEWAY_LABEL_VALUE
from cloudprep.kubernetes.machinesets import MACHINE_API_GROUP, MACHINE_API_NAMESPACE, MACHINE_API_VERSION

CLUSTER_LABEL = "machine.openshift.io/cluster-api-cluster"
MACHINE_SET_LABEL = "machine.openshift.io/cluster-api-machineset"
GATEWAY_TAINT = "node-role.submariner.io/gateway"


def gateway_machine_set_name(infra_id: str, zone: str) -> str:
    return f"{infra_id}-submariner-gw-{zone}"


def _machine_set(infra_id: str, name: str, provider_spec: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "apiVersion": f"{MACHINE_API_GROUP}/{MACHINE_API_VERSION}",
        "kind": "MachineSet",
        "metadata": {
            "name": name,
            "namespace": MACHINE_API_NAMESPACE,
            "labels": {CLUSTER_LABEL: infra_id},
        },
        "spec": {
            "replicas": 1,
            "selector": {"matchLabels": {CLUSTER_LABEL: infra_id, MACHINE_SET_LABEL: name}},
            "template": {
                "metadata": {
                    "labels": {
                        CLUSTER_LABEL: infra_id,
                        "machine.openshift.io/cluster-api-machine-role": "worker",
                        "machine.openshift.io/cluster-api-machine-type": "worker",
                        MACHINE_SET_LABEL: name,
                    }
                },
                "spec": {
                    "metadata": {
                        "labels": {
                            GATEWAY_LABEL: GATEWAY_LABEL_VALUE,
                            "node-role.kubernetes.io/worker": "",
                        }
                    },
                    "taints": [{"key": GATEWAY_TAINT, "effect": "NoSchedule"}],
                    "providerSpec": {"value": provider_spec},
                },
            },
        },
    }


def _security_group_refs(security_groups: List[str]) -> List[Dict[str, Any]]:
    refs: List[Dict[str, Any]] = [{"id": group} for group in security_groups if group.startswith("sg-")]
    names = [group for group in security_groups if not group.startswith("sg-")]
    if names:
        refs.append({"filters": [{"name": "tag:Name", "values": names}]})
    return refs


def aws_machine_set(
    infra_id: str,
    region: str,
    zone: str,
    ami_id: str,
    instance_type: str,
    security_groups: List[str],
    subnet_name: str,
    air_gapped: bool = False,
) -> Dict[str, Any]:
    """MachineSet for an EC2 gateway instance in ``zone``.

    Args:
        security_groups: Security groups to attach (worker and gateway), each given
            by ID (``sg-...``) or by Name tag.
        subnet_name: Name tag of the public subnet to place the instance in.
    """
    provider_spec = {
        "apiVersion": "awsproviderconfig.openshift.io/v1beta1",
        "kind": "AWSMachineProviderConfig",
        "ami": {"id": ami_id},
        "instanceType": instance_type,
        "placement": {"availabilityZone": zone, "region": region},
        "securityGroups": _security_group_refs(security_groups),
        "subnet": {"filters": [{"name": "tag:Name", "values": [subnet_name]}]},
        "publicIp": not air_gapped,
        "iamInstanceProfile": {"id": f"{infra_id}-worker-profile"},
        "credentialsSecret": {"name": "aws-cloud-credentials"},
        "userDataSecret": {"name": "worker-user-data"},
        "tags": [{"name": f"kubernetes.io/cluster/{infra_id}", "value": "owned"}],
        "blockDevices": [{"ebs": {"volumeSize": 120, "volumeType": "gp2"}}],
    }
    return _machine_set(infra_id, gateway_machine_set_name(infra_id, zone), provider_spec)


def gcp_machine_set(
    infra_id: str,
    project_id: str,
    region: str,
    zone: str,
    image: Optional[str],
    instance_type: str,
    network_tags: List[str],
    air_gapped: bool = False,
) -> Dict[str, Any]:
    """MachineSet for a GCE gateway instance in ``zone``."""
    network_interface: Dict[str, Any] = {
        "network": f"{infra_id}-network",
        "subnetwork": f"{infra_id}-worker-subnet",
    }
    if not air_gapped:
        network_interface["publicIP"] = True
    provider_spec = {
        "apiVersion": "gcpprovider.openshift.io/v1beta1",
        "kind": "GCPMachineProviderSpec",
        "canIPForward": True,
        "machineType": instance_type,
        "projectID": project_id,
        "region": region,
        "zone": zone,
        "networkInterfaces": [network_interface],
        "disks": [{"autoDelete": True, "boot": True, "image": image, "sizeGb": 128, "type": "pd-ssd"}],
        "tags": list(network_tags),
        "serviceAccounts": [
            {
                "email": f"{infra_id}-w@{project_id}.iam.gserviceaccount.com",
                "scopes": ["https://www.googleapis.com/auth/cloud-platform"],
            }
        ],
        "credentialsSecret": {"name": "gcp-cloud-credentials"},
        "userDataSecret": {"name": "worker-user-data"},
    }
    return _machine_set(infra_id, gateway_machine_set_name(infra_id, zone), provider_spec)


def azure_machine_set(
    infra_id: str,
    region: str,
    zone: str,
    instance_type: str,
    resource_group: str,
    security_group: str,
    image: Optional[str] = None,
    air_gapped: bool = False,
) -> Dict[str, Any]:
    """MachineSet for an Azure gateway VM in availability ``zone`` of ``region``."""
    image_spec = {"resourceID": image} if image else {
        "resourceID": f"/resourceGroups/{resource_group}/providers/Microsoft.Compute/images/{infra_id}"
    }
    provider_spec = {
        "apiVersion": "azureproviderconfig.openshift.io/v1beta1",
        "kind": "AzureMachineProviderSpec",
        "location": region,
        "zone": zone,
        "vmSize": instance_type,
        "image": image_spec,
        "resourceGroup": resource_group,
        "networkResourceGroup": resource_group,
        "vnet": f"{infra_id}-vnet",
        "subnet": f"{infra_id}-worker-subnet",
        "publicIP": not air_gapped,
        "securityGroup": security_group,
        "managedIdentity": f"{infra_id}-identity",
        "osDisk": {"diskSizeGB": 128, "managedDisk": {"storageAccountType": "Premium_LRS"}, "osType": "Linux"},
        "credentialsSecret": {"name": "azure-cloud-credentials", "namespace": MACHINE_API_NAMESPACE},
        "userDataSecret": {"name": "worker-user-data"},
    }
    return _machine_set(infra_id, gateway_machine_set_name(infra_id, f"{region}-{zone}"), provider_spec)
