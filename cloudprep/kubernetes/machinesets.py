"""
Deployment of gateway machine sets through the OpenShift machine API.
"""
import logging
from typing import Any, Dict, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

logger = logging.getLogger(__name__)

MACHINE_API_GROUP = "machine.openshift.io"
MACHINE_API_VERSION = "v1beta1"
MACHINE_SET_PLURAL = "machinesets"
MACHINE_API_NAMESPACE = "openshift-machine-api"


class MachineSetDeployer:
    """Create-or-update, delete and query MachineSet custom resources."""

    def __init__(self, custom_api: client.CustomObjectsApi, namespace: str = MACHINE_API_NAMESPACE):
        self.custom_api = custom_api
        self.namespace = namespace
        self.logger = logging.getLogger(f"{__name__}.MachineSetDeployer")

    def _args(self) -> Dict[str, str]:
        return {
            "group": MACHINE_API_GROUP,
            "version": MACHINE_API_VERSION,
            "namespace": self.namespace,
            "plural": MACHINE_SET_PLURAL,
        }

    def get(self, name: str) -> Optional[Dict[str, Any]]:
        try:
            return self.custom_api.get_namespaced_custom_object(name=name, **self._args())
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def deploy(self, machine_set: Dict[str, Any]) -> Dict[str, Any]:
        """Create the machine set, or replace it if one with the same name exists.

        Args:
            machine_set: MachineSet manifest.

        Returns:
            The stored object.
        """
        name = machine_set["metadata"]["name"]
        try:
            created = self.custom_api.create_namespaced_custom_object(body=machine_set, **self._args())
            self.logger.info(f"Created machine set {name}")
            return created
        except ApiException as e:
            if e.status != 409:
                raise

        existing = self.get(name) or {}
        body = dict(machine_set)
        body["metadata"] = dict(machine_set["metadata"])
        resource_version = existing.get("metadata", {}).get("resourceVersion")
        if resource_version:
            body["metadata"]["resourceVersion"] = resource_version
        updated = self.custom_api.replace_namespaced_custom_object(name=name, body=body, **self._args())
        self.logger.info(f"Updated machine set {name}")
        return updated

    def delete(self, name: str) -> bool:
        """Delete the machine set ``name``. Returns False if it did not exist."""
        try:
            self.custom_api.delete_namespaced_custom_object(name=name, **self._args())
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        self.logger.info(f"Deleted machine set {name}")
        return True

    def list(self, name_filter: str = "") -> List[Dict[str, Any]]:
        """List machine sets whose name contains ``name_filter``."""
        response = self.custom_api.list_namespaced_custom_object(**self._args())
        return [
            item for item in response.get("items", []) if name_filter in item.get("metadata", {}).get("name", "")
        ]

    def get_worker_node_image(self, name_filter: str) -> Optional[str]:
        """Return the disk image used by the first matching worker machine set, if any.

        Understands both the GCP (``disks[0].image``) and AWS (``ami.id``) provider specs.
        """
        for item in self.list(name_filter):
            provider_spec = (
                item.get("spec", {})
                .get("template", {})
                .get("spec", {})
                .get("providerSpec", {})
                .get("value", {})
            )
            disks = provider_spec.get("disks") or []
            if disks and disks[0].get("image"):
                return disks[0]["image"]
            ami = provider_spec.get("ami") or {}
            if ami.get("id"):
                return ami["id"]
        return None
