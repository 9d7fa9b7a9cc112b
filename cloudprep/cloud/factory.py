"""
Cloud provider factory: builds providers and gateway backends with real SDK clients.
"""
import logging
from typing import Optional

from azure.identity import DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient
from kubernetes import client

from cloudprep.cloud.aws_provider import AWSGatewayBackend, AWSProvider
from cloudprep.cloud.azure_provider import AzureGatewayBackend, AzureProvider
from cloudprep.cloud.gcp_provider import GCPGatewayBackend, GCPProvider
from cloudprep.cloud.generic_provider import GenericGatewayBackend
from cloudprep.cloud.provider import CloudProvider, GatewayBackend
from cloudprep.cloud.rhos_provider import RHOSGatewayBackend, RHOSProvider
from cloudprep.config.config import CloudInfo
from cloudprep.kubernetes.machinesets import MachineSetDeployer
from cloudprep.kubernetes.nodes import NodeClient, load_core_api
from cloudprep.utils.reporter import Reporter

logger = logging.getLogger(__name__)

SUPPORTED_CLOUDS = ("aws", "gcp", "azure", "rhos", "generic")


class CloudProviderFactory:
    """Factory for creating cloud providers and their gateway backends."""

    def __init__(self, info: CloudInfo, reporter: Optional[Reporter] = None, kubeconfig: Optional[str] = None):
        self.info = info
        self.reporter = reporter
        self.kubeconfig = kubeconfig
        self._core_api = None
        self._providers = {}

    def core_api(self) -> client.CoreV1Api:
        if self._core_api is None:
            self._core_api = load_core_api(self.kubeconfig)
        return self._core_api

    def node_client(self) -> NodeClient:
        return NodeClient(self.core_api())

    def machine_set_deployer(self) -> MachineSetDeployer:
        self.core_api()
        return MachineSetDeployer(client.CustomObjectsApi())

    def _azure_credential(self):
        return DefaultAzureCredential()

    def create_provider(self, provider_type: str) -> Optional[CloudProvider]:
        """Create a cloud provider of the specified type.

        Args:
            provider_type: One of ``SUPPORTED_CLOUDS``.

        Returns:
            Cloud provider instance, or None for clouds without intra-cluster port management.

        Raises:
            ValueError: If the type is not supported.
        """
        if provider_type in self._providers:
            return self._providers[provider_type]

        if provider_type == "aws":
            provider = AWSProvider(self.info, reporter=self.reporter)
        elif provider_type == "gcp":
            provider = GCPProvider(self.info, reporter=self.reporter)
        elif provider_type == "azure":
            network_client = NetworkManagementClient(self._azure_credential(), self.info.subscription_id)
            provider = AzureProvider(self.info, network_client, reporter=self.reporter)
        elif provider_type == "rhos":
            provider = RHOSProvider(self.info, reporter=self.reporter)
        elif provider_type == "generic":
            provider = None
        else:
            logger.error(f"Unsupported cloud provider type: {provider_type}")
            raise ValueError(f"unsupported cloud provider type {provider_type!r}")

        self._providers[provider_type] = provider
        return provider

    def create_gateway_backend(self, provider_type: str) -> GatewayBackend:
        """Create the gateway backend for ``provider_type``, sharing the provider's clients."""
        provider = self.create_provider(provider_type)

        if provider_type == "aws":
            return AWSGatewayBackend(provider, self.machine_set_deployer())
        if provider_type == "gcp":
            return GCPGatewayBackend(provider, self.machine_set_deployer())
        if provider_type == "azure":
            compute_client = ComputeManagementClient(self._azure_credential(), self.info.subscription_id)
            return AzureGatewayBackend(provider, compute_client, self.node_client(), self.machine_set_deployer())
        if provider_type == "rhos":
            return RHOSGatewayBackend(provider, self.node_client())

        return GenericGatewayBackend(self.info, self.node_client())
