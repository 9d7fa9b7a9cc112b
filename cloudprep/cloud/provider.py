"""
Cloud provider interfaces for gateway preparation.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple, Type
import logging

from kubernetes.client.rest import ApiException

from cloudprep.cloud.types import EligibleZone, GatewayDeployRequest, GatewayResource, PortSpec, ReconcileResult
from cloudprep.config.config import CloudInfo
from cloudprep.errors import provider_errors
from cloudprep.utils.reporter import LoggingReporter, Reporter

logger = logging.getLogger(__name__)


class CloudProvider(ABC):
    """Opens and closes the intra-cluster ports a cloud needs."""

    # SDK exceptions translated into ProviderError at this boundary
    sdk_errors: Tuple[Type[BaseException], ...] = ()

    def __init__(self, info: CloudInfo, reporter: Optional[Reporter] = None):
        """Initialize cloud provider.

        Args:
            info: Identity of the target cluster.
            reporter: Progress reporter. Defaults to logging.
        """
        self.info = info
        self.name = self.__class__.__name__
        self.infra_id = info.infra_id
        self.region = info.region
        self.reporter = reporter or LoggingReporter()
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    def translating(self, operation: str):
        """Context manager wrapping this provider's SDK errors in ProviderError."""
        return provider_errors(operation, self.infra_id, *self.sdk_errors)

    @abstractmethod
    def open_ports(self, ports: Sequence[PortSpec]) -> ReconcileResult:
        """Open ``ports`` between cluster nodes.

        Args:
            ports: Ports to open.

        Returns:
            APPLIED if rules were written, NOOP if they were already present.
        """
        pass

    @abstractmethod
    def close_ports(self) -> ReconcileResult:
        """Remove every rule previously added by ``open_ports``.

        Returns:
            REMOVED if rules were deleted, NOOP if none were present.
        """
        pass


class VpcPeeringCapable(ABC):
    """Providers that can peer their cluster network with another cluster's."""

    @abstractmethod
    def create_vpc_peering(self, target: "VpcPeeringCapable") -> None:
        pass

    @abstractmethod
    def cleanup_vpc_peering(self, target: "VpcPeeringCapable") -> None:
        pass


class GatewayBackend(ABC):
    """Capabilities the gateway lifecycle manager drives on a provider."""

    supports_dedicated = False
    supports_labeling = False
    sdk_errors: Tuple[Type[BaseException], ...] = (ApiException,)

    def __init__(self, info: CloudInfo):
        self.info = info
        self.name = self.__class__.__name__
        self.infra_id = info.infra_id
        self.region = info.region
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    def translating(self, operation: str):
        return provider_errors(operation, self.infra_id, *self.sdk_errors)

    def validate_deploy_prerequisites(self, request: GatewayDeployRequest) -> None:
        """Check permissions and base resources before any mutation. Raise on failure."""

    def validate_cleanup_prerequisites(self) -> None:
        """Check permissions before cleanup. Raise on failure."""

    @abstractmethod
    def locate_existing(self) -> List[GatewayResource]:
        """Return the gateways currently present."""
        pass

    @abstractmethod
    def ensure_rule_set(self, request: GatewayDeployRequest) -> ReconcileResult:
        """Make sure the external (public) rule set exists and is attached where needed."""
        pass

    @abstractmethod
    def remove_rule_set(self) -> ReconcileResult:
        """Remove the external rule set. Absent is success."""
        pass

    @abstractmethod
    def list_placement_candidates(
        self, request: GatewayDeployRequest, existing: Sequence[GatewayResource]
    ) -> List[EligibleZone]:
        """List zones (dedicated mode) or nodes (label mode) in provider order."""
        pass

    @abstractmethod
    def create_gateway_resource(self, target: EligibleZone, request: GatewayDeployRequest) -> GatewayResource:
        pass

    @abstractmethod
    def delete_gateway_resource(self, resource: GatewayResource) -> bool:
        """Delete or un-label one gateway. Returns False if it was already gone."""
        pass

    def finalize_cleanup(self) -> None:
        """Provider-specific cleanup run after gateways and the rule set are removed."""
