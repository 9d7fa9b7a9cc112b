"""
Provider-agnostic gateway deployment and cleanup.
"""
import logging
from typing import Callable, List, Optional

from cloudprep.cloud.provider import CloudProvider, GatewayBackend
from cloudprep.cloud.types import GatewayDeployRequest, GatewayResource, ReconcileResult
from cloudprep.errors import CleanupError, InsufficientCapacityError, UnsupportedOperationError
from cloudprep.gateway.placement import PlacementResolver
from cloudprep.utils.reporter import LoggingReporter, Reporter

logger = logging.getLogger(__name__)


class GatewayLifecycleManager:
    """Converges the number of gateways of one cluster towards a desired count.

    Deploy only ever scales up: the number of gateways is never decreased, a smaller
    desired count is reported and ignored. Cleanup removes every gateway, the
    external rule set and (when a cloud provider is given) the internal ports.
    """

    def __init__(
        self,
        backend: GatewayBackend,
        reporter: Optional[Reporter] = None,
        cloud: Optional[CloudProvider] = None,
        resolver: Optional[PlacementResolver] = None,
    ):
        """Initialize the lifecycle manager.

        Args:
            backend: Provider capabilities to drive.
            reporter: Progress reporter. Defaults to logging.
            cloud: Provider whose internal ports are closed on cleanup.
            resolver: Placement resolver.
        """
        self.backend = backend
        self.reporter = reporter or LoggingReporter()
        self.cloud = cloud
        self.resolver = resolver or PlacementResolver()
        self.logger = logging.getLogger(f"{__name__}.GatewayLifecycleManager")

    def deploy(self, request: GatewayDeployRequest) -> ReconcileResult:
        """Scale gateways up to ``request.desired_gateway_count``.

        Args:
            request: Desired gateway state.

        Returns:
            APPLIED when gateways were created, NOOP when nothing needed to change
            (including a rejected scale-down).

        Raises:
            UnsupportedOperationError: If the backend cannot deploy in the requested mode.
            InsufficientCapacityError: If fewer targets than needed were available.
            CloudPrepError: On the first failing provider step.
        """
        self.reporter.started("Retrieving the current gateways")
        existing = self._step("locating gateways", self.backend.locate_existing)
        self.reporter.succeeded(f"Found {len(existing)} existing gateway(s)")

        delta = request.desired_gateway_count - len(existing)
        if delta == 0:
            self.reporter.succeeded("Current gateways match the required number of gateways")
            return ReconcileResult.NOOP
        if delta < 0:
            self.reporter.failed(
                UnsupportedOperationError("Decreasing the number of Gateway nodes is not currently supported")
            )
            return ReconcileResult.NOOP

        self._check_mode(request)

        self.reporter.started("Validating pre-requisites")
        self._step("validating deploy permissions", self.backend.validate_deploy_prerequisites, request)
        self.reporter.succeeded("Validated pre-requisites")

        self.reporter.started("Ensuring the gateway security rules")
        self._step("ensuring the gateway rule set", self.backend.ensure_rule_set, request)
        self.reporter.succeeded("Gateway security rules are in place")

        candidates = self._step("listing placement candidates", self.backend.list_placement_candidates, request, existing)
        used = {resource.zone for resource in existing if resource.zone}
        plan = self.resolver.plan(candidates, delta, used)

        created: List[GatewayResource] = []
        for target in plan.targets:
            self.reporter.started(f"Deploying gateway on {target.identifier}")
            resource = self._step(f"deploying gateway on {target.identifier}", self.backend.create_gateway_resource, target, request)
            created.append(resource)
            self.reporter.succeeded(f"Deployed gateway {resource.name}")

        if plan.shortfall:
            err = InsufficientCapacityError(
                requested=delta,
                created=len(created),
                detail=f"no further eligible {'zones' if request.use_dedicated_nodes else 'worker nodes'}",
            )
            raise self.reporter.error(err, "Only %d of %d gateway(s) could be deployed", len(created), delta)

        return ReconcileResult.APPLIED

    def cleanup(self) -> ReconcileResult:
        """Remove every gateway and the rule sets they need.

        Each step runs even if an earlier one failed; absent resources count as success.

        Returns:
            REMOVED if anything was removed, NOOP otherwise.

        Raises:
            CleanupError: Aggregate of every step that failed.
        """
        errors: List[BaseException] = []
        removed = False

        self.reporter.started("Validating pre-requisites")
        self._step("validating cleanup permissions", self.backend.validate_cleanup_prerequisites)
        self.reporter.succeeded("Validated pre-requisites")

        self.reporter.started("Retrieving the current gateways")
        existing = self._collect(errors, "locating gateways", self.backend.locate_existing) or []

        for resource in existing:
            self.reporter.started(f"Removing gateway {resource.name}")
            deleted = self._collect(errors, f"removing gateway {resource.name}", self.backend.delete_gateway_resource, resource)
            if deleted:
                removed = True
                self.reporter.succeeded(f"Removed gateway {resource.name}")
            elif deleted is False:
                self.reporter.warning("Gateway %s was already removed", resource.name)

        self.reporter.started("Removing the gateway security rules")
        if self._collect(errors, "removing the gateway rule set", self.backend.remove_rule_set) == ReconcileResult.REMOVED:
            removed = True

        self._collect(errors, "finalizing cleanup", self.backend.finalize_cleanup)

        if self.cloud is not None:
            self.reporter.started("Closing the internal ports")
            if self._collect(errors, "closing internal ports", self.cloud.close_ports) == ReconcileResult.REMOVED:
                removed = True

        if errors:
            raise CleanupError(errors)

        self.reporter.succeeded("Cleanup complete")
        return ReconcileResult.REMOVED if removed else ReconcileResult.NOOP

    def _check_mode(self, request: GatewayDeployRequest) -> None:
        if request.use_dedicated_nodes and not self.backend.supports_dedicated:
            err = UnsupportedOperationError(f"{self.backend.name} cannot deploy dedicated gateway instances")
        elif not request.use_dedicated_nodes and not self.backend.supports_labeling:
            err = UnsupportedOperationError(f"{self.backend.name} cannot label existing nodes as gateways")
        else:
            return
        raise self.reporter.error(err, "Gateway deployment mode not available on %s", self.backend.name)

    def _attempt(self, operation: str, fn: Callable, *args):
        with self.backend.translating(operation):
            return fn(*args)

    def _step(self, operation: str, fn: Callable, *args):
        try:
            return self._attempt(operation, fn, *args)
        except Exception as e:
            self.reporter.failed(e)
            raise

    def _collect(self, errors: List[BaseException], operation: str, fn: Callable, *args):
        try:
            return self._attempt(operation, fn, *args)
        except Exception as e:
            self.logger.error(f"Cleanup step {operation} failed: {e}")
            self.reporter.failed(e)
            errors.append(e)
            return None
