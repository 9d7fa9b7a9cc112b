"""
Tests for the gateway lifecycle manager.
"""
import pytest
from unittest.mock import MagicMock

from kubernetes.client.rest import ApiException

from cloudprep.cloud.types import GatewayDeployRequest, PortSpec, ReconcileResult
from cloudprep.errors import (
    CleanupError,
    InsufficientCapacityError,
    PermissionDeniedError,
    ProviderError,
    UnsupportedOperationError,
)
from cloudprep.gateway.lifecycle import GatewayLifecycleManager


def request(count, dedicated=True):
    return GatewayDeployRequest(
        desired_gateway_count=count,
        public_ports=(PortSpec(4500, "udp"),),
        use_dedicated_nodes=dedicated,
    )


def test_deploy_creates_missing_gateways(fake_backend, reporter):
    """Test deploy creates one gateway per missing count."""
    manager = GatewayLifecycleManager(fake_backend, reporter)

    result = manager.deploy(request(2))

    assert result == ReconcileResult.APPLIED
    assert len(fake_backend.gateways) == 2
    assert fake_backend.rule_set


def test_deploy_is_idempotent(fake_backend, reporter):
    """Test a second deploy with the same request mutates nothing."""
    manager = GatewayLifecycleManager(fake_backend, reporter)
    manager.deploy(request(2))
    fake_backend.calls.clear()

    result = manager.deploy(request(2))

    assert result == ReconcileResult.NOOP
    assert fake_backend.mutating_calls() == []


def test_deploy_rejects_scale_down(fake_backend, reporter):
    """Test a smaller desired count is reported and nothing is deleted."""
    manager = GatewayLifecycleManager(fake_backend, reporter)
    manager.deploy(request(2))
    fake_backend.calls.clear()

    result = manager.deploy(request(1))

    assert result == ReconcileResult.NOOP
    assert fake_backend.mutating_calls() == []
    assert len(fake_backend.gateways) == 2
    assert isinstance(reporter.failures[-1], UnsupportedOperationError)


def test_deploy_ensures_rule_set_once(fake_backend, reporter):
    """Test the external rule set is ensured once per scale-up, not per gateway."""
    manager = GatewayLifecycleManager(fake_backend, reporter)

    manager.deploy(request(3))

    assert [c[0] for c in fake_backend.calls].count("ensure_rule_set") == 1


def test_deploy_insufficient_capacity(backend_factory, reporter):
    """Test only eligible zones are used and a capacity error follows."""
    backend = backend_factory(zones=("zone-a", "zone-b", "zone-c"), no_capacity=("zone-b",))
    manager = GatewayLifecycleManager(backend, reporter)

    with pytest.raises(InsufficientCapacityError) as exc_info:
        manager.deploy(request(3))

    creates = [c for c in backend.calls if c[0] == "create"]
    assert len(creates) == 2
    assert "zone-b" not in backend.gateways
    assert exc_info.value.requested == 3
    assert exc_info.value.created == 2


def test_deploy_skips_zones_already_hosting(fake_backend, reporter):
    """Test scale-up never places a second gateway in an occupied zone."""
    manager = GatewayLifecycleManager(fake_backend, reporter)
    manager.deploy(request(1))
    first_zone = next(iter(fake_backend.gateways))

    manager.deploy(request(2))

    creates = [c[1] for c in fake_backend.calls if c[0] == "create"]
    assert creates.count(first_zone) == 1
    assert len(fake_backend.gateways) == 2


def test_deploy_unsupported_mode(backend_factory, reporter):
    """Test a backend without labeling support rejects label mode before mutating."""
    backend = backend_factory()
    backend.supports_labeling = False
    manager = GatewayLifecycleManager(backend, reporter)

    with pytest.raises(UnsupportedOperationError):
        manager.deploy(request(1, dedicated=False))

    assert backend.mutating_calls() == []


def test_deploy_aborts_on_first_error(fake_backend, reporter):
    """Test a failing create stops the remaining steps and propagates."""
    fake_backend.fail_on["create"] = ProviderError("creating", "zone-a")
    manager = GatewayLifecycleManager(fake_backend, reporter)

    with pytest.raises(ProviderError):
        manager.deploy(request(2))

    assert len([c for c in fake_backend.calls if c[0] == "create"]) == 1
    assert isinstance(reporter.failures[-1], ProviderError)


def test_deploy_validation_failure_prevents_mutation(fake_backend, reporter):
    """Test a permission failure surfaces before any rule set or gateway is created."""
    fake_backend.validate_deploy_prerequisites = MagicMock(side_effect=PermissionDeniedError("create tags"))
    manager = GatewayLifecycleManager(fake_backend, reporter)

    with pytest.raises(PermissionDeniedError, match="no permission to create tags"):
        manager.deploy(request(1))

    assert fake_backend.mutating_calls() == []


def test_cleanup_removes_everything(fake_backend, reporter):
    """Test cleanup deletes every gateway and the rule set."""
    manager = GatewayLifecycleManager(fake_backend, reporter)
    manager.deploy(request(2))

    result = manager.cleanup()

    assert result == ReconcileResult.REMOVED
    assert fake_backend.gateways == {}
    assert not fake_backend.rule_set


def test_cleanup_tolerates_out_of_band_deletion(fake_backend, reporter):
    """Test cleanup succeeds when resources were already removed by someone else."""
    manager = GatewayLifecycleManager(fake_backend, reporter)
    manager.deploy(request(2))
    fake_backend.gateways.clear()
    fake_backend.rule_set = False

    assert manager.cleanup() == ReconcileResult.NOOP


def test_cleanup_aggregates_errors(fake_backend, reporter):
    """Test a failing step does not stop later steps, and every error is reported."""
    manager = GatewayLifecycleManager(fake_backend, reporter)
    manager.deploy(request(2))
    fake_backend.fail_on["delete"] = ProviderError("deleting", "machine set")

    with pytest.raises(CleanupError) as exc_info:
        manager.cleanup()

    assert len(exc_info.value.errors) == 2
    assert not fake_backend.rule_set


def test_cleanup_closes_internal_ports(fake_backend, reporter):
    """Test cleanup closes the internal ports when a cloud provider is given."""
    cloud = MagicMock()
    cloud.close_ports.return_value = ReconcileResult.REMOVED
    manager = GatewayLifecycleManager(fake_backend, reporter, cloud=cloud)

    assert manager.cleanup() == ReconcileResult.REMOVED
    cloud.close_ports.assert_called_once_with()


def test_deploy_scale_then_cleanup_scenario(fake_backend, reporter):
    """Test deploy(2), deploy(1), cleanup() end to end."""
    manager = GatewayLifecycleManager(fake_backend, reporter)

    manager.deploy(request(2))
    assert len(fake_backend.gateways) == 2
    assert sum(1 for c in fake_backend.calls if c[0] == "ensure_rule_set") == 1

    fake_backend.calls.clear()
    manager.deploy(request(1))
    assert fake_backend.mutating_calls() == []
    assert isinstance(reporter.failures[-1], UnsupportedOperationError)

    manager.cleanup()
    assert fake_backend.gateways == {}
    assert not fake_backend.rule_set


def test_cleanup_gateway_removed_between_listing_and_delete(fake_backend, reporter):
    """Test a gateway that vanishes after listing is still a successful cleanup."""
    manager = GatewayLifecycleManager(fake_backend, reporter)
    manager.deploy(request(2))
    located = fake_backend.locate_existing()
    fake_backend.gateways.pop(located[0].zone)
    fake_backend.locate_existing = MagicMock(return_value=located)
    fake_backend.calls.clear()

    assert manager.cleanup() == ReconcileResult.REMOVED

    assert [c[1] for c in fake_backend.calls if c[0] == "delete"] == [r.name for r in located]
    assert fake_backend.gateways == {}
    assert ("warning", f"Gateway {located[0].name} was already removed") in reporter.events
    assert reporter.failures == []


def test_deploy_wraps_sdk_errors(fake_backend, reporter):
    """Test a raw SDK error from a backend step surfaces as a ProviderError."""
    fake_backend.fail_on["create"] = ApiException(status=500, reason="Internal Server Error")
    manager = GatewayLifecycleManager(fake_backend, reporter)

    with pytest.raises(ProviderError) as exc_info:
        manager.deploy(request(1))

    assert exc_info.value.operation == "deploying gateway on zone-a"
    assert exc_info.value.resource == "test-infra"
    assert isinstance(exc_info.value.cause, ApiException)
    assert reporter.failures == [exc_info.value]


def test_cleanup_wraps_sdk_errors(fake_backend, reporter):
    """Test SDK failures during cleanup are aggregated as ProviderErrors."""
    manager = GatewayLifecycleManager(fake_backend, reporter)
    manager.deploy(request(1))
    fake_backend.fail_on["remove_rule_set"] = ApiException(status=403, reason="Forbidden")

    with pytest.raises(CleanupError) as exc_info:
        manager.cleanup()

    [err] = exc_info.value.errors
    assert isinstance(err, ProviderError)
    assert err.operation == "removing the gateway rule set"
    assert fake_backend.gateways == {}


def test_deploy_capacity_shortfall_is_reported(backend_factory, reporter):
    """Test the capacity error is reported along with how many gateways were deployed."""
    backend = backend_factory(zones=("zone-a",))
    manager = GatewayLifecycleManager(backend, reporter)

    with pytest.raises(InsufficientCapacityError) as exc_info:
        manager.deploy(request(2))

    assert reporter.failures == [exc_info.value]
    assert ("warning", "Only 1 of 2 gateway(s) could be deployed") in reporter.events
