"""
Pytest configuration file for all tests.
"""
from typing import List, Optional, Sequence

import pytest
from kubernetes import client

from cloudprep.cloud.provider import GatewayBackend
from cloudprep.cloud.types import (
    KIND_DEDICATED,
    EligibleZone,
    GatewayDeployRequest,
    GatewayResource,
    ReconcileResult,
)
from cloudprep.config.config import CloudInfo
from cloudprep.utils.reporter import Reporter


class RecordingReporter(Reporter):
    """Reporter that keeps every event for assertions."""

    def __init__(self):
        self.events = []

    def started(self, message: str, *args) -> None:
        self.events.append(("started", message % args if args else message))

    def succeeded(self, message: str, *args) -> None:
        self.events.append(("succeeded", message % args if args else message))

    def failed(self, err: Optional[BaseException] = None) -> None:
        self.events.append(("failed", err))

    def warning(self, message: str, *args) -> None:
        self.events.append(("warning", message % args if args else message))

    @property
    def failures(self) -> List[BaseException]:
        return [payload for kind, payload in self.events if kind == "failed"]


class FakeBackend(GatewayBackend):
    """In-memory gateway backend recording every mutating call."""

    supports_dedicated = True
    supports_labeling = True

    def __init__(self, zones: Sequence[str] = ("zone-a", "zone-b", "zone-c"), no_capacity: Sequence[str] = ()):
        super().__init__(CloudInfo(infra_id="test-infra", region="test-region"))
        self.zones = list(zones)
        self.no_capacity = set(no_capacity)
        self.gateways = {}
        self.rule_set = False
        self.calls = []
        self.fail_on = {}

    def _record(self, name: str, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise self.fail_on[name]

    def mutating_calls(self) -> List[tuple]:
        return [call for call in self.calls if call[0] in ("create", "delete", "ensure_rule_set", "remove_rule_set")]

    def locate_existing(self) -> List[GatewayResource]:
        self._record("locate_existing")
        return [GatewayResource(name=name, zone=zone, kind=KIND_DEDICATED) for zone, name in self.gateways.items()]

    def ensure_rule_set(self, request: GatewayDeployRequest) -> ReconcileResult:
        self._record("ensure_rule_set")
        if self.rule_set:
            return ReconcileResult.NOOP
        self.rule_set = True
        return ReconcileResult.APPLIED

    def remove_rule_set(self) -> ReconcileResult:
        self._record("remove_rule_set")
        if not self.rule_set:
            return ReconcileResult.NOOP
        self.rule_set = False
        return ReconcileResult.REMOVED

    def list_placement_candidates(self, request, existing) -> List[EligibleZone]:
        self._record("list_placement_candidates")
        return [
            EligibleZone(
                identifier=zone,
                capacity_for_instance_type=zone not in self.no_capacity,
                already_hosting_gateway=zone in self.gateways,
            )
            for zone in self.zones
        ]

    def create_gateway_resource(self, target: EligibleZone, request: GatewayDeployRequest) -> GatewayResource:
        self._record("create", target.identifier)
        name = f"test-infra-submariner-gw-{target.identifier}"
        self.gateways[target.identifier] = name
        return GatewayResource(name=name, zone=target.identifier, kind=KIND_DEDICATED)

    def delete_gateway_resource(self, resource: GatewayResource) -> bool:
        self._record("delete", resource.name)
        return self.gateways.pop(resource.zone, None) is not None


def make_node(name: str, labels=None, taints=None) -> client.V1Node:
    """Build a V1Node with the given labels and (key, effect) taints."""
    return client.V1Node(
        metadata=client.V1ObjectMeta(name=name, labels=dict(labels or {})),
        spec=client.V1NodeSpec(taints=[client.V1Taint(key=k, effect=e) for k, e in taints or []]),
    )


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def cloud_info():
    return CloudInfo(
        infra_id="test-infra",
        region="us-east-1",
        project_id="test-project",
        subscription_id="test-subscription",
        base_group_name="test-infra-rg",
    )


@pytest.fixture
def backend_factory():
    return FakeBackend


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def node_factory():
    return make_node
