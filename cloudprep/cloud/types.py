"""
Value types shared by the lifecycle manager and the provider adapters.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

GATEWAY_LABEL = "submariner.io/gateway"
GATEWAY_LABEL_VALUE = "true"

KIND_DEDICATED = "dedicated"
KIND_LABELED = "labeled"

PROTOCOLS = ("tcp", "udp")


class ReconcileResult(Enum):
    """Outcome of a reconcile step."""

    APPLIED = "applied"
    NOOP = "noop"
    REMOVED = "removed"


@dataclass(frozen=True)
class PortSpec:
    """A port and transport protocol to open."""

    port: int
    protocol: str

    def __post_init__(self):
        if not 0 <= int(self.port) <= 65535:
            raise ValueError(f"port {self.port} out of range")
        protocol = str(self.protocol).lower()
        if protocol not in PROTOCOLS:
            raise ValueError(f"unsupported protocol {self.protocol!r}")
        object.__setattr__(self, "port", int(self.port))
        object.__setattr__(self, "protocol", protocol)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PortSpec":
        return cls(port=data["port"], protocol=data.get("protocol", "udp"))


@dataclass(frozen=True)
class GatewayDeployRequest:
    """Desired gateway state for one Deploy invocation."""

    desired_gateway_count: int
    public_ports: Tuple[PortSpec, ...] = ()
    use_dedicated_nodes: bool = True
    air_gapped: bool = False
    use_load_balancer: bool = False

    def __post_init__(self):
        if self.desired_gateway_count < 0:
            raise ValueError("desired_gateway_count must be >= 0")
        object.__setattr__(self, "public_ports", tuple(self.public_ports))


@dataclass(frozen=True)
class EligibleZone:
    """A placement candidate: an availability zone, a subnet or a worker node."""

    identifier: str
    capacity_for_instance_type: bool = True
    already_hosting_gateway: bool = False
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class GatewayResource:
    """A resource currently acting as a gateway."""

    name: str
    zone: Optional[str] = None
    kind: str = KIND_DEDICATED
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass(frozen=True)
class SecurityRule:
    """Provider-neutral description of one security rule."""

    name: str
    port: int
    protocol: str
    direction: str = "ingress"
    priority: Optional[int] = None
    source: str = "0.0.0.0/0"
    destination: str = "0.0.0.0/0"
    source_group: Optional[str] = None
    description: str = ""
