"""
Configuration module for cloud preparation.
Loads the YAML configuration and derives the immutable values handed to providers.
"""
import yaml
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from cloudprep.cloud.types import GatewayDeployRequest, PortSpec

DEFAULT_NATT_PORT = 4500
DEFAULT_NAT_DISCOVERY_PORT = 4490
DEFAULT_VXLAN_PORT = 4800
DEFAULT_METRICS_PORT = 8080


@dataclass(frozen=True)
class CloudInfo:
    """Identity of the target cluster in its cloud."""

    infra_id: str
    region: str = ""
    project_id: Optional[str] = None
    subscription_id: Optional[str] = None
    base_group_name: Optional[str] = None
    instance_type: Optional[str] = None
    image: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def with_info(self, template: str) -> str:
        """Substitute ``{infraID}`` and ``{region}`` in a name template."""
        return template.replace("{infraID}", self.infra_id).replace("{region}", self.region)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CloudInfo":
        if not data.get("infra_id"):
            raise ValueError("cloud.infra_id is required")
        known = {"infra_id", "region", "project_id", "subscription_id", "base_group_name", "instance_type", "image"}
        return cls(
            infra_id=data["infra_id"],
            region=data.get("region", ""),
            project_id=data.get("project_id"),
            subscription_id=data.get("subscription_id"),
            base_group_name=data.get("base_group_name"),
            instance_type=data.get("instance_type"),
            image=data.get("image"),
            options={k: v for k, v in data.items() if k not in known},
        )


class Config:
    """Configuration class for cloud preparation."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file. If None, start empty.
        """
        self.config_data: Dict[str, Any] = {}
        if config_path:
            self.load_config(config_path)

    def load_config(self, config_path: str) -> None:
        """Load configuration from a YAML file.

        Args:
            config_path: Path to configuration file.
        """
        with open(config_path, "r") as f:
            self.config_data = yaml.safe_load(f) or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            key: Configuration key.
            default: Default value if key not found.

        Returns:
            Configuration value.
        """
        return self.config_data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.config_data[key]

    def save_config(self, config_path: str) -> None:
        """Save current configuration to a YAML file.

        Args:
            config_path: Path to save configuration file.
        """
        with open(config_path, "w") as f:
            yaml.dump(self.config_data, f, default_flow_style=False)

    def cloud_info(self) -> CloudInfo:
        """Build the cluster identity from the ``cloud`` section.

        Raises:
            ValueError: If the section lacks an infra ID.
        """
        return CloudInfo.from_dict(self.get("cloud", {}) or {})

    def internal_ports(self) -> List[PortSpec]:
        """Ports opened between cluster nodes (``ports.internal``)."""
        ports = (self.get("ports", {}) or {}).get("internal")
        if ports is None:
            return [
                PortSpec(DEFAULT_VXLAN_PORT, "udp"),
                PortSpec(DEFAULT_METRICS_PORT, "tcp"),
            ]
        return [PortSpec.from_dict(p) for p in ports]

    def public_ports(self) -> List[PortSpec]:
        """Ports opened to the world on gateways (``ports.public``)."""
        ports = (self.get("ports", {}) or {}).get("public")
        if ports is None:
            return [
                PortSpec(DEFAULT_NATT_PORT, "udp"),
                PortSpec(DEFAULT_NAT_DISCOVERY_PORT, "udp"),
            ]
        return [PortSpec.from_dict(p) for p in ports]

    def deploy_request(self, gateways: Optional[int] = None, **overrides) -> GatewayDeployRequest:
        """Build a deploy request from the ``gateway`` section, applying CLI overrides."""
        section = self.get("gateway", {}) or {}
        values = {
            "desired_gateway_count": section.get("count", 1),
            "use_dedicated_nodes": section.get("dedicated", True),
            "air_gapped": section.get("air_gapped", False),
            "use_load_balancer": section.get("use_load_balancer", False),
        }
        if gateways is not None:
            values["desired_gateway_count"] = gateways
        values.update({k: v for k, v in overrides.items() if v is not None})
        return GatewayDeployRequest(public_ports=tuple(self.public_ports()), **values)

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "Config":
        """Create a Config instance from a YAML file.

        Args:
            yaml_path: Path to YAML configuration file.

        Returns:
            Config instance.
        """
        config = cls()
        config.load_config(yaml_path)
        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        config = cls()
        config.config_data = dict(data)
        return config
