"""
Placement of new gateways onto eligible zones, subnets or nodes.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from cloudprep.cloud.types import EligibleZone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlacementPlan:
    """Targets chosen for new gateways."""

    targets: List[EligibleZone]
    requested: int

    @property
    def shortfall(self) -> int:
        return max(self.requested - len(self.targets), 0)

    @property
    def satisfied(self) -> bool:
        return self.shortfall == 0


class PlacementResolver:
    """Chooses targets in provider listing order, first match wins."""

    @staticmethod
    def resolve_eligible_zones(
        candidates: Iterable[EligibleZone], zones_already_used: Optional[Set[str]] = None
    ) -> List[EligibleZone]:
        """Filter candidates down to those that can host a new gateway.

        Args:
            candidates: Candidates as listed by the provider.
            zones_already_used: Identifiers already hosting a gateway.

        Returns:
            Eligible candidates, order preserved.
        """
        used = set(zones_already_used or ())
        eligible = []
        for zone in candidates:
            if not zone.capacity_for_instance_type:
                logger.debug(f"Skipping {zone.identifier}: instance type not offered")
                continue
            if zone.already_hosting_gateway or zone.identifier in used:
                logger.debug(f"Skipping {zone.identifier}: already hosts a gateway")
                continue
            if zone.identifier in {z.identifier for z in eligible}:
                continue
            eligible.append(zone)
        return eligible

    def plan(
        self, candidates: Iterable[EligibleZone], needed: int, zones_already_used: Optional[Set[str]] = None
    ) -> PlacementPlan:
        """Pick up to ``needed`` targets.

        Returns:
            Plan whose ``shortfall`` is non-zero when capacity is insufficient.
        """
        eligible = self.resolve_eligible_zones(candidates, zones_already_used)
        plan = PlacementPlan(targets=eligible[: max(needed, 0)], requested=needed)
        if not plan.satisfied:
            logger.warning(f"Only {len(plan.targets)} of {needed} gateway target(s) available")
        return plan
