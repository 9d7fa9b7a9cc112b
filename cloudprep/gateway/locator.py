"""
Resource lookup by deterministic name and tag templates.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from cloudprep.errors import ResourceNotFoundError

logger = logging.getLogger(__name__)

NameFinder = Callable[[str], Optional[Any]]
TagFinder = Callable[[str], List[Any]]


class ResourceLocator:
    """Finds provider resources whose names derive from the infra ID and region.

    Providers register one finder per resource kind. Finders return ``None`` (or an
    empty list) for absent resources and raise for transport or auth failures.
    """

    def __init__(self, infra_id: str, region: str = ""):
        self.infra_id = infra_id
        self.region = region
        self._name_finders: Dict[str, NameFinder] = {}
        self._tag_finders: Dict[str, TagFinder] = {}

    def with_info(self, template: str) -> str:
        return template.replace("{infraID}", self.infra_id).replace("{region}", self.region)

    def register(self, kind: str, by_name: Optional[NameFinder] = None, by_tag: Optional[TagFinder] = None) -> None:
        if by_name is not None:
            self._name_finders[kind] = by_name
        if by_tag is not None:
            self._tag_finders[kind] = by_tag

    def find_by_name(self, kind: str, name_pattern: str) -> Optional[Any]:
        """Look up a single resource by name.

        Args:
            kind: Registered resource kind, e.g. ``"security-group"``.
            name_pattern: Name template, expanded with ``with_info``.

        Returns:
            The provider resource, or None if it does not exist.
        """
        name = self.with_info(name_pattern)
        finder = self._finder(self._name_finders, kind)
        resource = finder(name)
        if resource is None:
            logger.debug(f"{kind} {name} not found")
        return resource

    def find_by_tag(self, kind: str, tag_prefix: str) -> List[Any]:
        """Look up every resource of ``kind`` carrying a tag that starts with ``tag_prefix``."""
        finder = self._finder(self._tag_finders, kind)
        return list(finder(self.with_info(tag_prefix)) or [])

    def require(self, kind: str, name_pattern: str) -> Any:
        """Like ``find_by_name`` but a missing resource is fatal.

        Raises:
            ResourceNotFoundError: If the resource does not exist.
        """
        resource = self.find_by_name(kind, name_pattern)
        if resource is None:
            raise ResourceNotFoundError(kind, self.with_info(name_pattern))
        return resource

    @staticmethod
    def _finder(finders: Dict[str, Callable], kind: str) -> Callable:
        try:
            return finders[kind]
        except KeyError:
            raise ValueError(f"no finder registered for {kind!r}") from None
