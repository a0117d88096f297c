"""
HERA Finance Engine - Finance Configuration Source

Where per-tenant finance configuration and posting-rule overrides are
loaded from. Storage is up to the host application.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Union

from finance_engine.schemas.org_config import OrgFinanceConfig
from finance_engine.schemas.posting_rule import PostingRule


class FinanceConfigSource(ABC):
    """Abstract configuration source."""

    @abstractmethod
    async def load_org_config(self, organization_id: str) -> Optional[OrgFinanceConfig]:
        """Stored configuration, or None to fall back to industry defaults."""
        pass

    @abstractmethod
    async def load_rule_overrides(self, organization_id: str) -> List[Union[PostingRule, Mapping[str, Any]]]:
        """Organization-specific posting rules (highest priority)."""
        pass


class InMemoryFinanceConfigSource(FinanceConfigSource):
    """Configuration held in memory; used in development and tests."""

    def __init__(
        self,
        configs: Optional[Dict[str, OrgFinanceConfig]] = None,
        overrides: Optional[Dict[str, List[Union[PostingRule, Mapping[str, Any]]]]] = None,
    ):
        self._configs: Dict[str, OrgFinanceConfig] = dict(configs or {})
        self._overrides: Dict[str, List[Union[PostingRule, Mapping[str, Any]]]] = {
            organization_id: list(rules) for organization_id, rules in (overrides or {}).items()
        }
        self.loads = 0

    def set_config(self, config: OrgFinanceConfig) -> None:
        self._configs[config.organization_id] = config

    def set_overrides(self, organization_id: str, rules: List[Union[PostingRule, Mapping[str, Any]]]) -> None:
        self._overrides[organization_id] = list(rules)

    async def load_org_config(self, organization_id: str) -> Optional[OrgFinanceConfig]:
        self.loads += 1
        return self._configs.get(organization_id)

    async def load_rule_overrides(self, organization_id: str) -> List[Union[PostingRule, Mapping[str, Any]]]:
        return list(self._overrides.get(organization_id, []))
