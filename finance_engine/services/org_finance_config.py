"""
HERA Finance Engine - Organization Finance Configuration

Module activation matrix and finance policy for one tenant, and the
default configuration used when a tenant has none stored.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from finance_engine.rules import default_accounts
from finance_engine.schemas.org_config import FinancePolicy, OrgFinanceConfig

logger = logging.getLogger(__name__)


# Behaviour applied when a module is disabled and the config does not say otherwise
DEFAULT_DEACTIVATION_BEHAVIOUR = "suppress_events"


@dataclass(frozen=True)
class ModuleGate:
    """What the engine should do with events from one module."""
    module: str
    configured: bool
    enabled: bool
    behaviour: Optional[str] = None

    @property
    def suppressed(self) -> bool:
        return self.configured and not self.enabled and self.behaviour == "suppress_events"

    @property
    def route_to_suspense(self) -> bool:
        return not self.enabled and self.behaviour == "post_to_suspense"

    @property
    def force_review(self) -> bool:
        return not self.enabled and self.behaviour == "stage_for_review"


class OrganizationFinanceConfiguration:
    """Read-only view over an OrgFinanceConfig used by the posting engine."""

    def __init__(self, config: OrgFinanceConfig):
        self.config = config

    @property
    def organization_id(self) -> str:
        return self.config.organization_id

    @property
    def industry(self) -> str:
        return self.config.industry

    @property
    def policy(self) -> FinancePolicy:
        return self.config.finance_policy

    @property
    def suspense_account(self) -> Optional[str]:
        return self.config.finance_policy.suspense_account

    def module_gate(self, module: str) -> ModuleGate:
        module = module.upper()
        if module not in self.config.modules_enabled:
            return ModuleGate(module=module, configured=False, enabled=False)

        if self.config.modules_enabled[module]:
            return ModuleGate(module=module, configured=True, enabled=True)

        behaviour = self.config.deactivation_behaviour.get(module, DEFAULT_DEACTIVATION_BEHAVIOUR)
        return ModuleGate(module=module, configured=True, enabled=False, behaviour=behaviour)


def build_default_config(
    organization_id: str,
    industry: str,
    modules: Iterable[str],
    suspense_account: Optional[str] = None,
) -> OrgFinanceConfig:
    """Every known module enabled, accounts from the industry's default map."""
    logger.info(f"No finance configuration stored for org {organization_id}; using {industry} defaults")
    return OrgFinanceConfig(
        organization_id=organization_id,
        industry=industry,
        modules_enabled={module: True for module in modules},
        finance_policy=FinancePolicy(
            accounts=default_accounts(industry),
            suspense_account=suspense_account,
        ),
    )
