"""
HERA Finance Engine - Organization Finance Configuration Schemas
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


DeactivationBehaviour = Literal["suppress_events", "post_to_suspense", "stage_for_review"]


class FinancePolicy(BaseModel):
    """Defaults injected into the derivation context under the `finance` namespace."""
    default_coa_id: Optional[str] = None
    tax_profile_id: Optional[str] = None
    fx_source: Optional[str] = None
    suspense_account: Optional[str] = None
    accounts: Dict[str, str] = Field(default_factory=dict)
    supported_currencies: List[str] = Field(default_factory=list)

    @field_validator('supported_currencies')
    @classmethod
    def upper_currencies(cls, v: List[str]) -> List[str]:
        return [c.upper() for c in v]


class OrgFinanceConfig(BaseModel):
    """Per-tenant module activation matrix and finance policy."""
    organization_id: str = Field(..., min_length=1)
    industry: str = "universal"
    config_version: str = "v1"
    modules_enabled: Dict[str, bool] = Field(default_factory=dict)
    finance_policy: FinancePolicy = Field(default_factory=FinancePolicy)
    deactivation_behaviour: Dict[str, DeactivationBehaviour] = Field(default_factory=dict)

    @field_validator('modules_enabled', 'deactivation_behaviour')
    @classmethod
    def upper_module_keys(cls, v: dict) -> dict:
        return {key.upper(): value for key, value in v.items()}

    @field_validator('industry')
    @classmethod
    def lower_industry(cls, v: str) -> str:
        return v.lower()
