"""
HERA Finance Engine - Posting Rule Tables

Declarative rule sets keyed by industry, plus each industry's default
semantic account map (exposed to recipes as finance.accounts.<name>).
"""

from typing import Dict, List

from finance_engine.rules import furniture, restaurant, salon, universal

UNIVERSAL_RULES: List[dict] = universal.POSTING_RULES

INDUSTRY_RULES: Dict[str, List[dict]] = {
    salon.INDUSTRY: salon.POSTING_RULES,
    restaurant.INDUSTRY: restaurant.POSTING_RULES,
    furniture.INDUSTRY: furniture.POSTING_RULES,
}

INDUSTRY_ACCOUNTS: Dict[str, Dict[str, str]] = {
    salon.INDUSTRY: salon.DEFAULT_ACCOUNTS,
    restaurant.INDUSTRY: restaurant.DEFAULT_ACCOUNTS,
    furniture.INDUSTRY: furniture.DEFAULT_ACCOUNTS,
}


def industry_rules(industry: str) -> List[dict]:
    """Rule definitions for an industry; unknown industries have none beyond the universal set."""
    return INDUSTRY_RULES.get(industry.lower(), [])


def default_accounts(industry: str) -> Dict[str, str]:
    """Universal account map overlaid with the industry's own accounts."""
    accounts = dict(universal.DEFAULT_ACCOUNTS)
    accounts.update(INDUSTRY_ACCOUNTS.get(industry.lower(), {}))
    return accounts


__all__ = ["UNIVERSAL_RULES", "INDUSTRY_RULES", "industry_rules", "default_accounts"]
