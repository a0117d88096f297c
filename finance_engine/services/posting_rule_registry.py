"""
HERA Finance Engine - Posting Rule Registry

Per-organization map from smart code to posting rule, merged in priority
order: organization overrides > industry defaults > universal defaults.
Merge is by exact smart code; a higher layer replaces the whole rule.

Outcome expressions are compiled while the registry is built, so a broken
rule fails at initialization rather than on the first event.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from finance_engine.rules import UNIVERSAL_RULES, industry_rules
from finance_engine.schemas.posting_rule import PostingRule
from finance_engine.services.expression import Expression, compile_expression
from finance_engine.utils.error_handling import ExpressionError, PostingRuleError, UnknownSmartCodeError

logger = logging.getLogger(__name__)


RuleDefinition = Union[PostingRule, Mapping]


@dataclass(frozen=True)
class CompiledRule:
    """A posting rule together with its compiled outcome expressions."""
    rule: PostingRule
    layer: str
    auto_post_if: Optional[Expression] = None
    approval_required_if: Optional[Expression] = None


def parse_rule(definition: RuleDefinition) -> PostingRule:
    """Validate a rule definition (dict or PostingRule)."""
    if isinstance(definition, PostingRule):
        return definition
    try:
        return PostingRule.model_validate(definition)
    except ValidationError as e:
        smart_code = definition.get("smart_code") if isinstance(definition, Mapping) else None
        raise PostingRuleError(f"Invalid posting rule: {e.errors()[0]['msg']}", smart_code=smart_code)


def compile_rule(rule: PostingRule, layer: str) -> CompiledRule:
    def _compile(source: Optional[str], field: str) -> Optional[Expression]:
        if source is None or not source.strip():
            return None
        try:
            return compile_expression(source)
        except ExpressionError as e:
            raise ExpressionError(
                f"Rule {rule.smart_code}: invalid {field} expression: {e.message}",
                expression=source,
            )

    return CompiledRule(
        rule=rule,
        layer=layer,
        auto_post_if=_compile(rule.outcomes.auto_post_if, "auto_post_if"),
        approval_required_if=_compile(rule.outcomes.approval_required_if, "approval_required_if"),
    )


class PostingRuleRegistry:
    """Read-only rule lookup for one organization."""

    def __init__(self, rules: Dict[str, CompiledRule], industry: str = "universal"):
        self._rules = dict(rules)
        self.industry = industry

    @classmethod
    def build(
        cls,
        industry: str = "universal",
        overrides: Optional[Iterable[RuleDefinition]] = None,
        universal: Optional[Iterable[RuleDefinition]] = None,
        industry_defaults: Optional[Iterable[RuleDefinition]] = None,
    ) -> "PostingRuleRegistry":
        """
        Merge the three layers, lowest priority first.

        Args:
            industry: selects the industry default rule set
            overrides: organization-specific rules (highest priority)
            universal: replaces the built-in universal rule set (tests)
            industry_defaults: replaces the built-in industry rule set (tests)
        """
        layers = [
            ("universal", UNIVERSAL_RULES if universal is None else universal),
            ("industry", industry_rules(industry) if industry_defaults is None else industry_defaults),
            ("organization", overrides or []),
        ]

        merged: Dict[str, CompiledRule] = {}
        for layer, definitions in layers:
            for definition in definitions:
                rule = parse_rule(definition)
                if rule.smart_code in merged:
                    logger.debug(f"{layer} rule replaces {merged[rule.smart_code].layer} rule for {rule.smart_code}")
                merged[rule.smart_code] = compile_rule(rule, layer)

        logger.info(f"Posting rule registry built for industry '{industry}': {len(merged)} rules")
        return cls(merged, industry=industry)

    def get_rule(self, smart_code: str) -> PostingRule:
        """Raises UnknownSmartCodeError when nothing in any layer matches exactly."""
        return self.get_compiled(smart_code).rule

    def get_compiled(self, smart_code: str) -> CompiledRule:
        compiled = self._rules.get(smart_code)
        if compiled is None:
            raise UnknownSmartCodeError(smart_code)
        return compiled

    def has_rule(self, smart_code: str) -> bool:
        return smart_code in self._rules

    def smart_codes(self) -> List[str]:
        return sorted(self._rules)

    def modules(self) -> List[str]:
        """Owning modules (smart code segment 2) of every rule in the registry."""
        found = set()
        for smart_code in self._rules:
            segments = smart_code.split(".")
            if len(segments) > 2:
                found.add(segments[2].upper())
        return sorted(found)

    def __len__(self) -> int:
        return len(self._rules)
