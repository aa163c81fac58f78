"""Core module containing the compiled policy data model."""

from wafpolicy.core.models import (
    CustomStatement,
    DefaultAction,
    IpSet,
    IpSetReferenceStatement,
    IpVersion,
    LoggingSettings,
    ManagedRuleGroupStatement,
    OverrideAction,
    Policy,
    RateAggregation,
    RateBasedStatement,
    RegexSet,
    RegexSetReferenceStatement,
    RemovalPolicy,
    Rule,
    RuleAction,
    RuleCategory,
    Scope,
    VisibilityConfig,
)

__all__ = [
    "CustomStatement",
    "DefaultAction",
    "IpSet",
    "IpSetReferenceStatement",
    "IpVersion",
    "LoggingSettings",
    "ManagedRuleGroupStatement",
    "OverrideAction",
    "Policy",
    "RateAggregation",
    "RateBasedStatement",
    "RegexSet",
    "RegexSetReferenceStatement",
    "RemovalPolicy",
    "Rule",
    "RuleAction",
    "RuleCategory",
    "Scope",
    "VisibilityConfig",
]
