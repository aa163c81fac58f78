"""Rule builders.

One builder per feature category. Each takes its slice of the policy
configuration plus the compilation's allocator and returns zero or more
rules. ``None`` disables a feature; an empty list enables it with a
zero-match backing set.

Mode-sensitive builders receive ``enforce`` as an explicit argument.
"""

import ipaddress
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from wafpolicy.config import CustomRuleConfig, ManagedGroupConfig, RateLimitConfig
from wafpolicy.core.models import (
    CustomStatement,
    FallbackBehavior,
    ForwardedIpConfig,
    IpSet,
    IpSetReferenceStatement,
    IpVersion,
    ManagedRuleGroupStatement,
    MatchField,
    OverrideAction,
    RateAggregation,
    RateBasedStatement,
    RegexSet,
    RegexSetReferenceStatement,
    Rule,
    RuleAction,
    RuleCategory,
    VisibilityConfig,
)
from wafpolicy.errors import (
    EmptyRequiredFieldError,
    InvalidAddressError,
    InvalidPatternError,
    MandatoryGroupError,
)
from wafpolicy.utils.logging import get_logger
from wafpolicy.waf.bands import PriorityAllocator
from wafpolicy.waf.managed_groups import ManagedGroupRegistry, get_default_registry

logger = get_logger(__name__)

# WAFv2 limit on a single regex in a pattern set
MAX_PATTERN_LENGTH = 200

FORWARDED_POSITION = "ANY"
USER_AGENT_HEADER = "User-Agent"
RATE_LIMIT_RULE = "rate_limit_rule"


def mode_action(enforce: bool) -> RuleAction:
    """Action of mode-sensitive rules for the given mode."""
    return RuleAction.BLOCK if enforce else RuleAction.COUNT


def mode_override(enforce: bool) -> OverrideAction:
    """Override of mode-sensitive managed groups for the given mode."""
    return OverrideAction.NONE if enforce else OverrideAction.COUNT


@dataclass(frozen=True)
class IpListDefinition:
    """Naming and behavior of one IP list feature."""

    field: str
    version: IpVersion
    action: RuleAction
    logical_id: str
    description: str
    forwarded_rule: str
    forwarded_metric: str
    source_rule: str
    source_metric: str


IP_LISTS: dict[RuleCategory, IpListDefinition] = {
    RuleCategory.BLOCK_V4: IpListDefinition(
        field="blocked_ipv4",
        version=IpVersion.IPV4,
        action=RuleAction.BLOCK,
        logical_id="BlockedIPSetIPv4",
        description="{name} - Blocked IPv4 addresses",
        forwarded_rule="block_xff_ip_rule_v4",
        forwarded_metric="BlockXFFIPRuleV4",
        source_rule="block_src_ip_rule_v4",
        source_metric="BlockSrcIPRuleV4",
    ),
    RuleCategory.BLOCK_V6: IpListDefinition(
        field="blocked_ipv6",
        version=IpVersion.IPV6,
        action=RuleAction.BLOCK,
        logical_id="BlockedIPSetIPv6",
        description="{name} - Blocked IPv6 addresses",
        forwarded_rule="block_xff_ip_rule_v6",
        forwarded_metric="BlockXFFIPRuleV6",
        source_rule="block_src_ip_rule_v6",
        source_metric="BlockSrcIPRuleV6",
    ),
    RuleCategory.ALLOW_V4: IpListDefinition(
        field="allowed_ipv4",
        version=IpVersion.IPV4,
        action=RuleAction.ALLOW,
        logical_id="AllowedIPSetIPv4",
        description="{name} - Allowed IPv4 addresses",
        forwarded_rule="allow_xff_ip_rule",
        forwarded_metric="AllowXFFIPRule",
        source_rule="allow_src_ip_rule",
        source_metric="AllowSrcIPRule",
    ),
    RuleCategory.ALLOW_V6: IpListDefinition(
        field="allowed_ipv6",
        version=IpVersion.IPV6,
        action=RuleAction.ALLOW,
        logical_id="AllowedIPSetIPv6",
        description="{name} - Allowed IPv6 addresses",
        forwarded_rule="allow_xff_ip_rule_ipv6",
        forwarded_metric="AllowXFFIPRuleV6",
        source_rule="allow_src_ip_rule_ipv6",
        source_metric="AllowSrcIPRuleV6",
    ),
}


@dataclass(frozen=True)
class RegexListDefinition:
    """Naming and behavior of one regex allowlist feature."""

    field: str
    logical_id: str
    description: str
    field_to_match: MatchField
    header_name: str | None
    rule_name: str
    metric_name: str


REGEX_LISTS: dict[RuleCategory, RegexListDefinition] = {
    RuleCategory.ALLOW_PATH: RegexListDefinition(
        field="allowed_paths",
        logical_id="AllowedPathSet",
        description="{name} - Allowed URI paths",
        field_to_match=MatchField.URI_PATH,
        header_name=None,
        rule_name="allow_path_rule",
        metric_name="AllowPathRule",
    ),
    RuleCategory.ALLOW_UA: RegexListDefinition(
        field="allowed_user_agents",
        logical_id="AllowedUserAgentSet",
        description="{name} - Allowed user agents",
        field_to_match=MatchField.SINGLE_HEADER,
        header_name=USER_AGENT_HEADER,
        rule_name="allow_user_agent_rule",
        metric_name="AllowUserAgentRule",
    ),
}


def validate_addresses(field: str, addresses: Sequence[str], version: IpVersion) -> tuple[str, ...]:
    """Check that every entry is a CIDR block of the given IP version.

    Surrounding whitespace is stripped; host bits are kept as written since
    the firewall accepts them.

    Raises:
        InvalidAddressError: On the first invalid entry.
    """
    expected = 4 if version == IpVersion.IPV4 else 6
    validated: list[str] = []
    for address in addresses:
        candidate = address.strip()
        if "/" not in candidate:
            raise InvalidAddressError(field, address, "missing CIDR prefix length")
        try:
            network = ipaddress.ip_network(candidate, strict=False)
        except ValueError as e:
            raise InvalidAddressError(field, address, str(e)) from e
        if network.version != expected:
            raise InvalidAddressError(field, address, f"expected an IPv{expected} network")
        validated.append(candidate)
    return tuple(validated)


def validate_patterns(field: str, patterns: Sequence[str]) -> tuple[str, ...]:
    """Check that every pattern is usable in a regex pattern set.

    Raises:
        InvalidPatternError: On the first invalid pattern.
    """
    for pattern in patterns:
        if not pattern:
            raise InvalidPatternError(field, pattern, "pattern is empty")
        if len(pattern) > MAX_PATTERN_LENGTH:
            raise InvalidPatternError(
                field, pattern, f"longer than {MAX_PATTERN_LENGTH} characters"
            )
        try:
            re.compile(pattern)
        except re.error as e:
            raise InvalidPatternError(field, pattern, str(e)) from e
    return tuple(patterns)


def build_ip_list_rules(
    category: RuleCategory,
    addresses: Sequence[str] | None,
    policy_name: str,
    allocator: PriorityAllocator,
) -> list[Rule]:
    """Build the forwarded-header and source-address rules of an IP list.

    Both rules reference the same IP set.

    Args:
        category: One of the block/allow v4/v6 categories.
        addresses: CIDR blocks, or None when the feature is disabled.
        policy_name: Name of the policy, used in the set description.
        allocator: The compilation's priority allocator.

    Returns:
        Two rules, or an empty list when disabled.
    """
    if addresses is None:
        return []

    definition = IP_LISTS[category]
    validated = validate_addresses(definition.field, addresses, definition.version)
    if not validated:
        logger.warning("%s is empty; creating a zero-match IP set", definition.field)

    ip_set = IpSet(
        logical_id=definition.logical_id,
        version=definition.version,
        addresses=validated,
        description=definition.description.format(name=policy_name),
    )
    forwarded_priority, source_priority = allocator.allocate(category, 2)

    rules = [
        Rule(
            name=definition.forwarded_rule,
            priority=forwarded_priority,
            statement=IpSetReferenceStatement(
                ip_set=ip_set,
                forwarded_ip=ForwardedIpConfig(
                    fallback=FallbackBehavior.NO_MATCH,
                    position=FORWARDED_POSITION,
                ),
            ),
            category=category,
            visibility=VisibilityConfig(metric_name=definition.forwarded_metric),
            action=definition.action,
        ),
        Rule(
            name=definition.source_rule,
            priority=source_priority,
            statement=IpSetReferenceStatement(ip_set=ip_set),
            category=category,
            visibility=VisibilityConfig(metric_name=definition.source_metric),
            action=definition.action,
        ),
    ]
    logger.debug("Built %d %s rules for %d addresses", len(rules), category.value, len(validated))
    return rules


def build_regex_allowlist_rules(
    category: RuleCategory,
    patterns: Sequence[str] | None,
    policy_name: str,
    allocator: PriorityAllocator,
) -> list[Rule]:
    """Build the ALLOW rule of the path or user-agent allowlist.

    Args:
        category: ``ALLOW_PATH`` or ``ALLOW_UA``.
        patterns: Regex patterns, or None when the feature is disabled.
        policy_name: Name of the policy, used in the set description.
        allocator: The compilation's priority allocator.

    Returns:
        One rule, or an empty list when disabled.
    """
    if patterns is None:
        return []

    definition = REGEX_LISTS[category]
    validated = validate_patterns(definition.field, patterns)
    if not validated:
        logger.warning("%s is empty; creating a zero-match regex set", definition.field)

    regex_set = RegexSet(
        logical_id=definition.logical_id,
        patterns=validated,
        description=definition.description.format(name=policy_name),
    )
    (priority,) = allocator.allocate(category, 1)

    logger.debug("Built %s rule for %d patterns", category.value, len(validated))
    return [
        Rule(
            name=definition.rule_name,
            priority=priority,
            statement=RegexSetReferenceStatement(
                regex_set=regex_set,
                field_to_match=definition.field_to_match,
                header_name=definition.header_name,
            ),
            category=category,
            visibility=VisibilityConfig(metric_name=definition.metric_name),
            action=RuleAction.ALLOW,
        )
    ]


def _unique(names: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(names))


def build_managed_group_rules(
    groups: Sequence[ManagedGroupConfig],
    excluded_common_rules: Sequence[str],
    enforce: bool,
    allocator: PriorityAllocator,
    registry: ManagedGroupRegistry | None = None,
) -> list[Rule]:
    """Build one rule per enabled managed rule group, in slot order.

    Mandatory groups are always included. Toggles are applied in order, so
    a later toggle for the same group wins; exclusions accumulate.

    Args:
        groups: Managed group toggles from the configuration.
        excluded_common_rules: Exclusions for the common rule set.
        enforce: True for enforce mode, False for observe mode.
        allocator: The compilation's priority allocator.
        registry: Group registry (defaults to the built-in groups).

    Returns:
        Managed group rules ordered by priority.

    Raises:
        EmptyRequiredFieldError: If a toggle names an unknown group.
        MandatoryGroupError: If a toggle disables a mandatory group.
    """
    registry = registry or get_default_registry()

    exclusions: dict[str, list[str]] = {g.key: [] for g in registry.get_mandatory()}
    for index, toggle in enumerate(groups):
        group = registry.get(toggle.name)
        if group is None:
            raise EmptyRequiredFieldError(
                f"managed_groups[{index}].name",
                message=f"Unknown managed rule group '{toggle.name}'",
                hint=f"Known groups: {', '.join(registry.keys())}",
            )
        if not toggle.enabled:
            if group.mandatory:
                raise MandatoryGroupError(group.key)
            exclusions.pop(group.key, None)
            continue
        exclusions.setdefault(group.key, []).extend(toggle.excluded_rules)

    if "common" in exclusions:
        exclusions["common"] = list(excluded_common_rules) + exclusions["common"]

    rules: list[Rule] = []
    for group in registry.get_all():
        if group.key not in exclusions:
            continue

        priority = allocator.slot(RuleCategory.MANAGED, group.slot)
        if group.always_enforced:
            override = OverrideAction.NONE
        else:
            override = mode_override(enforce)

        rules.append(
            Rule(
                name=group.rule_name,
                priority=priority,
                statement=ManagedRuleGroupStatement(
                    group_name=group.aws_name,
                    vendor_name=group.vendor_name,
                    excluded_rules=_unique(
                        list(group.curated_exclusions) + exclusions[group.key]
                    ),
                ),
                category=RuleCategory.MANAGED,
                visibility=VisibilityConfig(metric_name=group.rule_name),
                override_action=override,
                mode_sensitive=not group.always_enforced,
            )
        )

    logger.debug("Built %d managed group rules", len(rules))
    return rules


def build_rate_limit_rules(
    rate_limit: RateLimitConfig | None,
    enforce: bool,
    allocator: PriorityAllocator,
) -> list[Rule]:
    """Build the rate-based rule.

    Forwarded-IP aggregation falls back to matching (and so to per-source
    counting) when the header is absent.

    Args:
        rate_limit: Rate limit settings, or None when disabled.
        enforce: True for enforce mode, False for observe mode.
        allocator: The compilation's priority allocator.

    Returns:
        One rule, or an empty list when disabled.
    """
    if rate_limit is None:
        return []

    if rate_limit.aggregation == RateAggregation.FORWARDED_IP:
        forwarded = ForwardedIpConfig(fallback=FallbackBehavior.MATCH)
    else:
        forwarded = None

    (priority,) = allocator.allocate(RuleCategory.RATE_LIMIT, 1)
    return [
        Rule(
            name=RATE_LIMIT_RULE,
            priority=priority,
            statement=RateBasedStatement(
                limit=rate_limit.threshold,
                aggregation=rate_limit.aggregation,
                forwarded_ip=forwarded,
            ),
            category=RuleCategory.RATE_LIMIT,
            visibility=VisibilityConfig(metric_name=RATE_LIMIT_RULE),
            action=mode_action(enforce),
            mode_sensitive=True,
        )
    ]


def build_custom_rules(
    category: RuleCategory,
    rules: Sequence[CustomRuleConfig],
    allocator: PriorityAllocator,
) -> list[Rule]:
    """Pass caller-built rules through after checking their priorities.

    Args:
        category: ``PRE_CUSTOM`` or ``POST_CUSTOM``.
        rules: Custom rules from the configuration.
        allocator: The compilation's priority allocator.

    Returns:
        The custom rules, in the order given.

    Raises:
        EmptyRequiredFieldError: If a rule has a blank name or empty statement.
        PriorityCollisionError: If a priority is outside the open band.
    """
    field = "pre_rules" if category == RuleCategory.PRE_CUSTOM else "post_rules"

    built: list[Rule] = []
    for index, custom in enumerate(rules):
        if not custom.name.strip():
            raise EmptyRequiredFieldError(f"{field}[{index}].name")
        if not custom.statement:
            raise EmptyRequiredFieldError(f"{field}[{index}].statement")

        priority = allocator.claim_custom(category, custom.priority, custom.name)
        built.append(
            Rule(
                name=custom.name,
                priority=priority,
                statement=CustomStatement.from_mapping(custom.statement),
                category=category,
                visibility=VisibilityConfig(
                    metric_name=custom.metric_name or custom.name,
                    cloudwatch_metrics_enabled=custom.cloudwatch_metrics_enabled,
                    sampled_requests_enabled=custom.sampled_requests_enabled,
                ),
                action=custom.action,
                override_action=custom.override_action,
            )
        )
    return built
