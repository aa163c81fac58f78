"""Policy assembler.

Runs the rule builders in band order, validates the combined rule list and
returns an immutable Policy. Compilation is all-or-nothing: any error
propagates to the caller and no partial policy is produced.
"""

from collections.abc import Sequence
from pathlib import Path
from typing import Optional

from wafpolicy.config import PolicyConfig, load_policy_config
from wafpolicy.core.models import LoggingSettings, Policy, Rule, RuleCategory
from wafpolicy.errors import (
    DuplicateNameError,
    DuplicatePriorityError,
    EmptyRequiredFieldError,
    InternalInvariantError,
)
from wafpolicy.utils.logging import get_logger
from wafpolicy.waf.bands import PriorityAllocator, band_for
from wafpolicy.waf.builders import (
    build_custom_rules,
    build_ip_list_rules,
    build_managed_group_rules,
    build_rate_limit_rules,
    build_regex_allowlist_rules,
    mode_action,
    mode_override,
)
from wafpolicy.waf.managed_groups import ManagedGroupRegistry

logger = get_logger(__name__)


class PolicyCompiler:
    """Compiles a PolicyConfig into a Policy.

    The compiler keeps no state between calls; the same configuration
    always yields the same policy, and instances may be shared across
    threads.
    """

    def __init__(self, registry: Optional[ManagedGroupRegistry] = None) -> None:
        """Initialize the compiler.

        Args:
            registry: Managed group registry (defaults to the built-in groups).
        """
        self._registry = registry

    def compile(self, config: PolicyConfig) -> Policy:
        """Compile a configuration.

        Args:
            config: Validated policy configuration.

        Returns:
            The compiled, validated policy.

        Raises:
            CompileError: If the configuration cannot be compiled.
        """
        name = config.name.strip()
        if not name:
            raise EmptyRequiredFieldError("name", hint="Every web ACL needs a name.")

        allocator = PriorityAllocator()
        rules: list[Rule] = []

        rules.extend(build_custom_rules(RuleCategory.PRE_CUSTOM, config.pre_rules, allocator))

        # Blocks before allows: overlapping ranges are blocked first
        rules.extend(build_ip_list_rules(RuleCategory.BLOCK_V4, config.blocked_ipv4, name, allocator))
        rules.extend(build_ip_list_rules(RuleCategory.BLOCK_V6, config.blocked_ipv6, name, allocator))

        rules.extend(
            build_regex_allowlist_rules(RuleCategory.ALLOW_PATH, config.allowed_paths, name, allocator)
        )
        rules.extend(build_ip_list_rules(RuleCategory.ALLOW_V4, config.allowed_ipv4, name, allocator))
        rules.extend(build_ip_list_rules(RuleCategory.ALLOW_V6, config.allowed_ipv6, name, allocator))
        rules.extend(
            build_regex_allowlist_rules(
                RuleCategory.ALLOW_UA, config.allowed_user_agents, name, allocator
            )
        )

        rules.extend(
            build_managed_group_rules(
                config.managed_groups,
                config.excluded_common_rules,
                config.enforce,
                allocator,
                registry=self._registry,
            )
        )
        rules.extend(build_rate_limit_rules(config.rate_limit, config.enforce, allocator))

        rules.extend(build_custom_rules(RuleCategory.POST_CUSTOM, config.post_rules, allocator))

        ordered = validate_rules(rules, config.enforce)

        policy = Policy(
            name=name,
            scope=config.scope,
            default_action=config.default_action,
            enforce=config.enforce,
            rules=ordered,
            logging_settings=LoggingSettings(
                enabled=config.logging.enabled,
                retention_days=config.logging.retention_days,
                removal_policy=config.logging.removal_policy,
            ),
            associations=tuple(config.associations),
        )

        logger.info(
            "Compiled policy %s: %d rules, %s mode",
            policy.name,
            len(policy.rules),
            "enforce" if policy.enforce else "observe",
        )
        return policy


def validate_rules(rules: Sequence[Rule], enforce: bool) -> tuple[Rule, ...]:
    """Validate a combined rule list and return it ordered by priority.

    Caller pre-rules share the 0-9 range with the blocklist bands, so the
    concatenated list is ordered by priority before the final check.

    Args:
        rules: Rules in builder order.
        enforce: Mode the rules were built for.

    Returns:
        Rules in strictly ascending priority order.

    Raises:
        DuplicateNameError: If two rules share a name.
        DuplicatePriorityError: If two rules share a priority.
        InternalInvariantError: If a builder broke a band or mode invariant.
    """
    seen_names: set[str] = set()
    for rule in rules:
        if rule.name in seen_names:
            raise DuplicateNameError(rule.name)
        seen_names.add(rule.name)

    by_priority: dict[int, list[str]] = {}
    for rule in rules:
        by_priority.setdefault(rule.priority, []).append(rule.name)
    for priority, names in by_priority.items():
        if len(names) > 1:
            raise DuplicatePriorityError(priority, names)

    expected_action = mode_action(enforce)
    expected_override = mode_override(enforce)
    for rule in rules:
        band = band_for(rule.category)
        if not band.contains(rule.priority):
            raise InternalInvariantError(
                f"Rule '{rule.name}' priority {rule.priority} is outside band "
                f"'{rule.category.value}' ({band.label()})"
            )
        if (rule.action is None) == (rule.override_action is None):
            raise InternalInvariantError(
                f"Rule '{rule.name}' must have exactly one of action or override action"
            )
        if rule.mode_sensitive:
            if rule.action is not None and rule.action != expected_action:
                raise InternalInvariantError(
                    f"Rule '{rule.name}' action {rule.action.value} does not match mode"
                )
            if rule.override_action is not None and rule.override_action != expected_override:
                raise InternalInvariantError(
                    f"Rule '{rule.name}' override {rule.override_action.value} does not match mode"
                )

    ordered = tuple(sorted(rules, key=lambda r: r.priority))
    for previous, current in zip(ordered, ordered[1:]):
        if current.priority <= previous.priority:
            raise InternalInvariantError(
                f"Rules '{previous.name}' and '{current.name}' are not in ascending priority order"
            )
    return ordered


def compile_policy(config: PolicyConfig) -> Policy:
    """Convenience function to compile a configuration.

    Args:
        config: Validated policy configuration.

    Returns:
        The compiled policy.
    """
    return PolicyCompiler().compile(config)


def compile_policy_file(config_path: Optional[Path] = None) -> Policy:
    """Load a configuration file and compile it.

    Args:
        config_path: Path to a YAML or JSON file (searches if not provided).

    Returns:
        The compiled policy.
    """
    return compile_policy(load_policy_config(config_path))
