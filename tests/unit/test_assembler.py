"""Tests for the policy assembler."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path

import pytest

from wafpolicy.config import PolicyConfig
from wafpolicy.core.models import (
    DefaultAction,
    OverrideAction,
    Policy,
    RuleAction,
    RuleCategory,
    Scope,
)
from wafpolicy.errors import (
    CompileError,
    DuplicateNameError,
    DuplicatePriorityError,
    EmptyRequiredFieldError,
    InternalInvariantError,
    PriorityCollisionError,
)
from wafpolicy.waf.assembler import (
    PolicyCompiler,
    compile_policy,
    compile_policy_file,
    validate_rules,
)
from wafpolicy.waf.bands import band_for


def _with(config: PolicyConfig, **updates: object) -> PolicyConfig:
    return PolicyConfig.model_validate({**config.model_dump(), **updates})


def _custom(name: str, priority: int) -> dict:
    return {
        "name": name,
        "priority": priority,
        "action": "BLOCK",
        "statement": {"GeoMatchStatement": {"CountryCodes": ["KP"]}},
    }


class TestScenarios:
    """End-to-end compilation scenarios."""

    def test_minimal_policy(self, minimal_config: PolicyConfig) -> None:
        """Test that a policy with no features holds the mandatory groups."""
        policy = compile_policy(minimal_config)

        assert policy.name == "acme"
        assert policy.scope == Scope.REGIONAL
        assert policy.default_action == DefaultAction.ALLOW
        assert [(r.name, r.priority, r.override_action) for r in policy.rules] == [
            ("bad_actors_rule", 20, OverrideAction.NONE),
            ("common_rule_set", 21, OverrideAction.COUNT),
        ]

    def test_blocked_ipv4(self, minimal_config: PolicyConfig) -> None:
        """Test that a blocklist adds two BLOCK rules sharing one IP set."""
        policy = compile_policy(_with(minimal_config, blocked_ipv4=["1.2.3.4/32"]))

        blocks = policy.rules_in(RuleCategory.BLOCK_V4)
        assert [r.priority for r in blocks] == [1, 2]
        assert all(r.action == RuleAction.BLOCK for r in blocks)
        assert len(policy.rules) == 4
        assert len(policy.ip_sets) == 1
        assert blocks[0].statement.ip_set is blocks[1].statement.ip_set

    def test_rate_limit_mode(self, minimal_config: PolicyConfig) -> None:
        """Test that enforcing changes only the rate rule's action."""
        config = _with(minimal_config, rate_limit={"threshold": 1000, "aggregation": "FORWARDED_IP"})
        observe = compile_policy(config)
        enforce = compile_policy(_with(config, enforce=True))

        observed = observe.get_rule("rate_limit_rule")
        enforced = enforce.get_rule("rate_limit_rule")
        assert observed.priority == 30
        assert observed.action == RuleAction.COUNT
        assert enforced.action == RuleAction.BLOCK
        assert replace(enforced, action=RuleAction.COUNT) == observed

    def test_pre_rule_first(self, minimal_config: PolicyConfig) -> None:
        """Test that a pre-rule is evaluated before everything else."""
        policy = compile_policy(_with(minimal_config, pre_rules=[_custom("custom", 5)]))

        assert policy.rules[0].name == "custom"
        assert policy.rules[0].priority == 5

    def test_pre_rule_collision(self, minimal_config: PolicyConfig) -> None:
        with pytest.raises(PriorityCollisionError):
            compile_policy(_with(minimal_config, pre_rules=[_custom("custom", 15)]))

    def test_duplicate_name(self, minimal_config: PolicyConfig) -> None:
        """Test two custom rules sharing a name."""
        config = _with(
            minimal_config,
            pre_rules=[_custom("custom", 5)],
            post_rules=[_custom("custom", 40)],
        )
        with pytest.raises(DuplicateNameError) as exc_info:
            compile_policy(config)

        assert exc_info.value.name == "custom"

    def test_duplicate_name_and_priority(self, minimal_config: PolicyConfig) -> None:
        """Test that a name clash is reported before a priority clash."""
        config = _with(minimal_config, pre_rules=[_custom("custom", 5), _custom("custom", 5)])
        with pytest.raises(DuplicateNameError):
            compile_policy(config)

    def test_name_clash_with_builtin_rule(self, minimal_config: PolicyConfig) -> None:
        with pytest.raises(DuplicateNameError):
            compile_policy(_with(minimal_config, post_rules=[_custom("common_rule_set", 31)]))

    def test_allowlists(self, minimal_config: PolicyConfig) -> None:
        """Test path and user-agent allowlists with their own regex sets."""
        policy = compile_policy(
            _with(minimal_config, allowed_paths=["^/health$"], allowed_user_agents=["^curl.*"])
        )

        assert policy.get_rule("allow_path_rule").priority == 10
        assert policy.get_rule("allow_user_agent_rule").priority == 15
        assert [s.logical_id for s in policy.regex_sets] == [
            "AllowedPathSet",
            "AllowedUserAgentSet",
        ]


class TestPolicyInvariants:
    """Properties that hold for every compiled policy."""

    def test_full_policy_order(self, full_policy: Policy) -> None:
        assert full_policy.priorities == [
            1, 2, 3, 4, 5, 10, 11, 12, 13, 14, 15,
            20, 21, 22, 23, 24, 25, 26, 30, 40,
        ]

    def test_strictly_ascending(self, full_policy: Policy) -> None:
        priorities = full_policy.priorities
        assert all(a < b for a, b in zip(priorities, priorities[1:]))

    def test_unique_names(self, full_policy: Policy) -> None:
        assert len(set(full_policy.rule_names)) == len(full_policy.rules)

    def test_band_containment(self, full_policy: Policy) -> None:
        for rule in full_policy.rules:
            assert band_for(rule.category).contains(rule.priority), rule.name

    def test_determinism(self, full_config: PolicyConfig) -> None:
        """Test that compiling twice gives identical output."""
        first = compile_policy(full_config)
        second = compile_policy(full_config)

        assert first == second
        assert first.to_dict() == second.to_dict()

    def test_concurrent_compiles(self, full_config: PolicyConfig) -> None:
        """Test that compiles running on several threads agree."""
        expected = compile_policy(full_config)

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda _: compile_policy(full_config), range(32)))

        assert all(result == expected for result in results)
        assert all(result.to_dict() == expected.to_dict() for result in results)

    def test_mode_flip_changes_only_mode_sensitive_rules(self, full_config: PolicyConfig) -> None:
        """Test that enforce only touches mode-sensitive actions."""
        observe = compile_policy(full_config)
        enforce = compile_policy(_with(full_config, enforce=True))

        assert observe.rule_names == enforce.rule_names
        assert observe.priorities == enforce.priorities
        for before, after in zip(observe.rules, enforce.rules):
            assert before.statement == after.statement
            if not before.mode_sensitive:
                assert before == after
                continue
            if before.override_action is not None:
                assert (before.override_action, after.override_action) == (
                    OverrideAction.COUNT,
                    OverrideAction.NONE,
                )
            else:
                assert (before.action, after.action) == (RuleAction.COUNT, RuleAction.BLOCK)

    def test_disabled_features_leave_bands_empty(self, minimal_config: PolicyConfig) -> None:
        policy = compile_policy(minimal_config)

        for category in RuleCategory:
            if category != RuleCategory.MANAGED:
                assert policy.rules_in(category) == []

    def test_ip_sets_listed_once(self, full_policy: Policy) -> None:
        assert [s.logical_id for s in full_policy.ip_sets] == [
            "BlockedIPSetIPv4",
            "BlockedIPSetIPv6",
            "AllowedIPSetIPv4",
            "AllowedIPSetIPv6",
        ]

    def test_empty_list_activates_feature(self, minimal_config: PolicyConfig) -> None:
        policy = compile_policy(_with(minimal_config, allowed_ipv6=[]))

        assert [r.priority for r in policy.rules_in(RuleCategory.ALLOW_V6)] == [13, 14]
        assert policy.ip_sets[0].addresses == ()

    def test_addresses_emitted_stripped(self, minimal_config: PolicyConfig) -> None:
        policy = compile_policy(_with(minimal_config, blocked_ipv4=[" 1.2.3.4/32"]))

        assert policy.ip_sets[0].addresses == ("1.2.3.4/32",)

    def test_passthrough_settings(self, full_policy: Policy) -> None:
        assert full_policy.logging_settings.retention_days == 90
        assert len(full_policy.associations) == 1


class TestCompilerErrors:
    """Tests for all-or-nothing failure."""

    def test_blank_name(self, minimal_config: PolicyConfig) -> None:
        with pytest.raises(EmptyRequiredFieldError):
            compile_policy(_with(minimal_config, name="  "))

    def test_errors_share_a_base(self, minimal_config: PolicyConfig) -> None:
        with pytest.raises(CompileError):
            compile_policy(_with(minimal_config, blocked_ipv6=["1.2.3.4/32"]))

    def test_compiler_is_reusable(self, minimal_config: PolicyConfig) -> None:
        """Test that a failed compile leaves no state behind."""
        compiler = PolicyCompiler()
        with pytest.raises(PriorityCollisionError):
            compiler.compile(_with(minimal_config, pre_rules=[_custom("x", 2)]))

        assert len(compiler.compile(minimal_config).rules) == 2

    def test_compile_policy_file(self, config_file: Path) -> None:
        policy = compile_policy_file(config_file)

        assert policy.priorities == [1, 2, 10, 20, 21, 30]


class TestValidateRules:
    """Tests for validate_rules on hand-made rule lists."""

    def test_sorts_by_priority(self, full_policy: Policy) -> None:
        shuffled = list(reversed(full_policy.rules))
        assert validate_rules(shuffled, full_policy.enforce) == full_policy.rules

    def test_duplicate_priority(self, full_policy: Policy) -> None:
        rules = list(full_policy.rules)
        rules[-1] = replace(rules[-1], priority=rules[-2].priority + 100)
        rules.append(replace(rules[-1], name="another"))

        with pytest.raises(DuplicatePriorityError) as exc_info:
            validate_rules(rules, full_policy.enforce)

        assert exc_info.value.rule_names == ["geo_block", "another"]

    def test_rule_outside_band(self, full_policy: Policy) -> None:
        rules = [replace(full_policy.get_rule("rate_limit_rule"), priority=29)]

        with pytest.raises(InternalInvariantError):
            validate_rules(rules, full_policy.enforce)

    def test_both_action_and_override(self, full_policy: Policy) -> None:
        rule = full_policy.get_rule("allow_path_rule")
        rules = [replace(rule, override_action=OverrideAction.NONE)]

        with pytest.raises(InternalInvariantError):
            validate_rules(rules, full_policy.enforce)

    def test_mode_mismatch(self, full_policy: Policy) -> None:
        rule = full_policy.get_rule("rate_limit_rule")

        with pytest.raises(InternalInvariantError):
            validate_rules([rule], enforce=True)
