"""AWS managed rule groups known to the compiler.

Each group has a fixed slot in the managed band, so the priority of a group
never depends on which other groups are enabled.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ManagedGroup:
    """A vendor-curated managed rule group."""

    key: str
    aws_name: str
    rule_name: str
    slot: int
    description: str
    mandatory: bool = False
    # Mandatory groups that never follow the observe/enforce toggle
    always_enforced: bool = False
    curated_exclusions: tuple[str, ...] = field(default_factory=tuple)
    vendor_name: str = "AWS"


class ManagedGroupRegistry:
    """Registry of managed rule groups, ordered by slot."""

    def __init__(self) -> None:
        """Initialize the registry with built-in groups."""
        self._groups: dict[str, ManagedGroup] = {}
        self._register_builtin_groups()

    def register(self, group: ManagedGroup) -> None:
        """Register a managed group.

        Args:
            group: Group to register.

        Raises:
            ValueError: If the key or slot is already taken.
        """
        if group.key in self._groups:
            raise ValueError(f"Managed group already registered: {group.key}")
        for existing in self._groups.values():
            if existing.slot == group.slot:
                raise ValueError(
                    f"Slot {group.slot} already used by managed group {existing.key}"
                )
        self._groups[group.key] = group

    def get(self, key: str) -> ManagedGroup | None:
        """Get a group by key (case-insensitive, '_' and '-' interchangeable)."""
        return self._groups.get(normalize_group_key(key))

    def get_all(self) -> list[ManagedGroup]:
        """Get all groups in slot order."""
        return sorted(self._groups.values(), key=lambda g: g.slot)

    def get_mandatory(self) -> list[ManagedGroup]:
        """Get the groups that are always part of a policy."""
        return [g for g in self.get_all() if g.mandatory]

    def keys(self) -> list[str]:
        return [g.key for g in self.get_all()]

    def _register_builtin_groups(self) -> None:
        self.register(
            ManagedGroup(
                key="bad-actors",
                aws_name="AWSManagedRulesKnownBadInputsRuleSet",
                rule_name="bad_actors_rule",
                slot=0,
                description="Request patterns known to be invalid and associated with exploitation",
                mandatory=True,
                always_enforced=True,
                curated_exclusions=(
                    "Host_localhost_HEADER",
                    "PROPFIND_METHOD",
                    "ExploitablePaths_URIPATH",
                ),
            )
        )
        self.register(
            ManagedGroup(
                key="common",
                aws_name="AWSManagedRulesCommonRuleSet",
                rule_name="common_rule_set",
                slot=1,
                description="General protection against common web exploits (OWASP)",
                mandatory=True,
            )
        )
        self.register(
            ManagedGroup(
                key="php",
                aws_name="AWSManagedRulesPHPRuleSet",
                rule_name="php_rule_set",
                slot=2,
                description="PHP-specific injection and exploitation patterns",
            )
        )
        self.register(
            ManagedGroup(
                key="ip-reputation",
                aws_name="AWSManagedRulesAmazonIpReputationList",
                rule_name="ip_reputation_list",
                slot=3,
                description="Addresses flagged by Amazon threat intelligence",
            )
        )
        self.register(
            ManagedGroup(
                key="anonymous-ip",
                aws_name="AWSManagedRulesAnonymousIpList",
                rule_name="anonymous_ip_list",
                slot=4,
                description="VPNs, proxies, Tor nodes and hosting providers",
            )
        )
        self.register(
            ManagedGroup(
                key="sql-injection",
                aws_name="AWSManagedRulesSQLiRuleSet",
                rule_name="sql_injection_rule_set",
                slot=5,
                description="SQL injection attacks",
            )
        )
        self.register(
            ManagedGroup(
                key="bot-control",
                aws_name="AWSManagedRulesBotControlRuleSet",
                rule_name="bot_control_rule_set",
                slot=6,
                description="Automated bot traffic (billed separately)",
            )
        )


def normalize_group_key(key: str) -> str:
    """Normalize a user-supplied group name to a registry key."""
    return key.strip().lower().replace("_", "-")


# Built at import time; compiles only read from it
_default_registry = ManagedGroupRegistry()


def get_default_registry() -> ManagedGroupRegistry:
    """Get the default managed group registry.

    Returns:
        Default ManagedGroupRegistry instance.
    """
    return _default_registry
