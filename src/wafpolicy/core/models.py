"""Core data models for wafpolicy.

A compiled policy is built entirely from frozen dataclasses and tuples so it
cannot change after the assembler hands it back. Rule statements are a tagged
variant: each statement kind carries only the fields it needs and they meet in
one place, ``Rule.to_dict``, when the flat rule list is emitted.
"""

from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union


class Scope(str, Enum):
    """Firewall scope."""

    REGIONAL = "REGIONAL"
    EDGE = "CLOUDFRONT"


class DefaultAction(str, Enum):
    """Action taken when no rule matches."""

    ALLOW = "ALLOW"
    BLOCK = "BLOCK"


class RuleAction(str, Enum):
    """Terminating or counting action of a rule."""

    ALLOW = "ALLOW"
    BLOCK = "BLOCK"
    COUNT = "COUNT"


class OverrideAction(str, Enum):
    """Override applied to a rule group reference."""

    NONE = "NONE"  # the group's own rule actions apply
    COUNT = "COUNT"


class IpVersion(str, Enum):
    """IP address family of an IP set."""

    IPV4 = "IPV4"
    IPV6 = "IPV6"


class RateAggregation(str, Enum):
    """Aggregation key of a rate-based rule."""

    FORWARDED_IP = "FORWARDED_IP"
    SOURCE_IP = "IP"


class FallbackBehavior(str, Enum):
    """Outcome when the forwarded IP header is missing or malformed."""

    MATCH = "MATCH"
    NO_MATCH = "NO_MATCH"


class MatchField(str, Enum):
    """Request component inspected by a regex set reference."""

    URI_PATH = "uri_path"
    SINGLE_HEADER = "single_header"


class RemovalPolicy(str, Enum):
    """What happens to the log group when the stack is removed."""

    RETAIN = "RETAIN"
    DESTROY = "DESTROY"


class RuleCategory(str, Enum):
    """Priority band a rule belongs to."""

    PRE_CUSTOM = "pre-custom"
    BLOCK_V4 = "block-v4"
    BLOCK_V6 = "block-v6"
    ALLOW_PATH = "allow-path"
    ALLOW_V4 = "allow-v4"
    ALLOW_V6 = "allow-v6"
    ALLOW_UA = "allow-ua"
    MANAGED = "managed"
    RATE_LIMIT = "rate-limit"
    POST_CUSTOM = "post-custom"


FORWARDED_IP_HEADER = "X-Forwarded-For"


@dataclass(frozen=True)
class IpSet:
    """An IP set shared by every rule that references it."""

    logical_id: str
    version: IpVersion
    addresses: tuple[str, ...]
    description: str = ""


@dataclass(frozen=True)
class RegexSet:
    """A regex pattern set shared by every rule that references it."""

    logical_id: str
    patterns: tuple[str, ...]
    description: str = ""


BackingSet = Union[IpSet, RegexSet]
ArnResolver = Callable[[BackingSet], Any]


def logical_id_reference(resource: BackingSet) -> str:
    """Default resolver: reference a backing set by its logical ID."""
    return resource.logical_id


@dataclass(frozen=True)
class ForwardedIpConfig:
    """Where to read the client address when requests arrive via a proxy."""

    fallback: FallbackBehavior
    header_name: str = FORWARDED_IP_HEADER
    position: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "HeaderName": self.header_name,
            "FallbackBehavior": self.fallback.value,
        }
        if self.position is not None:
            data["Position"] = self.position
        return data


@dataclass(frozen=True)
class IpSetReferenceStatement:
    """Match requests whose address is in an IP set."""

    kind: ClassVar[str] = "ip_set"

    ip_set: IpSet
    forwarded_ip: ForwardedIpConfig | None = None

    def references(self) -> tuple[BackingSet, ...]:
        return (self.ip_set,)

    def to_dict(self, resolve: ArnResolver) -> dict[str, Any]:
        body: dict[str, Any] = {"Arn": resolve(self.ip_set)}
        if self.forwarded_ip is not None:
            body["IPSetForwardedIPConfig"] = self.forwarded_ip.to_dict()
        return {"IPSetReferenceStatement": body}


@dataclass(frozen=True)
class RegexSetReferenceStatement:
    """Match a request component against a regex pattern set."""

    kind: ClassVar[str] = "regex_set"

    regex_set: RegexSet
    field_to_match: MatchField
    header_name: str | None = None

    def references(self) -> tuple[BackingSet, ...]:
        return (self.regex_set,)

    def to_dict(self, resolve: ArnResolver) -> dict[str, Any]:
        if self.field_to_match == MatchField.SINGLE_HEADER:
            field_to_match: dict[str, Any] = {"SingleHeader": {"Name": self.header_name}}
        else:
            field_to_match = {"UriPath": {}}
        return {
            "RegexPatternSetReferenceStatement": {
                "Arn": resolve(self.regex_set),
                "FieldToMatch": field_to_match,
                "TextTransformations": [{"Priority": 0, "Type": "NONE"}],
            }
        }


@dataclass(frozen=True)
class ManagedRuleGroupStatement:
    """Reference a vendor-curated managed rule group by name."""

    kind: ClassVar[str] = "managed_group"

    group_name: str
    vendor_name: str = "AWS"
    excluded_rules: tuple[str, ...] = ()

    def references(self) -> tuple[BackingSet, ...]:
        return ()

    def to_dict(self, resolve: ArnResolver) -> dict[str, Any]:
        return {
            "ManagedRuleGroupStatement": {
                "Name": self.group_name,
                "VendorName": self.vendor_name,
                "ExcludedRules": [{"Name": name} for name in self.excluded_rules],
            }
        }


@dataclass(frozen=True)
class RateBasedStatement:
    """Rate-based statement keyed on the client address."""

    kind: ClassVar[str] = "rate_based"

    limit: int
    aggregation: RateAggregation = RateAggregation.FORWARDED_IP
    forwarded_ip: ForwardedIpConfig | None = None

    def references(self) -> tuple[BackingSet, ...]:
        return ()

    def to_dict(self, resolve: ArnResolver) -> dict[str, Any]:
        body: dict[str, Any] = {
            "AggregateKeyType": self.aggregation.value,
            "Limit": self.limit,
        }
        if self.forwarded_ip is not None:
            body["ForwardedIPConfig"] = self.forwarded_ip.to_dict()
        return {"RateBasedStatement": body}


class FrozenMapping(Mapping[str, Any]):
    """Read-only, hashable mapping."""

    __slots__ = ("_data", "_hash")

    def __init__(self, items: Iterable[tuple[str, Any]] = ()) -> None:
        self._data = dict(items)
        self._hash: int | None = None

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._data.items()))
        return self._hash

    def __repr__(self) -> str:
        return f"FrozenMapping({self._data!r})"


def freeze(value: Any) -> Any:
    """Recursively turn mappings into FrozenMapping and lists into tuples."""
    if isinstance(value, Mapping):
        return FrozenMapping((key, freeze(item)) for key, item in value.items())
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze: fresh dicts and lists the caller may modify."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


@dataclass(frozen=True)
class CustomStatement:
    """Caller-supplied statement, emitted exactly as given.

    The body is frozen at every depth, so nothing reachable from a compiled
    policy can be mutated and rules holding a custom statement stay hashable.
    """

    kind: ClassVar[str] = "custom"

    body: Mapping[str, Any] = field(default_factory=FrozenMapping)

    def __post_init__(self) -> None:
        object.__setattr__(self, "body", freeze(self.body))

    @classmethod
    def from_mapping(cls, body: Mapping[str, Any]) -> "CustomStatement":
        """Detach the statement from the caller's mutable mapping."""
        return cls(body=body)

    def references(self) -> tuple[BackingSet, ...]:
        return ()

    def to_dict(self, resolve: ArnResolver) -> dict[str, Any]:
        return thaw(self.body)


Statement = Union[
    IpSetReferenceStatement,
    RegexSetReferenceStatement,
    ManagedRuleGroupStatement,
    RateBasedStatement,
    CustomStatement,
]


@dataclass(frozen=True)
class VisibilityConfig:
    """Metrics and sampling settings of a rule or web ACL."""

    metric_name: str
    cloudwatch_metrics_enabled: bool = True
    sampled_requests_enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "CloudWatchMetricsEnabled": self.cloudwatch_metrics_enabled,
            "MetricName": self.metric_name,
            "SampledRequestsEnabled": self.sampled_requests_enabled,
        }


@dataclass(frozen=True)
class Rule:
    """One named, prioritized match-and-act unit of a policy.

    Exactly one of ``action`` and ``override_action`` is set: managed rule
    group references carry an override, everything else an action.
    """

    name: str
    priority: int
    statement: Statement
    category: RuleCategory
    visibility: VisibilityConfig
    action: RuleAction | None = None
    override_action: OverrideAction | None = None
    mode_sensitive: bool = False

    def references(self) -> tuple[BackingSet, ...]:
        """Backing sets this rule points at."""
        return self.statement.references()

    def to_dict(self, resolve: ArnResolver = logical_id_reference) -> dict[str, Any]:
        """Emit the rule in the WAFv2 rule-list shape."""
        data: dict[str, Any] = {
            "Name": self.name,
            "Priority": self.priority,
            "Statement": self.statement.to_dict(resolve),
        }
        if self.action is not None:
            data["Action"] = {self.action.value.capitalize(): {}}
        if self.override_action is not None:
            data["OverrideAction"] = {self.override_action.value.capitalize(): {}}
        data["VisibilityConfig"] = self.visibility.to_dict()
        return data


@dataclass(frozen=True)
class LoggingSettings:
    """Log sink settings passed through to the provisioning layer."""

    enabled: bool = True
    retention_days: int = 365
    removal_policy: RemovalPolicy = RemovalPolicy.RETAIN

    def log_group_name(self, policy_name: str) -> str:
        # WAF only delivers to log groups with this prefix
        return f"aws-waf-logs-{policy_name}"


@dataclass(frozen=True)
class Policy:
    """A compiled firewall policy: ordered rules plus default action."""

    name: str
    scope: Scope
    default_action: DefaultAction
    enforce: bool
    rules: tuple[Rule, ...]
    logging_settings: LoggingSettings = field(default_factory=LoggingSettings)
    associations: tuple[str, ...] = ()
    visibility: VisibilityConfig = field(
        default_factory=lambda: VisibilityConfig(metric_name="WebAcl")
    )

    @property
    def priorities(self) -> list[int]:
        return [rule.priority for rule in self.rules]

    @property
    def rule_names(self) -> list[str]:
        return [rule.name for rule in self.rules]

    @property
    def ip_sets(self) -> list[IpSet]:
        """IP sets referenced by the policy, each listed once."""
        return [r for r in self._backing_sets() if isinstance(r, IpSet)]

    @property
    def regex_sets(self) -> list[RegexSet]:
        """Regex sets referenced by the policy, each listed once."""
        return [r for r in self._backing_sets() if isinstance(r, RegexSet)]

    def _backing_sets(self) -> list[BackingSet]:
        seen: dict[str, BackingSet] = {}
        for rule in self.rules:
            for resource in rule.references():
                seen.setdefault(resource.logical_id, resource)
        return list(seen.values())

    def get_rule(self, name: str) -> Rule | None:
        """Look up a rule by name."""
        for rule in self.rules:
            if rule.name == name:
                return rule
        return None

    def rules_in(self, category: RuleCategory) -> list[Rule]:
        """Rules belonging to one priority band."""
        return [rule for rule in self.rules if rule.category == category]

    def to_rules(self, resolve: ArnResolver = logical_id_reference) -> list[dict[str, Any]]:
        """Emit the ordered rule list in the WAFv2 shape."""
        return [rule.to_dict(resolve) for rule in self.rules]

    def to_dict(self, resolve: ArnResolver = logical_id_reference) -> dict[str, Any]:
        """Emit the web ACL properties in the WAFv2 shape."""
        return {
            "Name": self.name,
            "Scope": self.scope.value,
            "DefaultAction": {self.default_action.value.capitalize(): {}},
            "VisibilityConfig": self.visibility.to_dict(),
            "Rules": self.to_rules(resolve),
        }
