"""Configuration management for wafpolicy."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from wafpolicy.core.models import (
    DefaultAction,
    OverrideAction,
    RateAggregation,
    RemovalPolicy,
    RuleAction,
    Scope,
)
from wafpolicy.errors import ConfigFileError
from wafpolicy.utils.logging import get_logger

logger = get_logger(__name__)

CONFIG_FILENAMES = (".wafpolicy.yml", ".wafpolicy.yaml")

# Retention periods accepted by CloudWatch Logs
LOG_RETENTION_DAYS = frozenset(
    {1, 3, 5, 7, 14, 30, 60, 90, 120, 150, 180, 365, 400, 545, 731,
     1096, 1827, 2192, 2557, 2922, 3288, 3653}
)


def _upper(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


class RateLimitConfig(BaseModel):
    """Configuration for the rate-based rule."""

    model_config = ConfigDict(extra="forbid")

    threshold: int = Field(
        ...,
        ge=10,
        le=2_000_000_000,
        description="Requests allowed per client in a five minute window",
    )
    aggregation: RateAggregation = Field(
        default=RateAggregation.FORWARDED_IP,
        description="Aggregate by forwarded IP header (FORWARDED_IP) or peer address (SOURCE_IP)",
    )

    @field_validator("aggregation", mode="before")
    @classmethod
    def normalize_aggregation(cls, v: Any) -> Any:
        """Accept SOURCE_IP as an alias of the wire value IP."""
        v = _upper(v)
        if v == "SOURCE_IP":
            return RateAggregation.SOURCE_IP
        return v


class ManagedGroupConfig(BaseModel):
    """Toggle for one managed rule group."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Group key, e.g. php, ip-reputation, bot-control")
    enabled: bool = Field(default=True, description="Include the group in the policy")
    excluded_rules: list[str] = Field(
        default_factory=list,
        description="Rules of the group to exclude",
    )


class CustomRuleConfig(BaseModel):
    """A caller-built rule inserted before or after the generated rules."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., description="Unique rule name")
    priority: int = Field(..., description="Rule priority within its open band")
    statement: dict[str, Any] = Field(
        ...,
        description="WAFv2 statement, passed through unchanged",
    )
    action: RuleAction | None = Field(default=None, description="ALLOW, BLOCK or COUNT")
    override_action: OverrideAction | None = Field(
        default=None,
        description="NONE or COUNT, for rule group references",
    )
    metric_name: str | None = Field(default=None, description="Defaults to the rule name")
    cloudwatch_metrics_enabled: bool = True
    sampled_requests_enabled: bool = True

    @field_validator("action", "override_action", mode="before")
    @classmethod
    def normalize_action(cls, v: Any) -> Any:
        """Accept lowercase action names."""
        return _upper(v)

    @model_validator(mode="after")
    def check_single_action(self) -> "CustomRuleConfig":
        """Require exactly one of action and override_action."""
        if (self.action is None) == (self.override_action is None):
            raise ValueError(
                f"custom rule '{self.name}' must set exactly one of action or override_action"
            )
        return self


class LoggingConfig(BaseModel):
    """Log sink settings, passed through to the provisioning layer."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True, description="Send WAF logs to CloudWatch")
    retention_days: int = Field(default=365, description="Log retention in days")
    removal_policy: RemovalPolicy = Field(
        default=RemovalPolicy.RETAIN,
        description="RETAIN or DESTROY the log group on stack removal",
    )

    @field_validator("retention_days")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        """Validate retention against the periods CloudWatch supports."""
        if v not in LOG_RETENTION_DAYS:
            raise ValueError(f"retention_days must be one of: {sorted(LOG_RETENTION_DAYS)}")
        return v

    @field_validator("removal_policy", mode="before")
    @classmethod
    def normalize_removal_policy(cls, v: Any) -> Any:
        """Accept lowercase removal policies."""
        return _upper(v)


class PolicyConfig(BaseModel):
    """Declarative firewall policy configuration.

    Feature sub-configs left unset (None) disable the feature. An explicit
    empty list still enables it with a zero-match backing set.
    """

    model_config = ConfigDict(extra="forbid")

    version: int = Field(default=1, description="Configuration file version")
    name: str = Field(..., description="Web ACL name, unique within its scope")
    scope: Scope = Field(default=Scope.REGIONAL, description="REGIONAL or EDGE (CloudFront)")
    default_action: DefaultAction = Field(
        default=DefaultAction.ALLOW,
        description="Action when no rule matches",
    )
    enforce: bool = Field(
        default=False,
        description="Block with mode-sensitive rules (true) or only count (false)",
    )

    blocked_ipv4: list[str] | None = Field(default=None, description="IPv4 CIDRs to block")
    blocked_ipv6: list[str] | None = Field(default=None, description="IPv6 CIDRs to block")
    allowed_ipv4: list[str] | None = Field(default=None, description="IPv4 CIDRs to allow")
    allowed_ipv6: list[str] | None = Field(default=None, description="IPv6 CIDRs to allow")
    allowed_paths: list[str] | None = Field(
        default=None,
        description="URI path regexes to allow",
    )
    allowed_user_agents: list[str] | None = Field(
        default=None,
        description="User-Agent regexes to allow",
    )

    managed_groups: list[ManagedGroupConfig] = Field(
        default_factory=list,
        description="Optional managed rule groups and per-group exclusions",
    )
    excluded_common_rules: list[str] = Field(
        default_factory=list,
        description="Rules to exclude from the common rule set",
    )
    rate_limit: RateLimitConfig | None = Field(default=None)

    pre_rules: list[CustomRuleConfig] = Field(default_factory=list)
    post_rules: list[CustomRuleConfig] = Field(default_factory=list)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    associations: list[str] = Field(
        default_factory=list,
        description="ARNs of load balancers or APIs to associate",
    )

    @field_validator("scope", mode="before")
    @classmethod
    def normalize_scope(cls, v: Any) -> Any:
        """Accept EDGE as an alias of CLOUDFRONT."""
        v = _upper(v)
        if v == "EDGE":
            return Scope.EDGE
        return v

    @field_validator("default_action", mode="before")
    @classmethod
    def normalize_default_action(cls, v: Any) -> Any:
        """Accept lowercase default actions."""
        return _upper(v)


def find_config_file(start_path: Path | None = None) -> Path | None:
    """Find the nearest .wafpolicy.yml configuration file.

    Searches from start_path up to the root directory.

    Args:
        start_path: Starting directory for search (defaults to cwd).

    Returns:
        Path to config file if found, None otherwise.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        for filename in CONFIG_FILENAMES:
            config_path = current / filename
            if config_path.exists():
                return config_path

        current = current.parent

    return None


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ConfigFileError(
        message=f"Environment variable {name} must be a boolean, got {value!r}",
        hint="Use true/false, yes/no, on/off or 1/0.",
    )


def load_policy_config(
    config_path: Path | None = None,
    env_prefix: str = "WAFPOLICY_",
) -> PolicyConfig:
    """Load a policy configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables (ENFORCE, SCOPE)
    2. Config file
    3. Defaults

    Args:
        config_path: Path to a YAML or JSON file (searches if not provided).
        env_prefix: Prefix for environment variables.

    Returns:
        Loaded configuration.

    Raises:
        ConfigFileError: If no file is found or the file is invalid.
    """
    if config_path is None:
        config_path = find_config_file()

    if config_path is None or not config_path.exists():
        raise ConfigFileError(
            str(config_path or ""),
            message="No policy configuration file found",
        )

    try:
        with open(config_path) as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigFileError(str(config_path), message=f"Failed to parse {config_path}: {e}") from e

    if not isinstance(config_data, dict):
        raise ConfigFileError(
            str(config_path),
            message=f"Configuration in {config_path} must be a mapping",
        )

    enforce = os.environ.get(f"{env_prefix}ENFORCE")
    if enforce is not None:
        config_data["enforce"] = _parse_bool(f"{env_prefix}ENFORCE", enforce)
        logger.debug("enforce overridden from environment: %s", config_data["enforce"])

    scope = os.environ.get(f"{env_prefix}SCOPE")
    if scope:
        config_data["scope"] = scope
        logger.debug("scope overridden from environment: %s", scope)

    try:
        return PolicyConfig.model_validate(config_data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigFileError(
            str(config_path),
            message=f"Invalid configuration in {config_path}: {problems}",
        ) from e


def generate_example_config() -> str:
    """Generate an example configuration file.

    Returns:
        YAML string of example configuration.
    """
    example = """# wafpolicy configuration

version: 1

# Web ACL name, unique within its scope
name: my-app-waf

# REGIONAL (load balancers, API gateways) or EDGE (CloudFront)
scope: REGIONAL

# Action when no rule matches: ALLOW or BLOCK
default_action: ALLOW

# false = count only (observe), true = block
enforce: false

# Leave a list out to disable the feature.
# An empty list still creates a zero-match IP or regex set.
blocked_ipv4:
  - 192.0.2.0/24
# blocked_ipv6: []
# allowed_ipv4: []
# allowed_ipv6: []

allowed_paths:
  - ^/health$

# allowed_user_agents:
#   - ^Amazon-Route53-Health-Check-Service

# bad-actors and common are always enabled.
# Optional: php, ip-reputation, anonymous-ip, sql-injection, bot-control
managed_groups:
  - name: sql-injection
  - name: ip-reputation

excluded_common_rules:
  - SizeRestrictions_BODY

rate_limit:
  threshold: 2000
  aggregation: FORWARDED_IP  # or SOURCE_IP

# Custom rules: pre_rules use priorities 0 or 5-9, post_rules above 30
# pre_rules:
#   - name: allow_office
#     priority: 5
#     action: ALLOW
#     statement:
#       IPSetReferenceStatement:
#         Arn: arn:aws:wafv2:...

logging:
  enabled: true
  retention_days: 365
  removal_policy: RETAIN

# associations:
#   - arn:aws:elasticloadbalancing:...
"""
    return example
