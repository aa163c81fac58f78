"""Pytest configuration and fixtures for wafpolicy tests."""

import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

from wafpolicy.config import PolicyConfig
from wafpolicy.core.models import Policy
from wafpolicy.waf.assembler import compile_policy


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep WAFPOLICY_* overrides from the outer environment out of tests."""
    monkeypatch.delenv("WAFPOLICY_ENFORCE", raising=False)
    monkeypatch.delenv("WAFPOLICY_SCOPE", raising=False)


@pytest.fixture
def minimal_config() -> PolicyConfig:
    """Policy with every optional feature absent."""
    return PolicyConfig(name="acme", scope="REGIONAL", default_action="ALLOW", enforce=False)


@pytest.fixture
def full_config() -> PolicyConfig:
    """Policy with every feature enabled."""
    return PolicyConfig.model_validate(
        {
            "name": "acme",
            "enforce": False,
            "blocked_ipv4": ["1.2.3.4/32"],
            "blocked_ipv6": ["2001:db8:dead::/48"],
            "allowed_ipv4": ["10.0.0.0/8"],
            "allowed_ipv6": ["2001:db8::/32"],
            "allowed_paths": ["^/health$"],
            "allowed_user_agents": ["^curl.*"],
            "managed_groups": [
                {"name": "php"},
                {"name": "ip-reputation"},
                {"name": "anonymous-ip"},
                {"name": "sql-injection"},
                {"name": "bot-control"},
            ],
            "excluded_common_rules": ["SizeRestrictions_BODY"],
            "rate_limit": {"threshold": 1000, "aggregation": "FORWARDED_IP"},
            "pre_rules": [
                {
                    "name": "allow_office",
                    "priority": 5,
                    "action": "ALLOW",
                    "statement": {
                        "ByteMatchStatement": {
                            "SearchString": "office",
                            "FieldToMatch": {"SingleHeader": {"Name": "x-site"}},
                            "TextTransformations": [{"Priority": 0, "Type": "LOWERCASE"}],
                            "PositionalConstraint": "EXACTLY",
                        }
                    },
                }
            ],
            "post_rules": [
                {
                    "name": "geo_block",
                    "priority": 40,
                    "action": "BLOCK",
                    "statement": {"GeoMatchStatement": {"CountryCodes": ["KP"]}},
                }
            ],
            "logging": {"retention_days": 90, "removal_policy": "RETAIN"},
            "associations": [
                "arn:aws:elasticloadbalancing:us-east-1:123456789012:loadbalancer/app/web/abc"
            ],
        }
    )


@pytest.fixture
def full_policy(full_config: PolicyConfig) -> Policy:
    """Compiled policy with every feature enabled."""
    return compile_policy(full_config)


@pytest.fixture
def config_file(temp_dir: Path) -> Path:
    """Write a small policy configuration file."""
    path = temp_dir / ".wafpolicy.yml"
    path.write_text(
        """version: 1
name: acme
scope: REGIONAL
default_action: ALLOW
enforce: false
blocked_ipv4:
  - 1.2.3.4/32
allowed_paths:
  - ^/health$
rate_limit:
  threshold: 1000
"""
    )
    return path
