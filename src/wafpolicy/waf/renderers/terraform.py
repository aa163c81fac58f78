"""AWS WAFv2 Terraform generation."""

import re
from typing import Any

from wafpolicy.core.models import (
    BackingSet,
    CustomStatement,
    IpSet,
    IpSetReferenceStatement,
    ManagedRuleGroupStatement,
    MatchField,
    Policy,
    RateBasedStatement,
    RegexSetReferenceStatement,
    RemovalPolicy,
    Rule,
    Statement,
    VisibilityConfig,
)
from wafpolicy.waf.renderers.base import (
    BasePolicyRenderer,
    RenderedFile,
    RenderFormat,
    camel_to_snake,
)


_LABEL_INVALID = re.compile(r"[^a-z0-9_]")


class TerraformRenderer(BasePolicyRenderer):
    """Render a compiled policy as Terraform for the AWS provider."""

    render_format = RenderFormat.TERRAFORM

    def render(self, policy: Policy) -> list[RenderedFile]:
        return [
            RenderedFile("main.tf", self._generate_main_config(policy), self.render_format),
            RenderedFile("variables.tf", self._generate_variables(), self.render_format),
            RenderedFile("outputs.tf", self._generate_outputs(policy), self.render_format),
        ]

    def _acl_label(self, policy: Policy) -> str:
        """Resource label of the web ACL; labels must start with a letter."""
        label = _LABEL_INVALID.sub("", self._sanitize_name(policy.name).replace("-", "_"))
        if not label[:1].isalpha():
            label = f"waf_{label}"
        return label

    def _resource_address(self, resource: BackingSet) -> str:
        kind = "aws_wafv2_ip_set" if isinstance(resource, IpSet) else "aws_wafv2_regex_pattern_set"
        return f"{kind}.{camel_to_snake(resource.logical_id)}"

    def _escape_hcl_string(self, value: str) -> str:
        """Escape a string for HCL, including template sequences."""
        return (
            value.replace("\\", "\\\\")
            .replace('"', '\\"')
            .replace("${", "$${")
            .replace("%{", "%%{")
        )

    def _quote(self, value: str) -> str:
        return f'"{self._escape_hcl_string(value)}"'

    def _string_list(self, values: tuple[str, ...]) -> str:
        if not values:
            return "[]"
        items = "\n".join(f"    {self._quote(v)}," for v in values)
        return f"[\n{items}\n  ]"

    def _generate_main_config(self, policy: Policy) -> str:
        """Generate main Terraform configuration."""
        provider_hcl = '''terraform {
  required_providers {
    aws = {
      source  = "hashicorp/aws"
      version = "~> 5.0"
    }
  }
}

provider "aws" {
  region = var.aws_region
}
'''
        sections = [provider_hcl]
        sections.extend(self._generate_ip_set(ip_set, policy) for ip_set in policy.ip_sets)
        sections.extend(
            f'''resource "aws_wafv2_regex_pattern_set" "{camel_to_snake(regex_set.logical_id)}" {{
  name        = {self._quote(f"{policy.name}-{self._sanitize_name(regex_set.logical_id)}")}
  description = {self._quote(regex_set.description)}
  scope       = "{policy.scope.value}"
{self._generate_regular_expressions(regex_set.patterns)}
}}
'''
            for regex_set in policy.regex_sets
        )
        sections.append(self._generate_web_acl(policy))
        sections.extend(self._generate_associations(policy))
        if policy.logging_settings.enabled:
            sections.append(self._generate_logging(policy))

        return "\n".join(sections)

    def _generate_ip_set(self, ip_set: IpSet, policy: Policy) -> str:
        return f'''resource "aws_wafv2_ip_set" "{camel_to_snake(ip_set.logical_id)}" {{
  name               = {self._quote(f"{policy.name}-{self._sanitize_name(ip_set.logical_id)}")}
  description        = {self._quote(ip_set.description)}
  scope              = "{policy.scope.value}"
  ip_address_version = "{ip_set.version.value}"
  addresses          = {self._string_list(ip_set.addresses)}
}}
'''

    def _generate_regular_expressions(self, patterns: tuple[str, ...]) -> str:
        return "\n".join(
            f"\n  regular_expression {{\n    regex_string = {self._quote(p)}\n  }}"
            for p in patterns
        )

    def _generate_web_acl(self, policy: Policy) -> str:
        label = self._acl_label(policy)
        default_action = policy.default_action.value.lower()
        rules_hcl = "\n".join(self.generate_rule(rule) for rule in policy.rules)

        return f'''resource "aws_wafv2_web_acl" "{label}" {{
  name  = {self._quote(policy.name)}
  scope = "{policy.scope.value}"

  default_action {{
    {default_action} {{}}
  }}
{rules_hcl}
{self._generate_visibility(policy.visibility, indent="  ")}
}}
'''

    def generate_rule(self, rule: Rule) -> str:
        """Generate the rule block of a single rule."""
        if rule.override_action is not None:
            action_hcl = f'''    override_action {{
      {rule.override_action.value.lower()} {{}}
    }}'''
        else:
            action_hcl = f'''    action {{
      {rule.action.value.lower()} {{}}
    }}'''

        statement_hcl = self._generate_statement(rule.statement, indent="      ")

        return f'''
  rule {{
    name     = {self._quote(rule.name)}
    priority = {rule.priority}

{action_hcl}

    statement {{
{statement_hcl}
    }}

{self._generate_visibility(rule.visibility, indent="    ")}
  }}'''

    def _generate_visibility(self, visibility: VisibilityConfig, indent: str) -> str:
        metrics = str(visibility.cloudwatch_metrics_enabled).lower()
        sampled = str(visibility.sampled_requests_enabled).lower()
        return (
            f"{indent}visibility_config {{\n"
            f"{indent}  cloudwatch_metrics_enabled = {metrics}\n"
            f"{indent}  metric_name                = {self._quote(visibility.metric_name)}\n"
            f"{indent}  sampled_requests_enabled   = {sampled}\n"
            f"{indent}}}"
        )

    def _generate_statement(self, statement: Statement, indent: str) -> str:
        """Generate the body of a statement block."""
        if isinstance(statement, IpSetReferenceStatement):
            return self._generate_ip_set_statement(statement, indent)
        if isinstance(statement, RegexSetReferenceStatement):
            return self._generate_regex_statement(statement, indent)
        if isinstance(statement, ManagedRuleGroupStatement):
            return self._generate_managed_statement(statement, indent)
        if isinstance(statement, RateBasedStatement):
            return self._generate_rate_statement(statement, indent)
        if isinstance(statement, CustomStatement):
            return self._generate_block_body(statement.to_dict(self._resource_reference), indent)
        raise TypeError(f"Unsupported statement type: {type(statement).__name__}")

    def _resource_reference(self, resource: BackingSet) -> str:
        return f"{self._resource_address(resource)}.arn"

    def _generate_ip_set_statement(self, statement: IpSetReferenceStatement, indent: str) -> str:
        lines = [
            f"{indent}ip_set_reference_statement {{",
            f"{indent}  arn = {self._resource_address(statement.ip_set)}.arn",
        ]
        forwarded = statement.forwarded_ip
        if forwarded is not None:
            lines += [
                "",
                f"{indent}  ip_set_forwarded_ip_config {{",
                f'{indent}    fallback_behavior = "{forwarded.fallback.value}"',
                f"{indent}    header_name       = {self._quote(forwarded.header_name)}",
                f'{indent}    position          = "{forwarded.position or "ANY"}"',
                f"{indent}  }}",
            ]
        lines.append(f"{indent}}}")
        return "\n".join(lines)

    def _generate_regex_statement(self, statement: RegexSetReferenceStatement, indent: str) -> str:
        if statement.field_to_match == MatchField.SINGLE_HEADER:
            # Terraform requires lowercase header names
            header = (statement.header_name or "").lower()
            field_hcl = [
                f"{indent}  field_to_match {{",
                f"{indent}    single_header {{",
                f"{indent}      name = {self._quote(header)}",
                f"{indent}    }}",
                f"{indent}  }}",
            ]
        else:
            field_hcl = [
                f"{indent}  field_to_match {{",
                f"{indent}    uri_path {{}}",
                f"{indent}  }}",
            ]

        return "\n".join(
            [
                f"{indent}regex_pattern_set_reference_statement {{",
                f"{indent}  arn = {self._resource_address(statement.regex_set)}.arn",
                "",
                *field_hcl,
                "",
                f"{indent}  text_transformation {{",
                f"{indent}    priority = 0",
                f'{indent}    type     = "NONE"',
                f"{indent}  }}",
                f"{indent}}}",
            ]
        )

    def _generate_managed_statement(self, statement: ManagedRuleGroupStatement, indent: str) -> str:
        lines = [
            f"{indent}managed_rule_group_statement {{",
            f"{indent}  name        = {self._quote(statement.group_name)}",
            f"{indent}  vendor_name = {self._quote(statement.vendor_name)}",
        ]
        # Provider 5.x replaced excluded_rule with a count override per rule
        for excluded in statement.excluded_rules:
            lines += [
                "",
                f"{indent}  rule_action_override {{",
                f"{indent}    name = {self._quote(excluded)}",
                "",
                f"{indent}    action_to_use {{",
                f"{indent}      count {{}}",
                f"{indent}    }}",
                f"{indent}  }}",
            ]
        lines.append(f"{indent}}}")
        return "\n".join(lines)

    def _generate_rate_statement(self, statement: RateBasedStatement, indent: str) -> str:
        lines = [
            f"{indent}rate_based_statement {{",
            f"{indent}  limit              = {statement.limit}",
            f'{indent}  aggregate_key_type = "{statement.aggregation.value}"',
        ]
        forwarded = statement.forwarded_ip
        if forwarded is not None:
            lines += [
                "",
                f"{indent}  forwarded_ip_config {{",
                f'{indent}    fallback_behavior = "{forwarded.fallback.value}"',
                f"{indent}    header_name       = {self._quote(forwarded.header_name)}",
                f"{indent}  }}",
            ]
        lines.append(f"{indent}}}")
        return "\n".join(lines)

    def _generate_block_body(self, body: dict[str, Any], indent: str) -> str:
        """Convert a WAFv2 JSON statement into nested HCL blocks.

        Nested objects become blocks, lists of objects become repeated
        blocks named in the singular, everything else an attribute.
        """
        lines: list[str] = []
        for key, value in body.items():
            name = camel_to_snake(key)
            if isinstance(value, dict):
                inner = self._generate_block_body(value, indent + "  ")
                if inner:
                    lines += [f"{indent}{name} {{", inner, f"{indent}}}"]
                else:
                    lines.append(f"{indent}{name} {{}}")
            elif isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
                block_name = name[:-1] if name.endswith("s") else name
                for item in value:
                    lines += [
                        f"{indent}{block_name} {{",
                        self._generate_block_body(item, indent + "  "),
                        f"{indent}}}",
                    ]
            else:
                lines.append(f"{indent}{name} = {self._hcl_value(value)}")
        return "\n".join(lines)

    def _hcl_value(self, value: Any) -> str:
        if isinstance(value, bool):
            return str(value).lower()
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, list):
            return "[" + ", ".join(self._hcl_value(v) for v in value) + "]"
        return self._quote(str(value))

    def _generate_associations(self, policy: Policy) -> list[str]:
        label = self._acl_label(policy)
        return [
            f'''resource "aws_wafv2_web_acl_association" "association_{index}" {{
  resource_arn = {self._quote(resource_arn)}
  web_acl_arn  = aws_wafv2_web_acl.{label}.arn
}}
'''
            for index, resource_arn in enumerate(policy.associations)
        ]

    def _generate_logging(self, policy: Policy) -> str:
        label = self._acl_label(policy)
        settings = policy.logging_settings
        lifecycle = ""
        if settings.removal_policy == RemovalPolicy.RETAIN:
            lifecycle = '''

  lifecycle {
    prevent_destroy = true
  }'''

        return f'''resource "aws_cloudwatch_log_group" "waf_logs" {{
  name              = {self._quote(settings.log_group_name(policy.name))}
  retention_in_days = {settings.retention_days}{lifecycle}
}}

resource "aws_wafv2_web_acl_logging_configuration" "waf_logs" {{
  log_destination_configs = [aws_cloudwatch_log_group.waf_logs.arn]
  resource_arn            = aws_wafv2_web_acl.{label}.arn
}}
'''

    def _generate_variables(self) -> str:
        """Generate Terraform variables."""
        return '''variable "aws_region" {
  description = "AWS region for WAF resources (us-east-1 for CLOUDFRONT scope)"
  type        = string
  default     = "us-east-1"
}
'''

    def _generate_outputs(self, policy: Policy) -> str:
        """Generate Terraform outputs."""
        label = self._acl_label(policy)
        outputs = [
            f'''output "web_acl_arn" {{
  description = "ARN of the WAF Web ACL"
  value       = aws_wafv2_web_acl.{label}.arn
}}
''',
            f'''output "web_acl_id" {{
  description = "ID of the WAF Web ACL"
  value       = aws_wafv2_web_acl.{label}.id
}}
''',
        ]
        for resource in [*policy.ip_sets, *policy.regex_sets]:
            outputs.append(
                f'''output "{camel_to_snake(resource.logical_id)}_arn" {{
  description = {self._quote(resource.description or resource.logical_id)}
  value       = {self._resource_address(resource)}.arn
}}
'''
            )
        return "\n".join(outputs)
