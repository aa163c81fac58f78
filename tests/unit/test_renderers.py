"""Tests for policy renderers."""

import json
from pathlib import Path

import pytest

from wafpolicy.config import PolicyConfig
from wafpolicy.core.models import Policy, RemovalPolicy
from wafpolicy.waf.assembler import compile_policy
from wafpolicy.waf.renderers import (
    CloudFormationRenderer,
    PolicyDocumentRenderer,
    RenderFormat,
    TerraformRenderer,
    camel_to_snake,
    get_renderer,
)


class TestGetRenderer:
    """Tests for the renderer factory."""

    @pytest.mark.parametrize(
        "name,renderer_type",
        [
            ("json", PolicyDocumentRenderer),
            ("cloudformation", CloudFormationRenderer),
            (RenderFormat.TERRAFORM, TerraformRenderer),
        ],
    )
    def test_known_formats(self, name: str, renderer_type: type) -> None:
        assert isinstance(get_renderer(name), renderer_type)

    def test_unknown_format(self) -> None:
        with pytest.raises(ValueError):
            get_renderer("pulumi")


class TestCamelToSnake:
    """Tests for camel_to_snake."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("IPSetReferenceStatement", "ip_set_reference_statement"),
            ("IPSetForwardedIPConfig", "ip_set_forwarded_ip_config"),
            ("BlockedIPSetIPv4", "blocked_ip_set_ipv4"),
            ("AllowedPathSet", "allowed_path_set"),
            ("CountryCodes", "country_codes"),
        ],
    )
    def test_conversion(self, name: str, expected: str) -> None:
        assert camel_to_snake(name) == expected


class TestPolicyDocumentRenderer:
    """Tests for the JSON document renderer."""

    def test_render(self, full_policy: Policy) -> None:
        (rendered,) = PolicyDocumentRenderer().render(full_policy)
        document = json.loads(rendered.content)

        assert rendered.filename == "policy.json"
        assert rendered.format == RenderFormat.JSON
        assert document["WebACL"]["Name"] == "acme"
        assert [r["Priority"] for r in document["WebACL"]["Rules"]] == full_policy.priorities
        assert len(document["IPSets"]) == 4
        assert document["RegexPatternSets"][0]["RegularExpressionList"] == ["^/health$"]
        assert document["Logging"] == {
            "Enabled": True,
            "LogGroupName": "aws-waf-logs-acme",
            "RetentionInDays": 90,
            "RemovalPolicy": "RETAIN",
        }

    def test_rules_reference_sets_by_logical_id(self, full_policy: Policy) -> None:
        document = PolicyDocumentRenderer().to_document(full_policy)
        rules = {r["Name"]: r for r in document["WebACL"]["Rules"]}

        arn = rules["allow_path_rule"]["Statement"]["RegexPatternSetReferenceStatement"]["Arn"]
        assert arn == "AllowedPathSet"

    def test_write(self, full_policy: Policy, temp_dir: Path) -> None:
        renderer = PolicyDocumentRenderer()
        written = renderer.write(renderer.render(full_policy), temp_dir / "out")

        assert written == [temp_dir / "out" / "policy.json"]
        assert json.loads(written[0].read_text())["WebACL"]["Scope"] == "REGIONAL"


class TestCloudFormationRenderer:
    """Tests for the CloudFormation renderer."""

    def test_resources(self, full_policy: Policy) -> None:
        template = CloudFormationRenderer().to_template(full_policy)
        resources = template["Resources"]

        assert resources["BlockedIPSetIPv4"]["Type"] == "AWS::WAFv2::IPSet"
        assert resources["BlockedIPSetIPv6"]["Properties"]["IPAddressVersion"] == "IPV6"
        assert resources["AllowedUserAgentSet"]["Type"] == "AWS::WAFv2::RegexPatternSet"
        assert resources["WebAcl"]["Type"] == "AWS::WAFv2::WebACL"
        assert resources["WebAclAssociation0"]["Properties"]["WebACLArn"] == {
            "Fn::GetAtt": ["WebAcl", "Arn"]
        }

    def test_rules_reference_sets_by_arn(self, full_policy: Policy) -> None:
        template = CloudFormationRenderer().to_template(full_policy)
        rules = template["Resources"]["WebAcl"]["Properties"]["Rules"]
        first = rules[0]["Statement"]["IPSetReferenceStatement"]

        assert first["Arn"] == {"Fn::GetAtt": ["BlockedIPSetIPv4", "Arn"]}

    def test_logging(self, full_policy: Policy) -> None:
        resources = CloudFormationRenderer().to_template(full_policy)["Resources"]

        log_group = resources["WafLogGroup"]
        assert log_group["DeletionPolicy"] == "Retain"
        assert log_group["Properties"] == {
            "LogGroupName": "aws-waf-logs-acme",
            "RetentionInDays": 90,
        }
        destination = resources["WafLoggingConfiguration"]["Properties"]["LogDestinationConfigs"][0]
        assert destination["Fn::Sub"] == (
            "arn:${AWS::Partition}:logs:${AWS::Region}:${AWS::AccountId}"
            ":log-group:aws-waf-logs-acme"
        )

    def test_logging_disabled(self, minimal_config: PolicyConfig) -> None:
        config = minimal_config.model_copy(
            update={"logging": minimal_config.logging.model_copy(update={"enabled": False})}
        )
        resources = CloudFormationRenderer().to_template(compile_policy(config))["Resources"]

        assert "WafLogGroup" not in resources
        assert "WafLoggingConfiguration" not in resources

    def test_outputs(self, full_policy: Policy) -> None:
        outputs = CloudFormationRenderer().to_template(full_policy)["Outputs"]

        assert "WebAclArn" in outputs
        assert "AllowedPathSetArn" in outputs
        assert "BlockedIPSetIPv4Arn" in outputs

    def test_render_is_json(self, full_policy: Policy) -> None:
        (rendered,) = CloudFormationRenderer().render(full_policy)

        assert rendered.filename == "template.json"
        assert json.loads(rendered.content)["AWSTemplateFormatVersion"] == "2010-09-09"


class TestTerraformRenderer:
    """Tests for the Terraform renderer."""

    @pytest.fixture
    def files(self, full_policy: Policy) -> dict[str, str]:
        return {f.filename: f.content for f in TerraformRenderer().render(full_policy)}

    def test_filenames(self, files: dict[str, str]) -> None:
        assert sorted(files) == ["main.tf", "outputs.tf", "variables.tf"]

    def test_provider(self, files: dict[str, str]) -> None:
        assert 'source  = "hashicorp/aws"' in files["main.tf"]
        assert 'version = "~> 5.0"' in files["main.tf"]
        assert 'variable "aws_region"' in files["variables.tf"]

    def test_backing_sets(self, files: dict[str, str]) -> None:
        main = files["main.tf"]

        assert 'resource "aws_wafv2_ip_set" "blocked_ip_set_ipv4"' in main
        assert 'ip_address_version = "IPV6"' in main
        assert 'resource "aws_wafv2_regex_pattern_set" "allowed_path_set"' in main
        assert 'regex_string = "^/health$"' in main

    def test_rules_in_priority_order(self, files: dict[str, str], full_policy: Policy) -> None:
        main = files["main.tf"]
        positions = [main.index(f'name     = "{name}"') for name in full_policy.rule_names]

        assert positions == sorted(positions)

    def test_ip_set_statement(self, files: dict[str, str]) -> None:
        main = files["main.tf"]

        assert "arn = aws_wafv2_ip_set.blocked_ip_set_ipv4.arn" in main
        assert "ip_set_forwarded_ip_config {" in main
        assert 'position          = "ANY"' in main

    def test_managed_group_exclusions(self, files: dict[str, str]) -> None:
        main = files["main.tf"]

        assert 'name        = "AWSManagedRulesCommonRuleSet"' in main
        assert "rule_action_override {" in main
        assert 'name = "SizeRestrictions_BODY"' in main
        assert "excluded_rule {" not in main

    def test_user_agent_header_lowercase(self, files: dict[str, str]) -> None:
        assert 'name = "user-agent"' in files["main.tf"]

    def test_rate_statement(self, files: dict[str, str]) -> None:
        main = files["main.tf"]

        assert "limit              = 1000" in main
        assert 'aggregate_key_type = "FORWARDED_IP"' in main
        assert 'fallback_behavior = "MATCH"' in main

    def test_custom_statement(self, files: dict[str, str]) -> None:
        """Test that caller statements become nested HCL blocks."""
        main = files["main.tf"]

        assert "geo_match_statement {" in main
        assert 'country_codes = ["KP"]' in main
        assert "byte_match_statement {" in main
        assert "text_transformation {" in main
        assert 'positional_constraint = "EXACTLY"' in main

    def test_actions(self, files: dict[str, str]) -> None:
        main = files["main.tf"]

        assert "override_action {\n      count {}" in main
        assert "override_action {\n      none {}" in main
        assert "action {\n      block {}" in main
        assert "default_action {\n    allow {}" in main

    def test_logging_retained(self, files: dict[str, str]) -> None:
        main = files["main.tf"]

        assert 'name              = "aws-waf-logs-acme"' in main
        assert "retention_in_days = 90" in main
        assert "prevent_destroy = true" in main
        assert "aws_wafv2_web_acl_logging_configuration" in main

    def test_logging_destroy(self, full_config: PolicyConfig) -> None:
        logging_config = full_config.logging.model_copy(
            update={"removal_policy": RemovalPolicy.DESTROY}
        )
        config = full_config.model_copy(update={"logging": logging_config})
        main = TerraformRenderer().render(compile_policy(config))[0].content

        assert "prevent_destroy" not in main

    def test_associations(self, files: dict[str, str]) -> None:
        assert 'resource "aws_wafv2_web_acl_association" "association_0"' in files["main.tf"]

    def test_outputs(self, files: dict[str, str]) -> None:
        outputs = files["outputs.tf"]

        assert "aws_wafv2_web_acl.acme.arn" in outputs
        assert 'output "allowed_user_agent_set_arn"' in outputs

    @pytest.mark.parametrize(
        "name,label",
        [
            ("acme", "acme"),
            ("shop-prod", "shop_prod"),
            ("1acme", "waf_1acme"),
            ("_edge", "edge"),
            ("api.v2+beta", "api_v2beta"),
        ],
    )
    def test_web_acl_label(self, minimal_config: PolicyConfig, name: str, label: str) -> None:
        """Test that the web ACL label is a valid Terraform identifier."""
        policy = compile_policy(minimal_config.model_copy(update={"name": name}))
        files = {f.filename: f.content for f in TerraformRenderer().render(policy)}

        assert f'resource "aws_wafv2_web_acl" "{label}" {{' in files["main.tf"]
        assert f"aws_wafv2_web_acl.{label}.arn" in files["outputs.tf"]

    def test_padded_addresses_rendered_stripped(self, minimal_config: PolicyConfig) -> None:
        config = minimal_config.model_copy(update={"blocked_ipv4": [" 1.2.3.4/32 "]})
        policy = compile_policy(config)
        main = TerraformRenderer().render(policy)[0].content
        document = PolicyDocumentRenderer().to_document(policy)

        assert '"1.2.3.4/32",' in main
        assert document["IPSets"][0]["Addresses"] == ["1.2.3.4/32"]

    def test_escape_hcl_string(self) -> None:
        renderer = TerraformRenderer()

        assert renderer._escape_hcl_string('a"b') == 'a\\"b'
        assert renderer._escape_hcl_string("^/${x}") == "^/$${x}"
        assert renderer._escape_hcl_string("\\d+") == "\\\\d+"
