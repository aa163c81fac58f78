"""AWS CloudFormation template generation."""

import json
from typing import Any

from wafpolicy.core.models import BackingSet, Policy, RemovalPolicy
from wafpolicy.waf.renderers.base import BasePolicyRenderer, RenderedFile, RenderFormat

WEB_ACL_ID = "WebAcl"
LOG_GROUP_ID = "WafLogGroup"
LOGGING_CONFIGURATION_ID = "WafLoggingConfiguration"


def _arn_of(logical_id: str) -> dict[str, Any]:
    return {"Fn::GetAtt": [logical_id, "Arn"]}


def _resolve_arn(resource: BackingSet) -> dict[str, Any]:
    return _arn_of(resource.logical_id)


class CloudFormationRenderer(BasePolicyRenderer):
    """Render a compiled policy as a CloudFormation template."""

    render_format = RenderFormat.CLOUDFORMATION

    def render(self, policy: Policy) -> list[RenderedFile]:
        return [
            RenderedFile(
                filename="template.json",
                content=json.dumps(self.to_template(policy), indent=2) + "\n",
                format=self.render_format,
            )
        ]

    def to_template(self, policy: Policy) -> dict[str, Any]:
        """Build the template as a dictionary."""
        resources: dict[str, Any] = {}
        outputs: dict[str, Any] = {}

        for ip_set in policy.ip_sets:
            resources[ip_set.logical_id] = {
                "Type": "AWS::WAFv2::IPSet",
                "Properties": {
                    "Addresses": list(ip_set.addresses),
                    "IPAddressVersion": ip_set.version.value,
                    "Scope": policy.scope.value,
                    "Description": ip_set.description,
                },
            }
            outputs[f"{ip_set.logical_id}Arn"] = {"Value": _arn_of(ip_set.logical_id)}

        for regex_set in policy.regex_sets:
            resources[regex_set.logical_id] = {
                "Type": "AWS::WAFv2::RegexPatternSet",
                "Properties": {
                    "RegularExpressionList": list(regex_set.patterns),
                    "Scope": policy.scope.value,
                    "Description": regex_set.description,
                },
            }
            outputs[f"{regex_set.logical_id}Arn"] = {"Value": _arn_of(regex_set.logical_id)}

        resources[WEB_ACL_ID] = {
            "Type": "AWS::WAFv2::WebACL",
            "Properties": policy.to_dict(_resolve_arn),
        }
        outputs["WebAclArn"] = {"Value": _arn_of(WEB_ACL_ID)}
        outputs["WebAclId"] = {"Value": {"Fn::GetAtt": [WEB_ACL_ID, "Id"]}}

        for index, resource_arn in enumerate(policy.associations):
            resources[f"WebAclAssociation{index}"] = {
                "Type": "AWS::WAFv2::WebACLAssociation",
                "Properties": {
                    "ResourceArn": resource_arn,
                    "WebACLArn": _arn_of(WEB_ACL_ID),
                },
            }

        settings = policy.logging_settings
        if settings.enabled:
            log_group_name = settings.log_group_name(policy.name)
            deletion_policy = (
                "Retain" if settings.removal_policy == RemovalPolicy.RETAIN else "Delete"
            )
            resources[LOG_GROUP_ID] = {
                "Type": "AWS::Logs::LogGroup",
                "DeletionPolicy": deletion_policy,
                "UpdateReplacePolicy": deletion_policy,
                "Properties": {
                    "LogGroupName": log_group_name,
                    "RetentionInDays": settings.retention_days,
                },
            }
            # The log group's Arn attribute ends in ":*", which WAF rejects
            resources[LOGGING_CONFIGURATION_ID] = {
                "Type": "AWS::WAFv2::LoggingConfiguration",
                "DependsOn": [LOG_GROUP_ID],
                "Properties": {
                    "ResourceArn": _arn_of(WEB_ACL_ID),
                    "LogDestinationConfigs": [
                        {
                            "Fn::Sub": (
                                "arn:${AWS::Partition}:logs:${AWS::Region}:"
                                f"${{AWS::AccountId}}:log-group:{log_group_name}"
                            )
                        }
                    ],
                },
            }

        return {
            "AWSTemplateFormatVersion": "2010-09-09",
            "Description": f"Web ACL {policy.name}",
            "Resources": resources,
            "Outputs": outputs,
        }
