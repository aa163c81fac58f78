"""Plain JSON document of a compiled policy."""

import json
from typing import Any

from wafpolicy.core.models import Policy
from wafpolicy.waf.renderers.base import BasePolicyRenderer, RenderedFile, RenderFormat


class PolicyDocumentRenderer(BasePolicyRenderer):
    """Render the web ACL, its backing sets and pass-through settings as JSON.

    Backing sets are referenced by logical ID; the provisioning layer
    substitutes ARNs once the sets exist.
    """

    render_format = RenderFormat.JSON

    def render(self, policy: Policy) -> list[RenderedFile]:
        return [
            RenderedFile(
                filename="policy.json",
                content=json.dumps(self.to_document(policy), indent=2) + "\n",
                format=self.render_format,
            )
        ]

    def to_document(self, policy: Policy) -> dict[str, Any]:
        """Build the document as a dictionary."""
        settings = policy.logging_settings
        return {
            "WebACL": policy.to_dict(),
            "IPSets": [
                {
                    "LogicalId": ip_set.logical_id,
                    "IPAddressVersion": ip_set.version.value,
                    "Addresses": list(ip_set.addresses),
                    "Description": ip_set.description,
                }
                for ip_set in policy.ip_sets
            ],
            "RegexPatternSets": [
                {
                    "LogicalId": regex_set.logical_id,
                    "RegularExpressionList": list(regex_set.patterns),
                    "Description": regex_set.description,
                }
                for regex_set in policy.regex_sets
            ],
            "Logging": {
                "Enabled": settings.enabled,
                "LogGroupName": settings.log_group_name(policy.name),
                "RetentionInDays": settings.retention_days,
                "RemovalPolicy": settings.removal_policy.value,
            },
            "Associations": list(policy.associations),
        }
