"""WAF policy compilation.

Components:
- bands: Priority band table and per-compile allocator
- managed_groups: Registry of AWS managed rule groups
- builders: One rule builder per feature category
- assembler: Runs the builders and validates the combined rule list
- renderers: JSON, CloudFormation and Terraform output
"""

from wafpolicy.waf.assembler import (
    PolicyCompiler,
    compile_policy,
    compile_policy_file,
    validate_rules,
)
from wafpolicy.waf.bands import (
    PRIORITY_BANDS,
    PriorityAllocator,
    PriorityBand,
    band_for,
)
from wafpolicy.waf.managed_groups import (
    ManagedGroup,
    ManagedGroupRegistry,
    get_default_registry,
)
from wafpolicy.waf.renderers import (
    CloudFormationRenderer,
    PolicyDocumentRenderer,
    RenderFormat,
    TerraformRenderer,
    get_renderer,
)

__all__ = [
    # Compiler
    "PolicyCompiler",
    "compile_policy",
    "compile_policy_file",
    "validate_rules",
    # Bands
    "PRIORITY_BANDS",
    "PriorityAllocator",
    "PriorityBand",
    "band_for",
    # Managed groups
    "ManagedGroup",
    "ManagedGroupRegistry",
    "get_default_registry",
    # Renderers
    "CloudFormationRenderer",
    "PolicyDocumentRenderer",
    "RenderFormat",
    "TerraformRenderer",
    "get_renderer",
]
