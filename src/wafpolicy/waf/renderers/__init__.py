"""Policy renderers."""

from wafpolicy.waf.renderers.base import (
    BasePolicyRenderer,
    RenderedFile,
    RenderFormat,
    camel_to_snake,
)
from wafpolicy.waf.renderers.cloudformation import CloudFormationRenderer
from wafpolicy.waf.renderers.document import PolicyDocumentRenderer
from wafpolicy.waf.renderers.terraform import TerraformRenderer

_RENDERERS: dict[RenderFormat, type[BasePolicyRenderer]] = {
    RenderFormat.JSON: PolicyDocumentRenderer,
    RenderFormat.CLOUDFORMATION: CloudFormationRenderer,
    RenderFormat.TERRAFORM: TerraformRenderer,
}


def get_renderer(render_format: RenderFormat | str) -> BasePolicyRenderer:
    """Get a renderer for an output format.

    Args:
        render_format: Output format or its name.

    Returns:
        Renderer instance.

    Raises:
        ValueError: If the format is unknown.
    """
    return _RENDERERS[RenderFormat(render_format)]()


__all__ = [
    "BasePolicyRenderer",
    "CloudFormationRenderer",
    "PolicyDocumentRenderer",
    "RenderFormat",
    "RenderedFile",
    "TerraformRenderer",
    "camel_to_snake",
    "get_renderer",
]
