"""Base policy renderer interface."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from wafpolicy.core.models import Policy


class RenderFormat(str, Enum):
    """Supported output formats."""

    JSON = "json"
    CLOUDFORMATION = "cloudformation"
    TERRAFORM = "terraform"


@dataclass
class RenderedFile:
    """A rendered output file."""

    filename: str
    content: str
    format: RenderFormat


class BasePolicyRenderer(ABC):
    """Base class for policy renderers.

    Renderers turn a compiled policy into documents for the provisioning
    layer. They never call the firewall service themselves.
    """

    render_format: RenderFormat

    @abstractmethod
    def render(self, policy: Policy) -> list[RenderedFile]:
        """Render a compiled policy.

        Args:
            policy: Compiled policy.

        Returns:
            Rendered files.
        """
        pass

    def write(self, files: list[RenderedFile], output_dir: Path) -> list[Path]:
        """Write rendered files to a directory.

        Args:
            files: Rendered files.
            output_dir: Target directory (created if missing).

        Returns:
            Paths of the written files.
        """
        output_dir.mkdir(parents=True, exist_ok=True)

        written: list[Path] = []
        for rendered in files:
            file_path = output_dir / rendered.filename
            file_path.write_text(rendered.content)
            written.append(file_path)
        return written

    def _sanitize_name(self, name: str) -> str:
        """Sanitize a name for use in resource identifiers.

        Args:
            name: Original name.

        Returns:
            Sanitized name.
        """
        sanitized = name.lower()
        sanitized = sanitized.replace(".", "-")
        sanitized = sanitized.replace("_", "-")
        sanitized = sanitized.replace(" ", "-")

        # Remove consecutive dashes
        while "--" in sanitized:
            sanitized = sanitized.replace("--", "-")

        return sanitized.strip("-")


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def camel_to_snake(name: str) -> str:
    """Convert a CamelCase identifier (``IPSetReferenceStatement``) to snake_case."""
    # IPv4/IPv6 stay one word
    name = re.sub(r"IPv([46])", r"Ipv\1", name)
    return _CAMEL_BOUNDARY.sub("_", name).lower()
