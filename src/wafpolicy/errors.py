"""Custom exceptions for wafpolicy with user-friendly error messages."""



class WafPolicyError(Exception):
    """Base exception with user-friendly message and optional hint.

    Attributes:
        message: The main error message.
        hint: Optional hint for resolving the error.
    """

    def __init__(self, message: str, hint: str = "") -> None:
        """Initialize the exception.

        Args:
            message: The main error message.
            hint: Optional hint for resolving the error.
        """
        self.message = message
        self.hint = hint
        super().__init__(message)

    def __str__(self) -> str:
        """Return string representation."""
        if self.hint:
            return f"{self.message}\nHint: {self.hint}"
        return self.message


class ConfigFileError(WafPolicyError):
    """Configuration file could not be read, parsed or validated."""

    def __init__(
        self,
        path: str = "",
        message: str = "",
        hint: str = "",
    ) -> None:
        if not message:
            message = f"Invalid configuration file '{path}'" if path else "Invalid configuration file"
        if not hint:
            hint = "Run 'wafpolicy config init' for an annotated example."
        super().__init__(message, hint)


class CompileError(WafPolicyError):
    """Policy compilation failed. No partial policy is ever returned."""

    pass


class ConfigurationError(CompileError):
    """Malformed caller input detected at compile time."""

    pass


class InvalidPatternError(ConfigurationError):
    """A regex pattern cannot be used by the target matcher."""

    def __init__(
        self,
        field: str,
        pattern: str,
        reason: str = "",
        message: str = "",
        hint: str = "",
    ) -> None:
        self.field = field
        self.pattern = pattern
        if not message:
            message = f"Invalid pattern {pattern!r} in '{field}'"
            if reason:
                message += f": {reason}"
        if not hint:
            hint = "Patterns must be non-empty regular expressions of at most 200 characters."
        super().__init__(message, hint)


class InvalidAddressError(ConfigurationError):
    """An IP set entry is not a CIDR block of the expected IP version."""

    def __init__(
        self,
        field: str,
        address: str,
        reason: str = "",
        message: str = "",
        hint: str = "",
    ) -> None:
        self.field = field
        self.address = address
        if not message:
            message = f"Invalid address {address!r} in '{field}'"
            if reason:
                message += f": {reason}"
        if not hint:
            hint = "Use CIDR notation, e.g. 192.0.2.44/32 or 2001:db8::/32."
        super().__init__(message, hint)


class EmptyRequiredFieldError(ConfigurationError):
    """A required field is blank or references an unknown name."""

    def __init__(
        self,
        field: str,
        message: str = "",
        hint: str = "",
    ) -> None:
        self.field = field
        if not message:
            message = f"Required field '{field}' is empty"
        super().__init__(message, hint)


class MandatoryGroupError(ConfigurationError):
    """A mandatory managed rule group was explicitly disabled."""

    def __init__(
        self,
        group: str,
        message: str = "",
        hint: str = "",
    ) -> None:
        self.group = group
        if not message:
            message = f"Managed rule group '{group}' is mandatory and cannot be disabled"
        if not hint:
            hint = "Exclude individual rules with 'excluded_rules' instead."
        super().__init__(message, hint)


class PriorityCollisionError(ConfigurationError):
    """A custom rule priority lies outside its permitted range."""

    def __init__(
        self,
        rule_name: str,
        priority: int,
        band: str,
        message: str = "",
        hint: str = "",
    ) -> None:
        self.rule_name = rule_name
        self.priority = priority
        self.band = band
        if not message:
            message = f"Rule '{rule_name}' priority {priority} is not allowed in band '{band}'"
        if not hint:
            hint = "Pre-rules use priorities 0 or 5-9; post-rules use priorities above 30."
        super().__init__(message, hint)


class DuplicatePriorityError(ConfigurationError):
    """Two rules share a priority."""

    def __init__(
        self,
        priority: int,
        rule_names: list[str] | None = None,
        message: str = "",
        hint: str = "",
    ) -> None:
        self.priority = priority
        self.rule_names = rule_names or []
        if not message:
            message = f"Priority {priority} is used by more than one rule"
            if self.rule_names:
                message += f": {', '.join(self.rule_names)}"
        if not hint:
            hint = "Give every custom rule its own priority."
        super().__init__(message, hint)


class DuplicateNameError(ConfigurationError):
    """Two rules share a name."""

    def __init__(
        self,
        name: str,
        message: str = "",
        hint: str = "",
    ) -> None:
        self.name = name
        if not message:
            message = f"Rule name '{name}' is used by more than one rule"
        if not hint:
            hint = "Custom rules must not reuse each other's names or the built-in rule names."
        super().__init__(message, hint)


class BandExhaustedError(CompileError):
    """A priority band cannot fit the requested number of slots."""

    def __init__(
        self,
        band: str,
        requested: int,
        available: int,
        message: str = "",
        hint: str = "",
    ) -> None:
        self.band = band
        self.requested = requested
        self.available = available
        if not message:
            message = (
                f"Priority band '{band}' cannot fit {requested} rule(s); "
                f"{available} slot(s) available"
            )
        super().__init__(message, hint)


class InternalInvariantError(CompileError):
    """The allocator or assembler produced an inconsistent policy.

    This is a defect in wafpolicy, not in the caller's configuration.
    """

    def __init__(self, message: str, hint: str = "") -> None:
        if not hint:
            hint = "This is a bug in wafpolicy; please report it with your configuration."
        super().__init__(message, hint)
