"""Priority bands.

Every rule category owns a fixed, contiguous range of priorities so that
features can be toggled independently without shifting each other. The
table below is a compatibility contract: deployed web ACLs depend on these
exact numbers.

Two bands are open: caller pre-rules live in the 0-9 range that also holds
the blocklist bands, and caller post-rules live above the rate limit.
"""

from dataclasses import dataclass

from wafpolicy.core.models import RuleCategory
from wafpolicy.errors import (
    BandExhaustedError,
    InternalInvariantError,
    PriorityCollisionError,
)
from wafpolicy.utils.logging import get_logger

logger = get_logger(__name__)

PRE_CUSTOM_LIMIT = 10  # pre-rules must be below this
POST_CUSTOM_FLOOR = 30  # post-rules must be above this


@dataclass(frozen=True)
class PriorityBand:
    """A reserved priority range for one rule category."""

    category: RuleCategory
    start: int
    end: int | None  # inclusive; None for the unbounded post-custom band
    description: str
    custom: bool = False

    @property
    def width(self) -> int | None:
        if self.end is None:
            return None
        return self.end - self.start + 1

    def contains(self, priority: int) -> bool:
        if priority < self.start:
            return False
        return self.end is None or priority <= self.end

    def label(self) -> str:
        if self.category == RuleCategory.PRE_CUSTOM:
            return f"< {PRE_CUSTOM_LIMIT}"
        if self.category == RuleCategory.POST_CUSTOM:
            return f"> {POST_CUSTOM_FLOOR}"
        if self.start == self.end:
            return str(self.start)
        return f"{self.start}-{self.end}"


PRIORITY_BANDS: tuple[PriorityBand, ...] = (
    PriorityBand(RuleCategory.PRE_CUSTOM, 0, PRE_CUSTOM_LIMIT - 1, "Caller pre-rules", custom=True),
    PriorityBand(RuleCategory.BLOCK_V4, 1, 2, "IPv4 blocklist (forwarded IP, source IP)"),
    PriorityBand(RuleCategory.BLOCK_V6, 3, 4, "IPv6 blocklist (forwarded IP, source IP)"),
    PriorityBand(RuleCategory.ALLOW_PATH, 10, 10, "Path allowlist"),
    PriorityBand(RuleCategory.ALLOW_V4, 11, 12, "IPv4 allowlist (forwarded IP, source IP)"),
    PriorityBand(RuleCategory.ALLOW_V6, 13, 14, "IPv6 allowlist (forwarded IP, source IP)"),
    PriorityBand(RuleCategory.ALLOW_UA, 15, 15, "User-agent allowlist"),
    PriorityBand(RuleCategory.MANAGED, 20, 26, "Managed rule groups"),
    PriorityBand(RuleCategory.RATE_LIMIT, 30, 30, "Rate-based rule"),
    PriorityBand(RuleCategory.POST_CUSTOM, POST_CUSTOM_FLOOR + 1, None, "Caller post-rules", custom=True),
)

_BANDS_BY_CATEGORY = {band.category: band for band in PRIORITY_BANDS}


def band_for(category: RuleCategory) -> PriorityBand:
    """Return the band reserved for a rule category."""
    return _BANDS_BY_CATEGORY[category]


def fixed_band_of(priority: int) -> PriorityBand | None:
    """Return the fixed (non-custom) band containing a priority, if any."""
    for band in PRIORITY_BANDS:
        if not band.custom and band.contains(priority):
            return band
    return None


class PriorityAllocator:
    """Hands out priorities for a single compilation.

    A new allocator is created for every compile, so it holds no state
    between policies.
    """

    def __init__(self) -> None:
        """Initialize an allocator with no claimed slots."""
        self._claimed: dict[int, RuleCategory] = {}

    def allocate(self, category: RuleCategory, count: int | None = None) -> tuple[int, ...]:
        """Claim the next free slots of a fixed band.

        Args:
            category: Fixed band to allocate from.
            count: Number of slots; defaults to the full band width.

        Returns:
            The claimed priorities in ascending order.

        Raises:
            BandExhaustedError: If the band has fewer free slots than requested.
        """
        band = self._fixed_band(category)
        width = band.width or 0
        if count is None:
            count = width

        free = [
            p for p in range(band.start, band.start + width)
            if p not in self._claimed
        ]
        if count > len(free):
            raise BandExhaustedError(category.value, count, len(free))

        claimed = tuple(free[:count])
        for priority in claimed:
            self._claimed[priority] = category
        logger.debug("Allocated %s in band %s", claimed, category.value)
        return claimed

    def slot(self, category: RuleCategory, offset: int) -> int:
        """Claim a fixed position inside a band.

        Args:
            category: Fixed band to allocate from.
            offset: Position relative to the start of the band.

        Returns:
            The claimed priority.

        Raises:
            BandExhaustedError: If the offset lies past the end of the band.
            InternalInvariantError: If the slot was already claimed.
        """
        band = self._fixed_band(category)
        width = band.width or 0
        if offset < 0 or offset >= width:
            raise BandExhaustedError(category.value, offset + 1, width)

        priority = band.start + offset
        if priority in self._claimed:
            raise InternalInvariantError(
                f"Priority {priority} in band '{category.value}' was allocated twice"
            )
        self._claimed[priority] = category
        return priority

    def claim_custom(self, category: RuleCategory, priority: int, rule_name: str) -> int:
        """Validate a caller-supplied priority for its position.

        Custom priorities are not recorded as claimed: two custom rules
        sharing a priority are reported by the assembler's duplicate check.

        Args:
            category: ``PRE_CUSTOM`` or ``POST_CUSTOM``.
            priority: Priority chosen by the caller.
            rule_name: Name of the custom rule, for error messages.

        Returns:
            The validated priority.

        Raises:
            PriorityCollisionError: If the priority is outside the open range
                or falls inside a reserved fixed band.
        """
        band = band_for(category)
        if not band.custom:
            raise InternalInvariantError(f"Band '{category.value}' does not accept custom rules")

        if priority < 0 or not band.contains(priority):
            raise PriorityCollisionError(rule_name, priority, category.value)

        # Blocklist bands sit inside the pre-custom range and stay reserved
        # even when no blocklist is configured.
        reserved = fixed_band_of(priority)
        if reserved is not None:
            raise PriorityCollisionError(
                rule_name,
                priority,
                category.value,
                message=(
                    f"Rule '{rule_name}' priority {priority} collides with "
                    f"reserved band '{reserved.category.value}' ({reserved.label()})"
                ),
            )
        return priority

    @staticmethod
    def _fixed_band(category: RuleCategory) -> PriorityBand:
        band = band_for(category)
        if band.custom:
            raise InternalInvariantError(f"Band '{category.value}' has no fixed slots")
        return band
