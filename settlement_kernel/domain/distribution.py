"""
Distribution modes -- which membership subset a share is computed from.

Responsibility:
    Defines the closed set of distribution modes and the share rule each
    one carries as data.  Engines ask the rule what to do instead of
    branching on the mode, so a new mode is a new enum member plus one
    entry in ``_SHARE_RULES``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

    POOLED        tolerated-subset units only (legacy codes SMOOTHED,
                  TOLERATED).  Falls back to the total share when the
                  subset is empty.
    PROPORTIONAL  all member units of the facility.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ShareBasis(str, Enum):
    """Which unit count a share percentage is taken from."""

    TOTAL = "total"
    SUBSET = "subset"

    @property
    def label(self) -> str:
        """Suffix of the human-readable basis text, e.g. "subset units"."""
        return f"{self.value} units"


@dataclass(frozen=True)
class ShareRule:
    """
    Share-selection rule of a distribution mode.

    Guarantees:
        - ``tracks_subset`` is True iff the resolver must count subset units.
        - ``basis`` names the percentage the allocation engine applies.
    """

    tracks_subset: bool
    basis: ShareBasis


class DistributionMode(str, Enum):
    """How a facility's pool is split across its beneficiaries."""

    POOLED = "pooled"
    PROPORTIONAL = "proportional"

    @property
    def rule(self) -> ShareRule:
        return _SHARE_RULES[self]

    @classmethod
    def parse(cls, code: str) -> DistributionMode:
        """
        Parse a stored mode code, accepting the legacy pooled aliases.

        Raises:
            ValueError: If the code names no known mode.
        """
        normalized = (code or "").strip().lower()
        if normalized in _LEGACY_ALIASES:
            return _LEGACY_ALIASES[normalized]
        return cls(normalized)


_SHARE_RULES: dict[DistributionMode, ShareRule] = {
    DistributionMode.POOLED: ShareRule(
        tracks_subset=True,
        basis=ShareBasis.SUBSET,
    ),
    DistributionMode.PROPORTIONAL: ShareRule(
        tracks_subset=False,
        basis=ShareBasis.TOTAL,
    ),
}

_LEGACY_ALIASES: dict[str, DistributionMode] = {
    "smoothed": DistributionMode.POOLED,
    "tolerated": DistributionMode.POOLED,
}
