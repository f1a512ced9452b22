"""Shared exception hierarchy for the bonus engine."""

# ── Base ──────────────────────────────────────────────────────────────────────


class BonusEngineError(Exception):
    """Base exception for bonus engine errors."""


# ── Configuration (fatal: the catalog must be fixed before billing) ──────────


class ConfigurationError(BonusEngineError):
    """The bonus catalog is broken; no total may be produced."""


class CatalogError(ConfigurationError):
    """One or more bonus_master rows failed validation at load time."""

    def __init__(self, issues: list[str]) -> None:
        self.issues: list[str] = list(issues)
        summary: str = "; ".join(self.issues[:5])
        more: int = len(self.issues) - 5
        if more > 0:
            summary += f" (+{more} more)"
        super().__init__(f"Invalid bonus catalog: {summary}")


class UnknownPatternError(ConfigurationError):
    """A conditional_pattern is not one of the known strategies."""


class MissingPointsConfigError(ConfigurationError):
    """A points_config key required by the strategy is absent or malformed."""


class VersionSelectionError(ConfigurationError):
    """Zero or several versions of a code cover the visit date."""


# ── Data quality (never fatal: fail the rule closed and keep going) ──────────


class DataQualityError(BonusEngineError):
    """A fact required by a rule is missing or malformed for this visit."""
