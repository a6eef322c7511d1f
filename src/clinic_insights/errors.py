from __future__ import annotations


class InsightsError(ValueError):
    """Base class for failures a widget can render as a degraded state."""


class InvalidWindowError(InsightsError):
    pass


class InvalidBinConfigurationError(InsightsError):
    pass
