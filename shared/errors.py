from __future__ import annotations


class PlanningError(Exception):
    """Base class for hard failures raised by the planning/control core."""


class InvalidInputError(PlanningError, ValueError):
    """Malformed caller input (NaN boundary state, degenerate path, ...)."""


class NoPlanError(InvalidInputError):
    """Centerline too short to anchor a cost field."""


class ConfigurationError(PlanningError, ValueError):
    """Configuration rejected at startup."""


class CallSequenceError(PlanningError, RuntimeError):
    """Operation invoked before its prerequisite (e.g. build_path before optimize)."""
