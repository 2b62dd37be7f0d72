"""Errors that end an estimation. The orchestrator turns them into a failed outcome."""


class EstimationError(Exception):
    """Base class for fatal estimation failures."""


class EstimationInputError(EstimationError):
    """The project input failed validation."""


class CatalogError(EstimationError):
    """The catalog could not be loaded or contains malformed rows."""
