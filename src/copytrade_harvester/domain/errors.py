"""Error taxonomy for the domain layer."""


class HarvesterError(Exception):
    """Base exception for all harvester domain errors."""


class ValidationError(HarvesterError, ValueError):
    """Raised when required input is missing or malformed at construction time."""


class StateConflict(HarvesterError):
    """Raised when an operation is not allowed in the aggregate's current state."""
