"""
errors.py — Failure taxonomy surfaced to callers
=================================================
`changed` tells the caller whether anything was written before the
failure.  Every error here is raised before any write, except
EngineSyncFailed, which is only ever reported alongside a successful
Repository write (see ControlCoordinator.update_device).
"""

from typing import Optional


class CoordinatorError(Exception):
    """Base class for every failure returned to API callers."""
    status_code = 400
    changed = False

    def __init__(self, message: str, *, entity_id: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict:
        return {"error": self.name, "detail": self.message, "changed": self.changed}


class NotFound(CoordinatorError):
    status_code = 404


class ModelNotFound(NotFound):
    pass


class ValidationFailed(CoordinatorError):
    status_code = 422


class AlreadyTraining(CoordinatorError):
    status_code = 409


class NotTraining(CoordinatorError):
    status_code = 409


class EngineSyncFailed(CoordinatorError):
    status_code = 502
    changed = True


class SimulationFailed(CoordinatorError):
    status_code = 502


class PolicyUnavailable(CoordinatorError):
    status_code = 503


# ---------------------------------------------------------------------------
# Collaborator-side errors (translated by the services above)
# ---------------------------------------------------------------------------

class EngineError(Exception):
    """Raised by a HydraulicEngine implementation."""


class PolicyError(Exception):
    """Raised by a PolicyEngine implementation."""


class IntegrityError(Exception):
    """Raised by the Repository on referential or uniqueness violations."""
