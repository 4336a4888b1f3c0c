"""Error taxonomy shared by the gateway and the controllers."""

from typing import Iterable


class OpsboardError(Exception):
    """Base error for Opsboard.

    Args:
        message (str): Error message
        status_code (int): HTTP status code, 0 when not applicable
        code (str): Error code reported by the remote store

    Attributes:
        message (str): Error message
        status_code (int): HTTP status code
        code (str): Error code reported by the remote store
    """

    def __init__(self, message: str, status_code: int = 0, code: str = ""):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(self.message)


class ValidationError(OpsboardError):
    """Input rejected before any remote call was made."""


class TransportError(OpsboardError):
    """A read failed because of network or auth problems."""


class PersistenceError(OpsboardError):
    """A write was rejected or failed after submission."""


class InvalidStage(OpsboardError):
    """Target stage is not declared by the board."""

    def __init__(self, stage: str, allowed: Iterable[str]):
        self.stage = stage
        self.allowed = tuple(allowed)
        super().__init__(
            f"Unknown stage {stage!r}; expected one of: {', '.join(self.allowed)}"
        )
