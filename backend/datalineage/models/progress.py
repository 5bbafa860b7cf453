"""
Connection phase reporting for the retrying fetch lifecycle
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class ConnectionPhase(str, Enum):
    """Named stages of a retrying fetch"""
    IDLE = "idle"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    WAITING_FOR_SERVICE = "waiting"
    LOADING_DATA = "loading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionPhase.COMPLETED, ConnectionPhase.FAILED)


PHASE_MESSAGES = {
    ConnectionPhase.IDLE: "",
    ConnectionPhase.CONNECTING: "Connecting to the lineage service...",
    ConnectionPhase.AUTHENTICATING: "Authenticating...",
    ConnectionPhase.WAITING_FOR_SERVICE: "Waiting for service to start...",
    ConnectionPhase.LOADING_DATA: "Loading lineage data...",
    ConnectionPhase.COMPLETED: "Data loaded",
    ConnectionPhase.FAILED: "Connection failed",
}


@dataclass(frozen=True)
class ConnectionProgress:
    phase: ConnectionPhase
    message: str
    attempt: int = 0
    max_attempts: int = 0
    error: Optional[str] = None


ProgressCallback = Callable[[ConnectionProgress], None]


def attempt_progress(attempt: int, max_attempts: int) -> ConnectionProgress:
    """
    Phase and wording for the start of ``attempt`` (1-based).

    Attempt 1 connects, attempt 2 authenticates, the final attempt says so,
    and everything in between waits for the service to warm up.
    """
    if attempt <= 1:
        phase, message = ConnectionPhase.CONNECTING, PHASE_MESSAGES[ConnectionPhase.CONNECTING]
    elif attempt == 2 and max_attempts > 2:
        phase, message = ConnectionPhase.AUTHENTICATING, "Authenticating with the lineage service..."
    elif attempt >= max_attempts:
        phase, message = ConnectionPhase.WAITING_FOR_SERVICE, "Final connection attempt..."
    elif attempt == 3:
        phase, message = ConnectionPhase.WAITING_FOR_SERVICE, "Waiting for database to start..."
    else:
        phase, message = ConnectionPhase.WAITING_FOR_SERVICE, "Service is warming up..."
    return ConnectionProgress(phase=phase, message=message, attempt=attempt, max_attempts=max_attempts)
