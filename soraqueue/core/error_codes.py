"""
Standardised error handling for SoraQueue.
"""

from soraqueue.core.constants import ErrorCode, RECOVERABLE_ERRORS


class QueueError(Exception):
    """Raised when a queue operation hits a known error condition."""

    def __init__(self, code: str, message: str, recoverable: bool | None = None,
                 status_code: int | None = None):
        self.code = code
        self.message = message
        self.status_code = status_code
        # auto-detect recoverable from code if not explicitly set
        self.recoverable = recoverable if recoverable is not None else (code in RECOVERABLE_ERRORS)
        super().__init__(f"[{code}] {message}")


def is_recoverable(code: str) -> bool:
    return code in RECOVERABLE_ERRORS
