"""
Standardised error handling for TuneCast.
"""

from tunecast.core.constants import ErrorCode, RETRYABLE_ERRORS


class JobError(Exception):
    """Raised when a playlist job encounters a known error condition."""

    def __init__(self, code: str, message: str, retryable: bool | None = None):
        self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (code in RETRYABLE_ERRORS)
        super().__init__(f"[{code}] {message}")


class ProcessError(JobError):
    """An external process exited with a non-zero code."""

    def __init__(self, command: str, returncode: int, stderr_tail: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        message = f"{command} exited with code {returncode}"
        if stderr_tail:
            message += f": {stderr_tail[-300:]}"
        super().__init__(ErrorCode.PROCESS_FAILED, message)


# Failures contained to one playlist item
ITEM_LEVEL_ERRORS = {
    ErrorCode.ITEM_DIR_EXISTS,
    ErrorCode.SPAWN_FAILED,
    ErrorCode.PROCESS_FAILED,
    ErrorCode.PROBE_FAILED,
    ErrorCode.MANIFEST_MISSING,
}


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS


def is_item_level(code: str) -> bool:
    return code in ITEM_LEVEL_ERRORS
