"""
Error taxonomy shared by the transcode engine.

Tasks and the scheduler catch the operational errors (command, resource)
and record them on the task. Caller mistakes (conflict, validation,
not found) propagate to the caller.
"""


class TranscodeOpsError(Exception):
    """Base class for all engine errors"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(TranscodeOpsError):
    """Malformed criteria, target reference or request"""


class NotFoundError(TranscodeOpsError):
    """Referenced task, media or target does not exist"""


class ConflictError(TranscodeOpsError):
    """Operation collides with the current state of a task"""


class CommandError(TranscodeOpsError):
    """Encoder exited non-zero or could not be spawned"""
    def __init__(self, message: str, returncode: int = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class CommandInterrupted(CommandError):
    """Encoder exited because it was asked to terminate"""


class ResourceError(TranscodeOpsError):
    """Output location could not be created or written"""


class SegmentTimeoutError(TranscodeOpsError):
    """A stream segment did not materialize within the wait bound"""
    def __init__(self, message: str, waited_sec: float = 0):
        self.waited_sec = waited_sec
        super().__init__(message)


class SegmentNotFoundError(TranscodeOpsError):
    """Segment production finished without producing the segment file"""
