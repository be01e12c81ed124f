"""formpost errors - failure kinds raised by validation or carried on results."""


class FormPostError(Exception):
    """Base class for every formpost failure."""


class InvalidArgument(FormPostError, ValueError):
    """A required argument was None or of an unsupported type."""


class FileNotFound(FormPostError, FileNotFoundError):
    """A file-backed field points at a path that does not exist."""


class ConnectionError(FormPostError):  # noqa: A001
    """The connection to the target could not be opened."""


class SendError(FormPostError):
    """The request body could not be obtained or written."""


class ReceiveError(FormPostError):
    """The server response could not be read."""


class Cancelled(FormPostError):
    """Execution was cancelled between chunks or fields."""


class RequestStateError(FormPostError, RuntimeError):
    """A MultipartRequest was executed more than once."""


class UnexpectedError(FormPostError):
    """An error outside the known kinds escaped a step of execution."""
