from typing import Any


class UsageLensError(Exception):
    """
    base exception for all usagelens errors.
    """


class ConfigurationError(UsageLensError):
    """
    raised before any work starts when the service is misconfigured
    (missing table name, invalid segment count). Never retried.
    """


class SegmentScanError(UsageLensError):
    """
    raised by the segment scanner when a store call fails. The
    orchestrator catches it and treats the segment as zero-yield.
    """

    def __init__(
        self,
        segment_index: "int",
        pages_read: "int",
        cause: "BaseException",
    ) -> "None":
        self.segment_index = segment_index
        self.pages_read = pages_read
        self.cause = cause
        super().__init__(
            f"segment {segment_index} failed after {pages_read} page(s): {cause}"
        )


class StreamError(UsageLensError):
    """
    raised by the stream client when the server sends an error event.
    `partial` holds whatever the stream delivered before the error.
    """

    def __init__(self, message: "str", partial: "Any" = None) -> "None":
        self.partial = partial
        super().__init__(message)


class LoadInProgressError(UsageLensError):
    """
    raised by the stream client when a load is already running and
    has not yet exceeded the stuck timeout.
    """
