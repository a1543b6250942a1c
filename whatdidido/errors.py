from __future__ import annotations


class WhatDidIDoError(Exception):
    """Base class for every error raised by this package."""


class InvalidState(WhatDidIDoError):
    pass


class InvalidArgument(WhatDidIDoError, ValueError):
    pass


class TaskExecutionFailed(WhatDidIDoError):
    """All attempts of a scheduled task failed.

    The scheduler logs and discards this error; it is only ever handed out as
    part of a ``TaskOutcome``.
    """

    def __init__(self, message: str, attempts: int, last_error: BaseException | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
        self.__cause__ = last_error


class AggregationFailed(WhatDidIDoError):
    pass


class SidebandFetchFailed(WhatDidIDoError):
    pass


class ClassificationError(WhatDidIDoError):
    pass
