"""
Error tracking sink for failures that operators need to see.
"""

import logging


logger = logging.getLogger(__name__)


class ErrorReporter:
    """Receives exceptions raised during backup cycles."""

    def capture(self, exc: BaseException, **context):
        raise NotImplementedError


class LoggingErrorReporter(ErrorReporter):
    """Reports exceptions to the ``dbkeeper.errors`` logger with traceback."""

    def __init__(self, logger_name: str = 'dbkeeper.errors'):
        self.logger = logging.getLogger(logger_name)

    def capture(self, exc: BaseException, **context):
        details = ', '.join(f"{k}={v}" for k, v in sorted(context.items()))
        self.logger.error(
            f"{type(exc).__name__}: {exc}" + (f" ({details})" if details else ''),
            exc_info=(type(exc), exc, exc.__traceback__)
        )


def safe_capture(reporter: ErrorReporter, exc: BaseException, **context):
    """
    Report ``exc`` without ever raising.

    Error reporting is best effort; a broken reporter must not take the
    backup cycle down with it.
    """
    if reporter is None:
        return
    try:
        reporter.capture(exc, **context)
    except Exception as report_error:
        logger.warning(f"Error reporter failed: {report_error}")
