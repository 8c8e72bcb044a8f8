"""Error translation at the file service boundary."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from server.apps.files.exceptions import FileServiceError, InternalFailureError

logger = logging.getLogger(__name__)


@contextmanager
def internal_failure_boundary(action: str) -> Iterator[None]:
    """Re-raise unexpected errors as InternalFailureError.

    FileServiceError passes through unchanged. Anything else (database,
    programming errors) is logged with its traceback and replaced by a
    generic error, so driver detail never reaches the caller.

    Args:
        action: Short description of the operation for the log.

    Raises:
        InternalFailureError: For any non-FileServiceError exception.
    """
    try:
        yield
    except FileServiceError:
        raise
    except Exception as error:
        logger.exception('%s failed unexpectedly', action)
        raise InternalFailureError() from error
