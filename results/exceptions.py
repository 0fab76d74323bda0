"""
Error kinds and result envelopes shared by the compilation services.

Services never raise past their public boundary: they return
``{'success': True, 'data': ...}`` or ``{'success': False, 'error': ..., 'error_kind': ...}``.
"""
import enum
import logging

from django.core.exceptions import ObjectDoesNotExist
from django.db import IntegrityError, OperationalError

logger = logging.getLogger(__name__)


class ErrorKind(str, enum.Enum):
    AUTHORIZATION = 'authorization'
    VALIDATION = 'validation'
    NOT_FOUND = 'not_found'
    UNIQUE_CONSTRAINT = 'unique_constraint'
    TIMEOUT = 'timeout'
    PARTIAL_BATCH = 'partial_batch'
    UNKNOWN = 'unknown'


class CompilerError(Exception):
    kind = ErrorKind.UNKNOWN

    def __init__(self, message, kind=None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def __str__(self):
        return self.message


class AuthorizationError(CompilerError):
    kind = ErrorKind.AUTHORIZATION


class ValidationError(CompilerError):
    kind = ErrorKind.VALIDATION


class NotFoundError(CompilerError):
    kind = ErrorKind.NOT_FOUND


class BatchError(CompilerError):
    """A batch transaction failed after earlier batches were committed."""
    kind = ErrorKind.PARTIAL_BATCH

    def __init__(self, message, batch_number, cause_kind=ErrorKind.UNKNOWN):
        super().__init__(message)
        self.batch_number = batch_number
        self.cause_kind = cause_kind


def classify_database_error(exc):
    """Map an exception raised by the ORM onto an ErrorKind."""
    if isinstance(exc, CompilerError):
        return exc.kind
    if isinstance(exc, IntegrityError):
        return ErrorKind.UNIQUE_CONSTRAINT
    if isinstance(exc, ObjectDoesNotExist):
        return ErrorKind.NOT_FOUND
    if isinstance(exc, OperationalError):
        text = str(exc).lower()
        if 'timeout' in text or 'locked' in text or 'canceling statement' in text:
            return ErrorKind.TIMEOUT
    return ErrorKind.UNKNOWN


def success(data=None, **extra):
    result = {'success': True, 'data': data}
    result.update(extra)
    return result


def failure(exc, **extra):
    """Convert an exception into a failure result, logging it at the right level."""
    kind = classify_database_error(exc)
    if isinstance(exc, CompilerError):
        logger.warning(f"{kind.value} error: {exc}")
        message = str(exc)
    else:
        logger.error(f"Unexpected error: {exc}", exc_info=True)
        message = str(exc) or "An unexpected error occurred"
    result = {'success': False, 'error': message, 'error_kind': kind.value}
    result.update(extra)
    return result
