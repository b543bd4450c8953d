"""
Error taxonomy and the uniform result envelope.

Every exposed engine operation returns either
    {"status": "success", ...payload}
or
    {"status": "error", "kind": <kind>, "message": <text>}
The transport layer maps ``kind`` to a protocol status via ``HTTP_STATUS``.
"""
import functools
import logging

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

logger = logging.getLogger(__name__)

# SQLSTATEs that mean "another writer won": exclusion violation,
# serialization failure, deadlock, lock not available
CONFLICT_SQLSTATES = {"23P01", "40001", "40P01", "55P03"}
# SQLite gave up waiting for another writer's lock
SQLITE_LOCKED_MESSAGE = "database is locked"


class ServiceError(Exception):
    """Base class for expected (operational) failures"""

    kind = "internal"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    kind = "validation"


class NotFoundError(ServiceError):
    kind = "not_found"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class ConflictError(ServiceError):
    kind = "conflict"


class GatewayError(ServiceError):
    kind = "gateway"
    retryable = True

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.code = code


class UnauthorizedError(ServiceError):
    kind = "unauthorized"


class ForbiddenError(ServiceError):
    kind = "forbidden"


class InternalError(ServiceError):
    kind = "internal"


HTTP_STATUS = {
    "validation": 400,
    "unauthorized": 401,
    "forbidden": 403,
    "not_found": 404,
    "conflict": 409,
    "gateway": 502,
    "internal": 500,
}


def ok(**payload) -> dict:
    if "status" in payload:
        raise ValueError("'status' is reserved for the envelope; use booking_status")
    return {"status": "success", **payload}


def fail(error: ServiceError) -> dict:
    result = {"status": "error", "kind": error.kind, "message": error.message}
    if error.retryable:
        result["retryable"] = True
    return result


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_write_conflict(exc: DBAPIError) -> bool:
    """True when the failure means a concurrent writer got there first"""
    if _sqlstate(exc) in CONFLICT_SQLSTATES or isinstance(exc, IntegrityError):
        return True
    return isinstance(exc, OperationalError) and SQLITE_LOCKED_MESSAGE in str(exc.orig)


def service_operation(description: str):
    """
    Wrap an engine operation so it always returns the result envelope.

    The wrapped function takes the SQLAlchemy session as its first argument;
    it is rolled back on any failure so nothing partially commits.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(db, *args, **kwargs):
            try:
                return func(db, *args, **kwargs)
            except ServiceError as e:
                db.rollback()
                return fail(e)
            except DBAPIError as e:
                db.rollback()
                if is_write_conflict(e):
                    logger.info("Concurrent write lost while %s: %s", description, e.orig)
                    return fail(ConflictError("Conflicting change saved by another request; reload and retry"))
                logger.exception("Database error while %s", description)
                return fail(InternalError(f"Internal error while {description}"))
            except Exception:
                db.rollback()
                logger.exception("Unexpected error while %s", description)
                return fail(InternalError(f"Internal error while {description}"))

        return wrapper

    return decorator
