# clinic_payroll/common/errors.py
from flask import Blueprint, current_app
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import IntegrityError

from clinic_payroll.common.http import fail
from clinic_payroll.services.compensation_engine import (
    CollaboratorFetchError,
    EngineNotReadyError,
    StaleRecomputeError,
    UnknownFieldError,
    UnknownStaffError,
)

bp_errors = Blueprint("errors", __name__)


class APIError(Exception):
    """Custom API Error class."""
    def __init__(self, code, message, status_code=400, payload=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload


@bp_errors.app_errorhandler(APIError)
def _api_error(e: APIError):
    return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)


@bp_errors.app_errorhandler(CollaboratorFetchError)
def _fetch_failed(e: CollaboratorFetchError):
    current_app.logger.warning("salary recompute aborted: %s", e)
    return fail(
        message="Could not load payroll inputs",
        status=502,
        code="COLLABORATOR_FETCH_FAILED",
        detail={"failed": list(e.failed)},
    )


@bp_errors.app_errorhandler(StaleRecomputeError)
def _stale(e: StaleRecomputeError):
    return fail(message=str(e), status=409, code="STALE_RECOMPUTE")


@bp_errors.app_errorhandler(EngineNotReadyError)
def _not_ready(e: EngineNotReadyError):
    return fail(message=str(e), status=409, code="ENGINE_NOT_READY")


@bp_errors.app_errorhandler(UnknownStaffError)
def _unknown_staff(e: UnknownStaffError):
    return fail(message=f"Staff {e.staff_id} is not on this salary sheet", status=404, code="UNKNOWN_STAFF")


@bp_errors.app_errorhandler(UnknownFieldError)
def _unknown_field(e: UnknownFieldError):
    return fail(message=str(e), status=422, code="UNKNOWN_FIELD")


@bp_errors.app_errorhandler(HTTPException)
def _http(e: HTTPException):
    return fail(message=e.description or "HTTP error", status=e.code or 400)


@bp_errors.app_errorhandler(IntegrityError)
def _integrity(e: IntegrityError):
    # 409 for unique/FK violations
    return fail(message="Conflict / integrity error", status=409, detail=str(e.orig) if getattr(e, "orig", None) else str(e))


@bp_errors.app_errorhandler(Exception)
def _unhandled(e: Exception):
    current_app.logger.exception(e)
    return fail(message="Internal Server Error", status=500)
