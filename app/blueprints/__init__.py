"""
Risk Lifecycle Engine
Blueprint registry and shared error handling.
"""

import logging

from flask import request
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import (
    ConfigurationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.models import db
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def register_risk_error_handlers(bp):
    """Map service exceptions to JSON errors; every handler rolls the session back."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        db.session.rollback()
        return api_error(E.CONFLICT_ASSIGNMENT, str(error))

    @bp.errorhandler(InvalidStateError)
    def _handle_invalid_state(error: InvalidStateError):
        db.session.rollback()
        details = {"current_state": error.current_state} if error.current_state else None
        return api_error(E.CONFLICT_STATE, str(error), details=details)

    @bp.errorhandler(StaleDataError)
    def _handle_stale(error: StaleDataError):
        db.session.rollback()
        logger.warning("Concurrent modification in %s: %s", request.endpoint, error)
        return api_error(E.CONFLICT_STATE, "Record was modified concurrently, reload and retry")

    @bp.errorhandler(ConfigurationError)
    def _handle_configuration(error: ConfigurationError):
        db.session.rollback()
        logger.error("Configuration error in %s: %s", request.endpoint, error)
        return api_error(E.CONFIGURATION, str(error))

    return bp
