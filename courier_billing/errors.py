"""
courier_billing/errors.py

Error taxonomy for the billing API.

Every error carries the HTTP status it maps to, so blueprints simply raise and
the handlers registered in create_app() render a consistent JSON body:

    {"error": "<message>", "details": ...}

No error is retried anywhere; failures surface synchronously to the caller.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from flask import current_app, jsonify, request
from flask_wtf.csrf import CSRFError
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .extensions import db

logger = logging.getLogger(__name__)


class BillingError(Exception):
    """Base class: message + HTTP status + optional structured details."""

    status_code = 500

    def __init__(self, message: str, *, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(BillingError):
    """Missing or malformed input. `fields` names every offending field."""

    status_code = 400

    def __init__(self, message: str, *, fields: Optional[list] = None, details: Any = None):
        super().__init__(message, details=details)
        self.fields = list(fields or [])

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.fields:
            body["fields"] = self.fields
        return body


class NotFoundError(BillingError):
    status_code = 404


class AuthError(BillingError):
    """Missing, invalid or expired credentials."""

    status_code = 401


class ForbiddenError(BillingError):
    """Authenticated, but the role does not allow the action."""

    status_code = 403


class ConflictError(BillingError):
    """The write would collide with another row's unique key."""

    status_code = 409


class PersistenceError(BillingError):
    """Underlying database failure (constraint violation, connection error)."""

    status_code = 500


def _error_response(error: BillingError):
    return jsonify(error.to_dict()), error.status_code


def register_error_handlers(app) -> None:
    """Wire the taxonomy (and stray SQLAlchemy errors) to JSON responses."""

    @app.errorhandler(BillingError)
    def _handle_billing_error(error: BillingError):
        if error.status_code >= 500:
            logger.error("%s: %s", error.__class__.__name__, error.message)
        else:
            logger.warning("%s: %s", error.__class__.__name__, error.message)
        return _error_response(error)

    @app.errorhandler(SQLAlchemyError)
    def _handle_db_error(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Unhandled database error")
        details: Dict[str, Any] = {"message": str(getattr(error, "orig", None) or error)}
        if current_app.config.get("DEBUG_ERROR_TRACES"):
            details["stack"] = traceback.format_exc()
        return _error_response(PersistenceError("Database operation failed", details=details))

    @app.errorhandler(CSRFError)
    def _handle_csrf_error(error: CSRFError):
        return _error_response(ForbiddenError("CSRF validation failed", details=error.description))

    @app.errorhandler(404)
    def _handle_404(error):
        return _error_response(NotFoundError("Not found"))

    @app.errorhandler(405)
    def _handle_405(error):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(Exception)
    def _handle_unexpected_error(error: Exception):
        # HTTP errors (400 bad JSON, 413, ...) keep their own status and body.
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unhandled error in %s", request.path)
        details: Dict[str, Any] = {"message": str(error)}
        if current_app.config.get("DEBUG_ERROR_TRACES"):
            details["stack"] = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return _error_response(PersistenceError("Internal server error", details=details))
