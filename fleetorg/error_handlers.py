# fleetorg/error_handlers.py
import logging
import traceback

from flask import jsonify, request

from fleetorg.errors import DomainError, IntegrityRisk, StoreUnavailable

logger = logging.getLogger(__name__)


def _error_response(error, message, status_code, **extra):
    return jsonify({
        "error": error,
        "message": message,
        "path": request.path,
        **extra,
    }), status_code


def register_error_handlers(app):
    """Register all error handlers for the application"""

    @app.errorhandler(DomainError)
    def handle_domain_error(error):
        if isinstance(error, IntegrityRisk):
            logger.critical(
                "Data integrity risk: %s", error.message,
                extra={"org_id": error.org_id, "path": request.path},
            )
        elif isinstance(error, StoreUnavailable):
            logger.error("Store unavailable: %s - Path: %s", error.message, request.path)
        elif error.status_code == 403:
            logger.warning("Forbidden: %s - Path: %s", error.message, request.path)
        else:
            logger.info("%s: %s - Path: %s", error.__class__.__name__, error.message, request.path)

        response = jsonify({**error.to_dict(), "path": request.path})
        response.status_code = error.status_code
        return response

    @app.errorhandler(400)
    def bad_request(e):
        logger.warning(f"Bad request: {str(e)} - Path: {request.path}")
        return _error_response(
            "Bad request",
            "The request could not be understood or was missing required parameters.",
            400,
        )

    @app.errorhandler(401)
    def unauthorized(e):
        logger.warning(f"Unauthorized: {str(e)} - Path: {request.path}")
        return _error_response(
            "Unauthorized",
            "Authentication is required and has failed or has not been provided.",
            401,
        )

    @app.errorhandler(403)
    def forbidden(e):
        logger.warning(f"Forbidden: {str(e)} - Path: {request.path}")
        return _error_response(
            "Forbidden",
            "You don't have permission to access this resource.",
            403,
        )

    @app.errorhandler(404)
    def not_found(e):
        logger.info(f"Not found: {request.path}")
        return _error_response(
            "Not found",
            "The requested resource was not found on the server.",
            404,
        )

    @app.errorhandler(405)
    def method_not_allowed(e):
        logger.warning(f"Method not allowed: {request.method} {request.path}")
        return _error_response(
            "Method not allowed",
            f"The {request.method} method is not supported for this endpoint.",
            405,
        )

    @app.errorhandler(429)
    def too_many_requests(e):
        logger.warning(f"Too many requests: {str(e)} - Path: {request.path}")
        return _error_response(
            "Too many requests",
            "Rate limit exceeded. Please try again later.",
            429,
        )

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f"Server error: {str(e)} - Path: {request.path}")
        if app.config.get("DEBUG", False):
            logger.error(f"Traceback: {traceback.format_exc()}")
        return _error_response(
            "Server error",
            "An internal server error occurred. Please try again later.",
            500,
        )
