"""
Fleet Trip Integrity - Error Handler Middleware
Standardized error responses for all API endpoints.

Every error body is JSON: {"error": <title>, "message": <detail>}.
"""

from flask import jsonify, Flask
from werkzeug.exceptions import HTTPException

from integrity.store import StoreUnavailableError, VehicleNotFoundError
from utils.logger import logger


def register_error_handlers(app: Flask):
    """
    Register error handlers for Flask app.

    Args:
        app: Flask application instance
    """

    @app.errorhandler(StoreUnavailableError)
    def store_unavailable(error):
        """Trip store unreachable: the caller may retry later."""
        logger.error(f"Trip store unavailable: {error}", extra={"vehicle_id": error.vehicle_id})
        return jsonify({
            "error": "Service Unavailable",
            "message": "Trip data store is unavailable. Please try again later."
        }), 503

    @app.errorhandler(VehicleNotFoundError)
    def vehicle_not_found(error):
        logger.info(f"Vehicle not found: {error.vehicle_id}")
        return jsonify({
            "error": "Not Found",
            "message": str(error)
        }), 404

    @app.errorhandler(400)
    def bad_request(error):
        """Handle 400 Bad Request errors."""
        logger.warning(f"Bad request: {error}")
        return jsonify({
            "error": "Bad Request",
            "message": str(error.description) if hasattr(error, 'description') else "Invalid request"
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 Not Found errors."""
        logger.info(f"Not found: {error}")
        return jsonify({
            "error": "Not Found",
            "message": "The requested resource was not found"
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            "error": "Method Not Allowed",
            "message": str(error.description)
        }), 405

    @app.errorhandler(500)
    def internal_server_error(error):
        """Handle 500 Internal Server Error."""
        logger.error(f"Internal server error: {error}", exc_info=True)
        return jsonify({
            "error": "Internal Server Error",
            "message": "An unexpected error occurred. Please try again later."
        }), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """Handle all unhandled exceptions."""
        # If it's an HTTP exception, pass through to specific handler
        if isinstance(error, HTTPException):
            return error

        logger.error(f"Unexpected error: {error}", exc_info=True)

        return jsonify({
            "error": "Internal Server Error",
            "message": "An unexpected error occurred. Please try again later."
        }), 500

    logger.info("Error handlers registered")
