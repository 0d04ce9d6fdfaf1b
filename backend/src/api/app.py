"""
Fleet Trip Integrity - Flask API Application
Main API application with Blueprints, CORS, and middleware.
"""

import time
from typing import Optional

from flask import Flask, g, jsonify, request
from flask_cors import CORS

from api.middleware.error_handler import register_error_handlers
from api.routes.audit import audit_bp
from api.routes.health import health_bp
from api.routes.integrity import integrity_bp
from api.services import init_services
from integrity.audit_trail import AuditTrailLogger
from integrity.store import TripStore
from utils.config import FLASK_ENV, FLASK_DEBUG, SECRET_KEY
from utils.logger import logger, log_api_request


def create_app(
    trip_store: Optional[TripStore] = None,
    audit_logger: Optional[AuditTrailLogger] = None,
) -> Flask:
    """
    Create and configure Flask application.

    Args:
        trip_store: Trip store override (default: SQL-backed store)
        audit_logger: Audit logger override (default: SQL-backed audit trail)

    Returns:
        Configured Flask app instance
    """
    app = Flask(__name__)

    # Configuration
    app.config['ENV'] = FLASK_ENV
    app.config['DEBUG'] = FLASK_DEBUG
    app.config['SECRET_KEY'] = SECRET_KEY
    app.json.sort_keys = False  # Preserve JSON key order

    # CORS configuration
    CORS(app, resources={
        r"/api/*": {
            "origins": "*",  # Configure for production
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type"]
        }
    })

    init_services(app, trip_store=trip_store, audit_logger=audit_logger)

    # Register blueprints
    app.register_blueprint(health_bp, url_prefix='/api')
    app.register_blueprint(integrity_bp, url_prefix='/api')
    app.register_blueprint(audit_bp, url_prefix='/api')

    # Register error handlers
    register_error_handlers(app)

    @app.before_request
    def start_timer():
        g.request_started = time.monotonic()

    @app.after_request
    def log_request(response):
        started = g.get('request_started')
        if started is not None:
            log_api_request(
                request.method,
                request.path,
                response.status_code,
                round((time.monotonic() - started) * 1000, 2),
            )
        return response

    logger.info(f"Flask app created (env={FLASK_ENV}, debug={FLASK_DEBUG})")

    # Root endpoint
    @app.route('/')
    def index():
        """Root endpoint with API information."""
        return jsonify({
            "name": "Fleet Trip Integrity API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "health": "/api/health",
                "validation": "/api/vehicles/<id>/validation",
                "data_quality": "/api/data-quality/summary",
                "edge_cases": "/api/edge-cases",
                "audit": "/api/audit/trail"
            }
        })

    return app


if __name__ == '__main__':
    # Development server
    app = create_app()
    app.run(
        host='0.0.0.0',
        port=5000,
        debug=FLASK_DEBUG
    )
