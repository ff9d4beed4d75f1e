# dairy_sync/__init__.py

# =====================================================================================
# 1. Load environment variables (before anything reads os.getenv)
# =====================================================================================
from dotenv import load_dotenv
load_dotenv()

# =====================================================================================
# 2. Module imports
# =====================================================================================
import os
import logging
from flask import Flask, jsonify
from marshmallow import ValidationError
from flask_jwt_extended import JWTManager
import firebase_admin
from firebase_admin import credentials

# - config
from dairy_sync.core.config import config_by_name
from dairy_sync.core.context import build_remote_services

# - API blueprints
from dairy_sync.api.records.routes import records_bp
from dairy_sync.api.migration.routes import migration_bp


def create_app(config_name=None, services=None):
    """
    Flask application factory.

    `services` replaces the production wiring (Firestore + Supabase) with a
    prebuilt dict, the way tests run the API over in-memory databases.
    """
    # =====================================================================================
    # 3. Create the app
    # =====================================================================================
    config_name = config_name or os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    app.json.ensure_ascii = False

    # =====================================================================================
    # 4. Extensions and external services
    # =====================================================================================
    JWTManager(app)

    if services is None:
        if not firebase_admin._apps:
            cred_path = app.config['FIREBASE_CREDENTIALS_PATH']
            if not cred_path or not os.path.exists(cred_path):
                raise FileNotFoundError(f"Firebase credentials file not found: {cred_path}")
            cred = credentials.Certificate(cred_path)
            firebase_admin.initialize_app(cred)

        try:
            services = build_remote_services(app.config)
            logging.info("Remote database services initialized successfully")
        except Exception as e:
            logging.error(f"Failed to initialize remote database services: {e}")
            raise

    # =====================================================================================
    # 5. Service instances live in app.services (dependency injection)
    # =====================================================================================
    app.services = services

    # =====================================================================================
    # 6. Blueprints
    # =====================================================================================
    app.register_blueprint(records_bp, url_prefix='/api/records')
    app.register_blueprint(migration_bp, url_prefix='/api/migration')

    # =====================================================================================
    # 7. Global error handlers
    # =====================================================================================
    @app.errorhandler(ValidationError)
    def handle_marshmallow_validation(err):
        response = {"error_code": "VALIDATION_ERROR", "details": err.messages}
        return jsonify(response), 400

    @app.errorhandler(Exception)
    def handle_generic_exception(err):
        logging.error(f"An unhandled exception occurred: {err}", exc_info=True)
        response = {"error_code": "INTERNAL_SERVER_ERROR", "message": "An unexpected server error occurred."}
        return jsonify(response), 500

    # =====================================================================================
    # 8. Logging
    # =====================================================================================
    if not app.debug:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]')

    logging.info(f"Flask app created for '{config_name}' environment.")

    return app
