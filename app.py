import logging # Standard library logging, used to set the app logger's level from config.
from flask import Flask # The main Flask class.
from config import Config # Import the application's configuration class.
from extensions import db, migrate # Import initialized extensions.

# Application Factory Function
def create_app(config_class=Config):
    """
    Application factory for creating and configuring the Flask app.
    Tests pass their own config class (in-memory database, no provider token).
    """
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration from the given Config class (defined in config.py by default).
    app.config.from_object(config_class)

    # Log level for current_app.logger and the services' module loggers.
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger('services').setLevel(level)

    # --- Initialize Flask Extensions ---
    db.init_app(app)
    # Flask-Migrate carries ledger schema changes (see SuppressionRecord.schema_version).
    migrate.init_app(app, db)

    # Importing the models registers their tables with SQLAlchemy's metadata.
    import models  # noqa: F401

    # --- Import and Register Blueprints ---
    from routes.optimizer import optimizer_bp
    from routes.audit import audit_bp
    from routes.main import main_bp

    app.register_blueprint(optimizer_bp) # Routes under /optimizer/...
    app.register_blueprint(audit_bp)     # Routes under /audit/...
    app.register_blueprint(main_bp)      # /health

    if not app.config.get('PROVIDER_API_TOKEN'):
        app.logger.warning("PROVIDER_API_TOKEN is not set: provider calls will report missing_token and revert runs as dry-run.")

    # Create tables on first start when migrations have not been run (e.g. local SQLite).
    if app.config.get('AUTO_CREATE_TABLES', True):
        with app.app_context():
            db.create_all()

    return app # Return the configured Flask app instance.

# This block allows running the Flask development server directly using `python app.py`.
if __name__ == '__main__':
    app = create_app() # Create an app instance using the factory.
    app.run(debug=True)
