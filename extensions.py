from flask_sqlalchemy import SQLAlchemy # ORM for the ledger, mappings and audit tables.
from flask_migrate import Migrate      # Alembic-backed schema migrations.

# Initialize SQLAlchemy.
# Bound to the Flask app in the application factory (create_app in app.py) via db.init_app(app).
db = SQLAlchemy()

# Initialize Flask-Migrate.
# Bound in create_app via migrate.init_app(app, db) so `flask db upgrade` can manage the schema.
migrate = Migrate()
