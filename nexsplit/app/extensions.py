"""
extensions.py — Flask extension singletons.

Both objects are created unbound and attached to the app in create_app()
via init_app(), so every test builds its own app against the same module
level `db`:

    from nexsplit.app.extensions import db, ma
"""

from flask_marshmallow import Marshmallow
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

# Request schemas in app/schemas/ subclass marshmallow.Schema rather than
# ma.Schema. ma.Schema needs an application context and tests/unit/ loads
# schemas without one.
ma = Marshmallow()
