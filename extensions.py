# extensions.py

from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager

# Single source of truth for the db object.
# It's initialized here, but not yet connected to a Flask app.
db = SQLAlchemy()

# Resolves the already-authenticated user (and its organization) per request
login_manager = LoginManager()
