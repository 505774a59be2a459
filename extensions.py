"""Shared Flask extensions for the daily bar service and its local fallback tables."""

from flask_sqlalchemy import SQLAlchemy

# Initialized in app.create_app() so stores and models can import `db` without the app.
db = SQLAlchemy()
