"""
MealPass — SQLAlchemy models.

The shared ``db`` handle lives here so that every model module and service
can import it without pulling in the application factory.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
