"""
SQLAlchemy declarative base for every model in the service.

Kept free of model and repository imports so that models, the session
factory and scripts can all import it without cycles.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
