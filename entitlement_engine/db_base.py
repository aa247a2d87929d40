"""
SQLAlchemy declarative base shared by all entitlement models.
"""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
