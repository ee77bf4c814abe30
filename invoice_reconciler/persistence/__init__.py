"""
Persistence Module.

Storage boundary of the reconciler: an abstract ``Repository`` and its
SQLAlchemy implementation.
"""

from .repository import Repository
from .sql_repository import SQLAlchemyRepository

__all__ = ['Repository', 'SQLAlchemyRepository']
