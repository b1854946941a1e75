"""
Database Module

This module provides database configuration and the declarative base for
the assessment engine tables.
"""

from lms_backend.database.base import Base, ModelBase, metadata

__all__ = ['Base', 'ModelBase', 'metadata']
