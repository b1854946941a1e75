"""
Authentication helpers for the assessment API.
"""

from lms_backend.common.auth.dependencies import get_current_user_id

__all__ = ["get_current_user_id"]
