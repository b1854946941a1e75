"""
Error Handling for the Assessment Engine

This module provides the error taxonomy shared by every engine component:
1. A value-level exception hierarchy (code + message + details)
2. Conversion of foreign exceptions into engine errors
3. Structured error logging
4. Error response generation for the HTTP layer
"""

import json
import logging
import traceback
from enum import Enum
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lms_backend.common.logger import app_logger

logger = app_logger.getChild("errors")


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Error kinds surfaced by the engine"""
    UNKNOWN_ERROR = "unknown_error"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    ENROLLMENT_REQUIRED = "enrollment_required"
    ALREADY_COMPLETED = "already_completed"
    VALIDATION_ERROR = "validation_error"
    STORAGE_ERROR = "storage_error"


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    stack_trace: Optional[List[str]] = None
    context: Optional[Dict[str, Any]] = None

    @field_validator('stack_trace', mode='before')
    @classmethod
    def validate_stack_trace(cls, v):
        """Split a string stack trace into lines"""
        if isinstance(v, str):
            return v.splitlines()
        return v


class EngineError(Exception):
    """Base exception class for all assessment engine errors"""

    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.severity = severity
        self.details = details or {}
        self.cause = cause
        self.context = context or {}
        self.timestamp = datetime.now()

    @property
    def kind(self) -> str:
        """Short error kind, e.g. ``not_found``"""
        return self.code.value

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        """Convert the exception to an ErrorInfo object"""
        stack_trace = None
        if include_stack_trace:
            stack_trace = traceback.format_exc().splitlines()

        details = dict(self.details)
        if self.cause is not None:
            details["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }

        return ErrorInfo(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            severity=self.severity,
            details=details,
            exception_type=type(self).__name__,
            stack_trace=stack_trace,
            context=self.context
        )

    def to_dict(self, include_stack_trace: bool = False) -> Dict[str, Any]:
        """Convert the exception to a dictionary"""
        return self.to_error_info(include_stack_trace).model_dump(mode="json")

    def to_json(self, include_stack_trace: bool = False) -> str:
        """Convert the exception to a JSON string"""
        return json.dumps(self.to_dict(include_stack_trace))

    def __str__(self) -> str:
        base_str = f"{self.code.value}: {self.message}"
        if self.details:
            base_str += f" (details: {self.details})"
        if self.cause:
            base_str += f" caused by {type(self.cause).__name__}: {str(self.cause)}"
        return base_str


class NotFoundError(EngineError):
    """Assessment, attempt or question absent"""

    http_status = 404

    def __init__(
        self,
        resource_type: str,
        resource_id: Any,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["resource_type"] = resource_type
        details["resource_id"] = str(resource_id)
        super().__init__(
            message=f"{resource_type} with ID {resource_id} not found",
            code=ErrorCode.NOT_FOUND,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ForbiddenError(EngineError):
    """Unpublished assessment, or attempt not owned by the caller"""

    http_status = 403

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=ErrorCode.FORBIDDEN,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class EnrollmentError(EngineError):
    """No enrollment links the student to the assessment's course"""

    http_status = 403

    def __init__(
        self,
        student_id: str,
        course_id: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["student_id"] = student_id
        details["course_id"] = course_id
        super().__init__(
            message=f"Student {student_id} is not enrolled in course {course_id}",
            code=ErrorCode.ENROLLMENT_REQUIRED,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class AlreadyCompletedError(EngineError):
    """A write was attempted on a completed attempt"""

    http_status = 409

    def __init__(
        self,
        attempt_id: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details["attempt_id"] = attempt_id
        super().__init__(
            message=f"Attempt {attempt_id} is already completed",
            code=ErrorCode.ALREADY_COMPLETED,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )
        self.attempt_id = attempt_id


class ValidationError(EngineError):
    """Malformed answer payload"""

    http_status = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class StorageError(EngineError):
    """Datastore failure; never retried by the engine"""

    http_status = 500

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        if operation is not None:
            details["operation"] = operation
        super().__init__(
            message=message,
            code=ErrorCode.STORAGE_ERROR,
            severity=ErrorSeverity.ERROR,
            details=details,
            cause=cause,
            context=context
        )


def convert_exception(
    exception: Exception,
    default_message: str = "An unexpected error occurred",
    context: Optional[Dict[str, Any]] = None
) -> EngineError:
    """
    Convert a foreign exception to an EngineError.

    Engine errors pass through unchanged (with context merged in); anything
    else is reported as a StorageError, since the only foreign failures the
    engine expects come from the datastore.

    Args:
        exception: The exception to convert
        default_message: Message used when the exception has none
        context: Optional additional context

    Returns:
        Converted EngineError
    """
    if isinstance(exception, EngineError):
        if context:
            exception.context.update(context)
        return exception

    return StorageError(
        message=str(exception) or default_message,
        cause=exception,
        context=context
    )


def error_response(
    error: Union[EngineError, Exception],
    include_details: bool = True
) -> Dict[str, Any]:
    """
    Generate a standardized API error response.

    Args:
        error: The error to generate a response for
        include_details: Whether to include error details

    Returns:
        Error response dictionary
    """
    if not isinstance(error, EngineError):
        error = convert_exception(error)

    response = {
        "status": "error",
        "code": error.code.value,
        "error": error.message
    }

    if include_details and error.details:
        response["details"] = {
            k: v for k, v in error.details.items() if k != "cause"
        }

    return response


def log_error(
    error: Union[EngineError, Exception],
    level: int = logging.ERROR,
    include_stack_trace: bool = False,
    context: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log an error with standardized format.

    Args:
        error: The error to log
        level: Logging level
        include_stack_trace: Whether to include stack trace
        context: Additional context to include
    """
    if not isinstance(error, EngineError):
        error = convert_exception(error, context=context)
    elif context:
        error.context.update(context)

    message = f"ERROR [{error.code.value}]: {error.message}"

    if error.context:
        context_str = ", ".join(f"{k}={v}" for k, v in error.context.items())
        message += f" (context: {context_str})"

    if error.cause:
        message += f" caused by {type(error.cause).__name__}: {str(error.cause)}"

    if include_stack_trace:
        message += f"\n{traceback.format_exc()}"

    logger.log(level, message)
