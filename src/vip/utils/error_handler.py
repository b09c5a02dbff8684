"""
Error handling and logging system for Vulnerability Intelligence Pipeline
"""
import logging
import logging.handlers
import json
import traceback
import sys
import os
from datetime import datetime
from typing import Dict, Any, Optional, Deque, Callable
from enum import Enum
from dataclasses import dataclass, asdict
import threading
from collections import deque
from functools import wraps

from vip.utils.config import get_config

DEFAULT_MAX_ERROR_RECORDS = 1000


class ErrorSeverity(Enum):
    """Error severity levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for better classification"""
    API_ERROR = "api_error"
    DATA_VALIDATION = "data_validation"
    NETWORK_ERROR = "network_error"
    CONFIGURATION = "configuration"
    DATABASE_ERROR = "database_error"
    PROCESSING_ERROR = "processing_error"
    UNKNOWN = "unknown"


class ErrorKind(Enum):
    """Failure kinds callers branch on"""
    TRANSIENT_SERVICE = "transient_service"
    PERMANENT_SERVICE = "permanent_service"
    DOCUMENT_PARSE = "document_parse"
    FIELD_PARSE = "field_parse"
    CREDENTIAL_DECRYPTION = "credential_decryption"
    UNRESOLVED_CLASSIFICATION = "unresolved_classification"
    MALFORMED_IDENTIFIER = "malformed_identifier"


@dataclass
class ErrorContext:
    """Context information for errors"""
    operation: str
    component: str
    vuln_id: Optional[str] = None
    coordinate: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None


@dataclass
class ErrorRecord:
    """Structured error record"""
    timestamp: str
    error_id: str
    category: ErrorCategory
    severity: ErrorSeverity
    kind: Optional[ErrorKind]
    message: str
    exception_type: str
    traceback: str
    context: ErrorContext
    retry_count: int = 0


@dataclass
class ServiceResult:
    """Outcome of a call to an external service"""
    ok: bool
    value: Any = None
    error_kind: Optional[ErrorKind] = None
    status_code: Optional[int] = None
    message: str = ""

    @classmethod
    def success(cls, value: Any, status_code: Optional[int] = 200) -> "ServiceResult":
        return cls(ok=True, value=value, status_code=status_code)

    @classmethod
    def failure(cls, error_kind: ErrorKind, message: str,
                status_code: Optional[int] = None) -> "ServiceResult":
        return cls(ok=False, error_kind=error_kind, status_code=status_code, message=message)


class VIPException(Exception):
    """Base exception class for Vulnerability Intelligence Pipeline"""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                 context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext(operation="unknown", component="unknown")
        self.timestamp = datetime.now().isoformat()


class TransientServiceError(VIPException):
    """Network failure or retryable response from an external service"""
    kind = ErrorKind.TRANSIENT_SERVICE

    def __init__(self, message: str, status_code: Optional[int] = None,
                 context: Optional[ErrorContext] = None):
        super().__init__(message, ErrorCategory.NETWORK_ERROR, ErrorSeverity.HIGH, context)
        self.status_code = status_code


class RetryExhaustedError(TransientServiceError):
    """Every retry attempt failed"""

    def __init__(self, message: str, attempts: int, status_code: Optional[int] = None,
                 last_error: Optional[BaseException] = None,
                 context: Optional[ErrorContext] = None):
        super().__init__(message, status_code, context)
        self.attempts = attempts
        self.last_error = last_error


class PermanentServiceError(VIPException):
    """Non-retryable failure from an external service"""
    kind = ErrorKind.PERMANENT_SERVICE

    def __init__(self, message: str, status_code: Optional[int] = None,
                 context: Optional[ErrorContext] = None):
        super().__init__(message, ErrorCategory.API_ERROR, ErrorSeverity.HIGH, context)
        self.status_code = status_code


class UnexpectedResponseError(PermanentServiceError):
    """Service answered with a status other than 200"""


class DocumentParseError(VIPException):
    """Malformed top-level feed document"""
    kind = ErrorKind.DOCUMENT_PARSE

    def __init__(self, message: str, file_path: Optional[str] = None,
                 context: Optional[ErrorContext] = None):
        super().__init__(message, ErrorCategory.DATA_VALIDATION, ErrorSeverity.HIGH, context)
        self.file_path = file_path


class FieldParseError(VIPException):
    """Malformed field inside a single feed entry"""
    kind = ErrorKind.FIELD_PARSE

    def __init__(self, message: str, field: Optional[str] = None,
                 context: Optional[ErrorContext] = None):
        super().__init__(message, ErrorCategory.DATA_VALIDATION, ErrorSeverity.LOW, context)
        self.field = field


class CredentialDecryptionError(VIPException):
    """Stored service credential could not be decrypted"""
    kind = ErrorKind.CREDENTIAL_DECRYPTION

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, ErrorCategory.CONFIGURATION, ErrorSeverity.MEDIUM, context)


class UnresolvedClassificationError(VIPException):
    """CWE identifier unknown to the classification lookup"""
    kind = ErrorKind.UNRESOLVED_CLASSIFICATION

    def __init__(self, message: str, cwe: Optional[str] = None,
                 context: Optional[ErrorContext] = None):
        super().__init__(message, ErrorCategory.DATA_VALIDATION, ErrorSeverity.MEDIUM, context)
        self.cwe = cwe


class MalformedIdentifierError(VIPException):
    """Invalid package or platform coordinate"""
    kind = ErrorKind.MALFORMED_IDENTIFIER

    def __init__(self, message: str, identifier: Optional[str] = None,
                 context: Optional[ErrorContext] = None):
        super().__init__(message, ErrorCategory.DATA_VALIDATION, ErrorSeverity.LOW, context)
        self.identifier = identifier


class AnalysisAbortedError(VIPException):
    """A batch analysis stopped before all pages were processed"""

    def __init__(self, message: str, kind: Optional[ErrorKind] = None,
                 status_code: Optional[int] = None, pages_completed: int = 0,
                 context: Optional[ErrorContext] = None):
        super().__init__(message, ErrorCategory.PROCESSING_ERROR, ErrorSeverity.HIGH, context)
        self.kind = kind
        self.status_code = status_code
        self.pages_completed = pages_completed


class ErrorHandler:
    """Centralized error handling and logging system"""

    def __init__(self, max_records: Optional[int] = None):
        if max_records is None:
            max_records = int(get_config().get('logging.max_error_records', DEFAULT_MAX_ERROR_RECORDS))
        # Only the most recent records are kept; counters cover every error
        self.error_records: Deque[ErrorRecord] = deque(maxlen=max_records)
        self.error_counts: Dict[str, int] = {}
        self.category_counts: Dict[str, int] = {}
        self.kind_counts: Dict[str, int] = {}
        self.total_errors = 0
        self._lock = threading.Lock()
        self.logger = self._setup_logger()

    def _setup_logger(self) -> logging.Logger:
        """Setup structured logger with file rotation"""
        config = get_config()
        logger = logging.getLogger('vip')
        logger.setLevel(getattr(logging, str(config.get('logging.level', 'INFO')).upper(), logging.INFO))

        # Clear existing handlers
        logger.handlers.clear()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(
            config.get('logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        ))
        logger.addHandler(console_handler)

        log_file = config.get('logging.file')
        if log_file:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                log_file, maxBytes=10*1024*1024, backupCount=5
            )
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
            ))
            logger.addHandler(file_handler)

        # JSON handler for structured logging
        json_log_file = config.get('logging.json_file')
        if json_log_file:
            json_dir = os.path.dirname(json_log_file)
            if json_dir:
                os.makedirs(json_dir, exist_ok=True)

            json_handler = logging.handlers.RotatingFileHandler(
                json_log_file, maxBytes=10*1024*1024, backupCount=5
            )
            json_handler.setFormatter(JsonFormatter())
            logger.addHandler(json_handler)

        return logger

    def handle_error(self, error: Exception, context: Optional[ErrorContext] = None,
                     retry_count: int = 0) -> ErrorRecord:
        """Record and log an error"""
        with self._lock:
            error_record = self._create_error_record(error, context, retry_count)
            self.error_records.append(error_record)

            error_key = f"{error_record.category.value}_{error_record.severity.value}"
            self.error_counts[error_key] = self.error_counts.get(error_key, 0) + 1
            category = error_record.category.value
            self.category_counts[category] = self.category_counts.get(category, 0) + 1
            if error_record.kind:
                kind = error_record.kind.value
                self.kind_counts[kind] = self.kind_counts.get(kind, 0) + 1
            self.total_errors += 1

            self._log_error(error_record)
            return error_record

    def _create_error_record(self, error: Exception, context: Optional[ErrorContext],
                             retry_count: int) -> ErrorRecord:
        """Create structured error record"""
        if isinstance(error, VIPException):
            category = error.category
            severity = error.severity
            kind = error.kind
            context = context or error.context
        else:
            category = self._classify_error(error)
            severity = ErrorSeverity.HIGH
            kind = None

        error_id = f"{category.value}_{int(datetime.now().timestamp())}"

        return ErrorRecord(
            timestamp=datetime.now().isoformat(),
            error_id=error_id,
            category=category,
            severity=severity,
            kind=kind,
            message=str(error),
            exception_type=type(error).__name__,
            traceback=''.join(traceback.format_exception(type(error), error, error.__traceback__)),
            context=context or ErrorContext(operation="unknown", component="unknown"),
            retry_count=retry_count
        )

    def _classify_error(self, error: Exception) -> ErrorCategory:
        """Classify error based on exception type"""
        error_type = type(error).__name__.lower()

        if 'request' in error_type or 'http' in error_type or 'connection' in error_type:
            return ErrorCategory.NETWORK_ERROR
        elif 'json' in error_type or 'decode' in error_type or 'value' in error_type:
            return ErrorCategory.DATA_VALIDATION
        elif 'sql' in error_type or 'database' in error_type:
            return ErrorCategory.DATABASE_ERROR
        return ErrorCategory.UNKNOWN

    def _log_error(self, error_record: ErrorRecord):
        """Log error with a level matching its severity"""
        log_message = f"[{error_record.error_id}] {error_record.message}"
        if error_record.context.vuln_id:
            log_message += f" (vulnerability: {error_record.context.vuln_id})"
        if error_record.context.coordinate:
            log_message += f" (coordinate: {error_record.context.coordinate})"

        extra = {'error_record': asdict(error_record)}
        if error_record.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(log_message, extra=extra)
        elif error_record.severity == ErrorSeverity.HIGH:
            self.logger.error(log_message, extra=extra)
        elif error_record.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(log_message, extra=extra)
        else:
            self.logger.info(log_message, extra=extra)

    def get_error_summary(self) -> Dict[str, Any]:
        """Get error summary statistics"""
        with self._lock:
            return {
                'total_errors': self.total_errors,
                'retained_records': len(self.error_records),
                'errors_by_category': dict(self.category_counts),
                'errors_by_kind': dict(self.kind_counts),
            }

    def clear_errors(self):
        """Clear error records (for testing or maintenance)"""
        with self._lock:
            self.error_records.clear()
            self.error_counts.clear()
            self.category_counts.clear()
            self.kind_counts.clear()
            self.total_errors = 0


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if hasattr(record, 'error_record'):
            log_entry['error_record'] = record.error_record

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        return json.dumps(log_entry, default=str)


def log_operation(operation: str, component: str):
    """Decorator for operation logging"""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_error_handler().logger
            logger.info(f"Starting {operation} in {component}")

            start_time = datetime.now()
            try:
                result = func(*args, **kwargs)
                duration = (datetime.now() - start_time).total_seconds()
                logger.info(f"Completed {operation} in {component} in {duration:.2f}s")
                return result
            except Exception as e:
                duration = (datetime.now() - start_time).total_seconds()
                logger.error(f"Failed {operation} in {component} after {duration:.2f}s: {e}")
                raise

        return wrapper
    return decorator


# Global error handler instance, created on first use
_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get the global error handler"""
    global _error_handler
    if _error_handler is None:
        _error_handler = ErrorHandler()
    return _error_handler


def handle_error(error: Exception, context: Optional[ErrorContext] = None) -> ErrorRecord:
    """Handle an error using the global error handler"""
    return get_error_handler().handle_error(error, context)


def get_logger(name: str = 'vip') -> logging.Logger:
    """Get a logger under the 'vip' hierarchy"""
    if name == 'vip' or name.startswith('vip.'):
        return logging.getLogger(name)
    return logging.getLogger('vip').getChild(name)
