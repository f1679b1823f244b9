# CREATE FILE: utils/logging.py

import json
import os
import re
import time
import traceback
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Any, Union


class StructuredLogger:
    """
    Structured JSON logger shared by the portal's routing, pricing and cart services.

    Every entry carries the service name, environment and process metadata so
    lines from the three services can be correlated by request id.
    """

    def __init__(self, service_name: str, environment: str = None):
        self.service_name = service_name
        self.environment = environment or os.getenv('ENVIRONMENT', 'development')
        self.version = os.getenv('SERVICE_VERSION', '1.0.0')
        self.enable_debug = os.getenv('DEBUG_LOGGING', 'false').lower() == 'true'

        self.base_fields = {
            'service': self.service_name,
            'environment': self.environment,
            'version': self.version,
            'hostname': os.getenv('HOSTNAME', 'unknown'),
            'process_id': os.getpid()
        }

    def _create_log_entry(self, level: str, message: str, **kwargs) -> Dict[str, Any]:
        """Create a structured log entry with standard fields"""
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': level.upper(),
            'message': message,
            **self.base_fields
        }

        for key, value in kwargs.items():
            if value is not None:
                entry[key] = value

        return entry

    def _log(self, level: str, message: str, **kwargs):
        """Output structured log entry to stdout"""
        log_entry = self._create_log_entry(level, message, **kwargs)
        print(json.dumps(log_entry, default=str))

    def debug(self, message: str, **kwargs):
        """Debug level logging (only if debug enabled)"""
        if self.enable_debug:
            self._log('debug', message, **kwargs)

    def info(self, message: str, **kwargs):
        self._log('info', message, **kwargs)

    def warning(self, message: str, error: Exception = None, **kwargs):
        error_details = {}
        if error:
            error_details = {
                'error_type': type(error).__name__,
                'error_message': str(error)
            }
        self._log('warning', message, **error_details, **kwargs)

    def error(self, message: str, error: Exception = None, **kwargs):
        """Error level logging with optional exception details"""
        error_details = {}
        if error:
            error_details = {
                'error_type': type(error).__name__,
                'error_message': str(error),
                'stack_trace': traceback.format_exc() if self.enable_debug else None
            }

        self._log('error', message, **error_details, **kwargs)

    def critical(self, message: str, error: Exception = None, **kwargs):
        """Critical level logging, always with a stack trace"""
        error_details = {}
        if error:
            error_details = {
                'error_type': type(error).__name__,
                'error_message': str(error),
                'stack_trace': traceback.format_exc()
            }

        self._log('critical', message, **error_details, **kwargs)

    # Specialized logging methods

    def request_start(self, request_id: str, endpoint: str, method: str = 'POST',
                      user_id: str = None, **kwargs):
        self.info(
            f"Request started: {method} {endpoint}",
            action='request_start',
            request_id=request_id,
            endpoint=endpoint,
            method=method,
            user_id=user_id,
            **kwargs
        )

    def request_end(self, request_id: str, endpoint: str, duration_ms: float,
                    status_code: int = 200, **kwargs):
        """Log the end of a request with timing"""
        level = 'info' if status_code < 400 else 'warning' if status_code < 500 else 'error'

        self._log(
            level,
            f"Request completed: {endpoint} ({status_code})",
            action='request_end',
            request_id=request_id,
            endpoint=endpoint,
            status_code=status_code,
            duration_ms=round(duration_ms, 2),
            performance_category=self._categorize_performance(duration_ms),
            **kwargs
        )

    def business_event(self, event_type: str, request_id: str = None,
                       user_id: str = None, amount: float = None,
                       order_id: str = None, **kwargs):
        """Log business events (cart admissions, routing decisions, ...)"""
        self.info(
            f"Business event: {event_type}",
            action='business_event',
            event_type=event_type,
            request_id=request_id,
            user_id=user_id,
            amount=amount,
            order_id=order_id,
            **kwargs
        )

    def api_call(self, target_service: str, endpoint: str, method: str = 'POST',
                 duration_ms: float = None, status_code: int = None,
                 request_id: str = None, **kwargs):
        """Log outbound calls to other services"""
        level = 'info'
        if status_code and status_code >= 400:
            level = 'warning' if status_code < 500 else 'error'

        self._log(
            level,
            f"API call: {method} {target_service}{endpoint}",
            action='api_call',
            target_service=target_service,
            endpoint=endpoint,
            method=method,
            duration_ms=duration_ms,
            status_code=status_code,
            request_id=request_id,
            **kwargs
        )

    def data_operation(self, operation: str, table: str = None,
                       record_count: int = None, duration_ms: float = None,
                       request_id: str = None, **kwargs):
        """Log data store reads and writes"""
        self.info(
            f"Data operation: {operation}",
            action='data_operation',
            operation=operation,
            table=table,
            record_count=record_count,
            duration_ms=duration_ms,
            request_id=request_id,
            **kwargs
        )

    def _categorize_performance(self, duration_ms: float) -> str:
        if duration_ms < 100:
            return 'fast'
        elif duration_ms < 500:
            return 'normal'
        elif duration_ms < 2000:
            return 'slow'
        else:
            return 'very_slow'

    @contextmanager
    def request_context(self, request_id: str = None, endpoint: str = None,
                        method: str = 'POST', user_id: str = None, status_code: int = 200):
        """
        Context manager for request logging with automatic timing.

        status_code is the status logged on success. An exception carrying a
        status_code (HTTPException, rejected admissions) is logged with its
        own status; any other exception is logged as a 500.
        """
        request_id = request_id or str(uuid.uuid4())
        start_time = time.time()

        try:
            if endpoint:
                self.request_start(request_id, endpoint, method, user_id)
            yield request_id
        except Exception as e:
            status_code = getattr(e, 'status_code', 500)
            if status_code >= 500:
                self.error(f"Request failed: {endpoint}", error=e, request_id=request_id)
            raise
        finally:
            if endpoint:
                duration_ms = (time.time() - start_time) * 1000
                self.request_end(request_id, endpoint, duration_ms, status_code=status_code)

    @contextmanager
    def operation_context(self, operation_name: str, request_id: str = None, **kwargs):
        """Time a block of work at debug level; failures are logged and re-raised"""
        start_time = time.time()
        self.debug(f"Operation started: {operation_name}",
                   action='operation_start', operation=operation_name, request_id=request_id, **kwargs)
        try:
            yield
        except Exception as e:
            self.error(f"Operation failed: {operation_name}",
                       error=e,
                       action='operation_error',
                       operation=operation_name,
                       duration_ms=elapsed_ms(start_time),
                       request_id=request_id,
                       **kwargs)
            raise
        self.debug(f"Operation completed: {operation_name}",
                   action='operation_end', operation=operation_name,
                   duration_ms=elapsed_ms(start_time), request_id=request_id, **kwargs)


def get_logger(service_name: str) -> StructuredLogger:
    """Get a configured logger for a service"""
    return StructuredLogger(service_name)


# PII sanitization

DEFAULT_REDACT_FIELDS = {
    'email', 'phone', 'ssn', 'password', 'token', 'api_key', 'secret',
    'address', 'street', 'patient_name', 'patient_email', 'patient_phone',
    'patient_address', 'patient_address_street', 'patient_address_city',
    'patient_address_zip', 'date_of_birth', 'gender_at_birth'
}

EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
PHONE_PATTERN = re.compile(r'\b(?:\+?1[-.\s]?)?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4}\b')


def sanitize_pii(data: Any, redact_fields: set = None) -> Any:
    """
    Recursively sanitize PII from data structures before logging.

    Args:
        data: The data to sanitize
        redact_fields: Set of field names to redact (default: patient and contact fields)

    Returns:
        Sanitized copy of the data with PII fields redacted
    """
    if redact_fields is None:
        redact_fields = DEFAULT_REDACT_FIELDS

    if isinstance(data, dict):
        return {
            key: '[REDACTED]' if key.lower() in redact_fields
            else sanitize_pii(value, redact_fields)
            for key, value in data.items()
        }
    elif isinstance(data, list):
        return [sanitize_pii(item, redact_fields) for item in data]
    elif isinstance(data, str):
        if EMAIL_PATTERN.search(data):
            return '[REDACTED_EMAIL]'
        if PHONE_PATTERN.search(data):
            return '[REDACTED_PHONE]'
        return data
    else:
        return data


def elapsed_ms(start_time: float) -> Union[float, int]:
    """Milliseconds since a time.time() reading, rounded for log output"""
    return round((time.time() - start_time) * 1000, 2)
