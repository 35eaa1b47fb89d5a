"""
Log sanitization to prevent sensitive data leakage.

Automatically redacts sensitive information from text logs including:
- Bearer and JWT tokens
- Passwords
- Secrets
- Database URLs with passwords
"""
import re
import logging


class SanitizingFormatter(logging.Formatter):
    """
    Custom log formatter that sanitizes sensitive data.

    Automatically redacts:
    - Bearer tokens
    - JWT tokens
    - Passwords
    - Secrets
    - Database URLs with passwords
    - Authorization headers
    """

    PATTERNS = [
        # Bearer tokens
        (re.compile(r'Bearer\s+([a-zA-Z0-9_\-\.]{20,})', re.IGNORECASE), r'Bearer [REDACTED]'),

        # JWT tokens (header.payload.signature format)
        (re.compile(r'eyJ[a-zA-Z0-9_\-]+\.eyJ[a-zA-Z0-9_\-]+\.[a-zA-Z0-9_\-]+'), r'[REDACTED_JWT]'),

        # Passwords
        (re.compile(r'password["\s:=]+([^\s,\]}"\']+)', re.IGNORECASE), r'password=[REDACTED]'),

        # Secrets
        (re.compile(r'secret["\s:=]+([a-zA-Z0-9_\-]{20,})', re.IGNORECASE), r'secret=[REDACTED]'),

        # Database and broker URLs with passwords
        (re.compile(r'://([^:/]+):([^@]+)@'), r'://\1:[REDACTED]@'),

        # Authorization headers
        (re.compile(r'Authorization["\s:]+([^\s,\]}"\']+)', re.IGNORECASE), r'Authorization: [REDACTED]'),
    ]

    @classmethod
    def sanitize(cls, text):
        """Apply every redaction pattern to a string."""
        for pattern, replacement in cls.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def format(self, record):
        """
        Format log record and sanitize sensitive data.

        Args:
            record: LogRecord instance

        Returns:
            Sanitized log message
        """
        return self.sanitize(super().format(record))


class SanitizingFilter(logging.Filter):
    """
    Logging filter that sanitizes sensitive data in log records.

    Sanitizes the message and string args before formatting.
    """

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = SanitizingFormatter.sanitize(record.msg)

        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                SanitizingFormatter.sanitize(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )

        return True
