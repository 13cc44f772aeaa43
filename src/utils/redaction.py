"""Secret redaction for logs, CLI output and API error responses.

The provider token travels in the Authorization header and sits in the
loaded config as ``api_token``; neither may reach a log line. Dict keys are
matched case-insensitively by substring, so ``api_token``, ``X-Api-Token``
and ``Authorization`` are all caught.
"""

import re
from typing import Any

# Substring patterns matched case-insensitively against dict keys
_DEFAULT_SENSITIVE_PATTERNS = frozenset({
    "secret", "token", "authorization", "api_key", "password", "credential",
})

_REDACTED = "***REDACTED***"


def _is_sensitive_key(key: str, sensitive_patterns: frozenset[str]) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in sensitive_patterns)


def _redact_value(value: Any, sensitive_patterns: frozenset[str]) -> Any:
    if isinstance(value, dict):
        return redact_for_logging(value, sensitive_patterns)
    if isinstance(value, list):
        return [_redact_value(item, sensitive_patterns) for item in value]
    return value


def redact_for_logging(
    obj: dict,
    sensitive_patterns: frozenset[str] = _DEFAULT_SENSITIVE_PATTERNS,
) -> dict:
    """Return a copy of ``obj`` with sensitive values replaced.

    Args:
        obj: Dict to redact (not mutated).
        sensitive_patterns: Key substrings whose values are replaced.

    Returns:
        New dict; nested dicts and lists are redacted recursively.
    """
    result = {}
    for key, value in obj.items():
        if _is_sensitive_key(key, sensitive_patterns):
            result[key] = _REDACTED if value is not None else None
        else:
            result[key] = _redact_value(value, sensitive_patterns)
    return result


_SENSITIVE_KEYWORDS = r"secret|token|password|api_key|authorization|credential"
_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    # Authorization: Bearer <token>
    r"Authorization\s*:\s*Bearer\s+\S+"
    r"|"
    # Bare "Bearer <token>"
    r"Bearer\s+\S+"
    r"|"
    # "key": "value"
    r'"(?:' + _SENSITIVE_KEYWORDS + r')"\s*:\s*"[^"]*"'
    r"|"
    # key=value (unquoted, up to whitespace)
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\S+"
    r")",
)


def sanitize_error_message(msg: str | None, max_length: int = 500) -> str | None:
    """Redact token-looking fragments from a free-text message and truncate it.

    Provider error messages are echoed back to API callers; this keeps a
    token that leaked into one from going further.

    Args:
        msg: Message to sanitize (None passes through).
        max_length: Maximum length of the result.

    Returns:
        Sanitized and truncated message, or None.
    """
    if msg is None:
        return None
    sanitized = _SENSITIVE_VALUE_PATTERNS.sub(_REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[: max_length - 3] + "..."
    return sanitized
