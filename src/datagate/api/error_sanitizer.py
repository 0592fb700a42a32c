"""
Error Message Sanitization for Agent-Facing Errors.

Every error message that leaves the data gate, whether as a raised
exception's public message, an HTTP ``detail``, or the ``error`` field of a
failed raw SQL ExecutionResult, is passed through this module first. The
calling agent sees enough to correct its input; it never sees credentials,
connection strings, row values echoed by PostgreSQL, file paths, or stack
traces.

The original, unsanitized error is always logged server-side by the caller
before sanitizing.

Usage:
    from src.datagate.api.error_sanitizer import sanitize_error_message

    try:
        rows = await conn.fetch(sql)
    except Exception as e:
        logger.error(f"Raw SQL failed: {e}", exc_info=e)
        return {"error": sanitize_error_message(str(e), "SQL error")}

Redaction rules (applied in order):
    - Connection URLs and libpq key=value credentials
    - Values PostgreSQL echoes back in constraint errors:
      Key (email)=(sam@example.com) → Key (email)=([REDACTED])
    - Keys, tokens and passwords; the dashboard's API key variable names
    - Email addresses
    - File paths and Python stack traces
    - IPv4 addresses, JWTs, long base64/hex blobs
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

GENERIC_MESSAGE = "An error occurred"
TRUNCATION_MARKER = "... [TRUNCATED]"


@dataclass(frozen=True)
class RedactionRule:
    """One named substitution.

    Attributes:
        name: Identifier reported in SanitizationResult.rules_applied
        pattern: Case-insensitive regex
        replacement: Substitution text (may use group references)
    """

    name: str
    pattern: str
    replacement: str
    compiled: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "compiled", re.compile(self.pattern, re.IGNORECASE))

    def apply(self, text: str) -> tuple[str, int]:
        return self.compiled.subn(self.replacement, text)


@dataclass
class SanitizationResult:
    """Outcome of sanitizing one message.

    Attributes:
        sanitized_message: Text safe to return to the agent
        redaction_count: Total substitutions made
        rules_applied: Names of the rules that matched, in order
        truncated: Whether the message was cut to the length limit
    """

    sanitized_message: str
    redaction_count: int = 0
    rules_applied: tuple[str, ...] = ()
    truncated: bool = False

    @property
    def was_sanitized(self) -> bool:
        return self.redaction_count > 0


# Connection URLs come first so the generic password rule never sees them
DEFAULT_RULES: tuple[RedactionRule, ...] = (
    # Storage connection details
    RedactionRule("database_url", r"postgres(?:ql)?://\S+", "[DATABASE_URL]"),
    RedactionRule(
        "libpq_credential",
        r"\b(user|host|dbname|sslpassword)=(\S+)",
        r"\1=[REDACTED]",
    ),

    # Row values echoed in constraint and cast errors
    RedactionRule("key_values", r"Key \(([^)]*)\)=\((.*?)\)", r"Key (\1)=([REDACTED])"),
    RedactionRule("failing_row", r"Failing row contains \(.*?\)", "Failing row contains ([REDACTED])"),

    # Credentials
    RedactionRule("bearer_token", r"bearer\s+[\w\-.]+", "Bearer [REDACTED]"),
    RedactionRule("authorization", r"authorization[:\s]+\S+", "Authorization: [REDACTED]"),
    RedactionRule("api_key", r"api[-_]?key[=:\s]+[^\s,;]+", "api_key=[REDACTED]"),
    RedactionRule("access_token", r"access[-_]?token[=:\s]+[^\s,;]+", "access_token=[REDACTED]"),
    RedactionRule("password", r"(password|passwd)[=:\s]+[^\s,;]+", r"\1=[REDACTED]"),
    RedactionRule("secret", r"secret[=:\s]+[^\s,;]+", "secret=[REDACTED]"),
    RedactionRule(
        "env_var",
        r"\b(DATABASE_URL|JWT_SECRET|OPENAI_API_KEY|SOLCAST_API_KEY|WEATHER_API_KEY"
        r"|POWER_MONITORING_API_KEY|NOTIFICATIONS_API_KEY|TELEGRAM_BOT_TOKEN)\b(?=\s*[=:])",
        "[ENV_VAR]",
    ),

    # Personal data
    RedactionRule("email", r"\b[\w.+-]+@[\w-]+(?:\.[\w-]+)+\b", "[EMAIL]"),

    # Server internals
    RedactionRule(
        "stack_trace",
        r"Traceback \(most recent call last\):[\s\S]*?(?=\n\n|\n[A-Z]|\Z)",
        "[STACK_TRACE]",
    ),
    RedactionRule("source_location", r'File "[^"]+", line \d+', 'File "[REDACTED]", line [REDACTED]'),
    RedactionRule("unix_path", r"/(?:home|root|usr|var|etc|opt|srv|app|tmp)/[^\s,;\"']+", "[FILE_PATH]"),
    RedactionRule("windows_path", r"\b[A-Z]:\\[^\s,;]+", "[FILE_PATH]"),
    RedactionRule(
        "ipv4",
        r"\b(?:(?:25[0-5]|2[0-4]\d|1?\d?\d)\.){3}(?:25[0-5]|2[0-4]\d|1?\d?\d)\b",
        "[IP_ADDRESS]",
    ),

    # Opaque tokens
    RedactionRule("jwt", r"\beyJ[\w-]*\.eyJ[\w-]*\.[\w-]+", "[JWT_REDACTED]"),
    RedactionRule("hex_blob", r"\b[0-9a-f]{32,}\b", "[HEX_STRING]"),
    RedactionRule("base64_blob", r"\b[A-Za-z0-9+/]{40,}={0,2}", "[BASE64_REDACTED]"),
)


class ErrorSanitizer:
    """Applies the redaction rules, then length-limits and prefixes.

    Usage:
        sanitizer = ErrorSanitizer()
        result = sanitizer.sanitize(str(exc), error_type="SQL error")
        payload = {"error": result.sanitized_message}
    """

    def __init__(
        self,
        rules: Optional[Iterable[RedactionRule]] = None,
        max_message_length: int = 500,
    ):
        self.rules: list[RedactionRule] = list(DEFAULT_RULES if rules is None else rules)
        self.max_message_length = max_message_length

    def sanitize(self, message: str, error_type: Optional[str] = None) -> SanitizationResult:
        """Sanitize ``message``; ``error_type`` becomes a ``"type: "`` prefix.

        An empty message yields ``error_type`` itself (or a generic text).
        """
        if not message or not message.strip():
            return SanitizationResult(sanitized_message=error_type or GENERIC_MESSAGE)

        text = message
        total = 0
        applied = []
        for rule in self.rules:
            text, count = rule.apply(text)
            if count:
                total += count
                applied.append(rule.name)

        truncated = len(text) > self.max_message_length
        if truncated:
            text = text[: self.max_message_length] + TRUNCATION_MARKER

        if error_type and not text.startswith(error_type):
            text = f"{error_type}: {text}"

        return SanitizationResult(
            sanitized_message=text,
            redaction_count=total,
            rules_applied=tuple(applied),
            truncated=truncated,
        )

    def add_rule(self, name: str, pattern: str, replacement: str) -> None:
        """Register an extra rule, applied after the existing ones."""
        self.rules.append(RedactionRule(name, pattern, replacement))

    def is_safe(self, message: str) -> bool:
        """True when no rule would change ``message``."""
        return not any(rule.compiled.search(message) for rule in self.rules)


_default_sanitizer: Optional[ErrorSanitizer] = None


def get_sanitizer() -> ErrorSanitizer:
    """Process-wide sanitizer with the default rules."""
    global _default_sanitizer
    if _default_sanitizer is None:
        _default_sanitizer = ErrorSanitizer()
    return _default_sanitizer


def sanitize_error_message(message: str, error_type: Optional[str] = None) -> str:
    """Sanitize with the default rules and return only the text.

    Example:
        >>> sanitize_error_message("could not connect to postgresql://u:p@db/energy")
        'could not connect to [DATABASE_URL]'
    """
    return get_sanitizer().sanitize(message, error_type).sanitized_message


__all__ = [
    "DEFAULT_RULES",
    "ErrorSanitizer",
    "RedactionRule",
    "SanitizationResult",
    "get_sanitizer",
    "sanitize_error_message",
]
