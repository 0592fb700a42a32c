"""
Raw SQL guard: role-gated execution of ad hoc SQL text.

This is the agent's escape hatch for questions the function catalog cannot
answer. Text is validated BEFORE it reaches the driver:

1. Normalize: lower-case, collapse whitespace, drop trailing semicolons
2. Run the ordered rule table; the first rule that rejects the role wins
3. Execute as a single prepared statement and report rows (at most
   ``max_sql_rows`` of them), command verb, row count, duration and
   inferred column types

Matching is phrase-based over the whole normalized text, string literals
included. Every rule is checked twice: once against the text as written
and once with ``/* */`` and ``--`` comments replaced by a space, so
``DROP/**/TABLE`` is read as ``drop table``. A keyword hidden in a literal
or a comment is therefore treated as if it were live SQL.

``describe_schema`` lists the tables and readable columns a role may query,
so the agent can write SQL against names that exist.

Driver failures are returned as data (``success=False`` with a sanitized
error) so the agent can read the error and adjust its query. Policy
violations are raised as SQLPolicyViolation.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time as dt_time
from decimal import Decimal
from typing import Any, Optional, Sequence

from ..api.database import database_connection
from ..api.error_sanitizer import sanitize_error_message
from ..api.exceptions import BadRequestError, SQLPolicyViolation
from ..config import DataGateConfig
from .entities import EntityRegistry
from .permissions import ADMIN_ROLE, PermissionLevel, PermissionMatrix

logger = logging.getLogger(__name__)


# ============================================
# Result types
# ============================================

@dataclass
class ExecutionResult:
    """Outcome of one raw SQL execution.

    ``row_count`` is the count the server reported; ``rows`` holds at most
    ``max_sql_rows`` of them and ``truncated`` says whether any were cut.
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    command: str = ""
    row_count: int = 0
    duration_ms: float = 0.0
    success: bool = True
    error: Optional[str] = None
    columns: Optional[list[dict[str, str]]] = None
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _value_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, (float, Decimal)):
        return "decimal"
    if isinstance(value, (datetime, date, dt_time)):
        return "timestamp"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "json"
    return "text"


def infer_column_types(rows: Sequence[dict[str, Any]]) -> list[dict[str, str]]:
    """Describe columns from the runtime types of the first row's values."""
    if not rows:
        return []
    return [{"name": name, "type": _value_type(value)} for name, value in rows[0].items()]


# ============================================
# Policy rules
# ============================================

@dataclass(frozen=True)
class SQLRule:
    """One guard rule.

    Attributes:
        name: Rule identifier reported in SQLPolicyViolation.rule
        pattern: Regex searched in the normalized text
        allowed_roles: Roles that may run matching text; empty means nobody
        message: Explanation returned to the caller
        first_token: Match against the leading keyword only
    """

    name: str
    pattern: re.Pattern
    allowed_roles: frozenset[str]
    message: str
    first_token: bool = False

    def matches(self, normalized: str, leading: str) -> bool:
        target = leading if self.first_token else normalized
        return bool(self.pattern.search(target))


def _phrase(*phrases: str) -> re.Pattern:
    # Phrases must start at a word boundary so identifiers like "last_update"
    # do not match "update "
    alternatives = "|".join(re.escape(p) for p in phrases)
    return re.compile(rf"(?<![a-z0-9_])(?:{alternatives})")


PRIVILEGED_FIRST_TOKENS = (
    "create", "drop", "truncate", "alter", "grant", "revoke", "copy",
    "vacuum", "reindex", "cluster", "comment", "call", "do", "lock",
    "listen", "notify", "set", "reset",
)

# CREATE [TEMP | UNLOGGED] TABLE, and SELECT ... INTO (which also creates a
# table) unless the INTO belongs to INSERT INTO or MERGE INTO
_CREATE_TABLE = (
    r"(?<![a-z0-9_])create (?:(?:global |local )?(?:temp|temporary) |unlogged )?table"
    r"|(?<![a-z0-9_])select(?![a-z0-9_]).*?(?<![a-z0-9_])(?<!insert )(?<!merge )into(?![a-z0-9_])"
)

DEFAULT_RULES: tuple[SQLRule, ...] = (
    SQLRule(
        name="execute_statement",
        pattern=_phrase("execute ", "exec "),
        allowed_roles=frozenset(),
        message="EXECUTE statements are not allowed",
    ),
    SQLRule(
        name="create_table",
        pattern=re.compile(_CREATE_TABLE),
        allowed_roles=frozenset(),
        message="CREATE TABLE and SELECT INTO are not allowed",
    ),
    SQLRule(
        name="destructive",
        pattern=re.compile(
            r"(?<![a-z0-9_])(?:drop table|drop database|truncate table|delete from"
            r"|alter table .*drop column)"
        ),
        allowed_roles=frozenset({ADMIN_ROLE}),
        message="Destructive statements require the admin role",
    ),
    SQLRule(
        name="data_modification",
        pattern=_phrase("insert into", "merge into", "update ", "delete ", "alter "),
        allowed_roles=frozenset({ADMIN_ROLE, "manager"}),
        message="Data-modifying statements require the admin or manager role",
    ),
    SQLRule(
        name="privileged_command",
        pattern=re.compile(rf"^(?:{'|'.join(PRIVILEGED_FIRST_TOKENS)})$"),
        allowed_roles=frozenset({ADMIN_ROLE}),
        message="This command requires the admin role",
        first_token=True,
    ),
)


_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"--[^\n]*")
_LEADING_KEYWORD = re.compile(r"[a-z_]+")


def normalize_sql(raw_text: str) -> str:
    """Lower-case, collapse whitespace and strip trailing semicolons."""
    collapsed = " ".join(raw_text.lower().split())
    return collapsed.rstrip("; ").strip()


def strip_sql_comments(raw_text: str) -> str:
    """Replace block and line comments with a single space each.

    An unterminated ``/*`` is left in place.
    """
    return _LINE_COMMENT.sub(" ", _BLOCK_COMMENT.sub(" ", raw_text))


def leading_keyword(normalized: str) -> str:
    """First keyword of normalized text, ignoring opening parentheses."""
    match = _LEADING_KEYWORD.match(normalized.lstrip("( "))
    return match.group(0) if match else ""


# ============================================
# Guard
# ============================================

class RawSQLGuard:
    """Validate and run agent-authored SQL under the caller's role.

    Usage:
        guard = RawSQLGuard(pool, PermissionMatrix.default())
        result = await guard.execute_sql("SELECT COUNT(*) FROM power_data", "user")
        if result.success:
            print(result.rows, result.command, result.row_count)
    """

    def __init__(
        self,
        pool,
        matrix: PermissionMatrix,
        config: Optional[DataGateConfig] = None,
        rules: Sequence[SQLRule] = DEFAULT_RULES,
        entities: Optional[EntityRegistry] = None,
    ):
        self.pool = pool
        self.matrix = matrix
        self.config = config or DataGateConfig()
        self.rules = tuple(rules)
        self.entities = entities or EntityRegistry.default()

    def validate(self, raw_text: Any, role: str) -> str:
        """Apply every rule to ``raw_text`` for ``role``.

        Returns:
            The normalized statement text

        Raises:
            SQLPolicyViolation: Naming the first rule that rejected the text
        """
        if not isinstance(raw_text, str) or not raw_text.strip():
            self._reject("empty_statement", "SQL statement is empty", role)

        normalized = normalize_sql(raw_text)
        uncommented = normalize_sql(strip_sql_comments(raw_text))
        if not normalized or not uncommented:
            self._reject("empty_statement", "SQL statement is empty", role)

        if ";" in normalized:
            self._reject(
                "multiple_statements",
                "Only a single SQL statement may be executed",
                role,
            )

        leading = leading_keyword(uncommented)
        for rule in self.rules:
            if role in rule.allowed_roles:
                continue
            if rule.matches(normalized, leading) or rule.matches(uncommented, leading):
                self._reject(rule.name, rule.message, role)

        if role not in self.matrix.known_roles:
            self._reject("unknown_role", f"Role '{role}' may not execute SQL", role)

        return normalized

    async def execute_sql(
        self,
        raw_text: str,
        role: str,
        params: Optional[Sequence[Any]] = None,
    ) -> ExecutionResult:
        """Validate and execute one SQL statement.

        Args:
            raw_text: SQL text authored by the agent
            role: Caller role
            params: Optional positional values for $1..$n placeholders

        Returns:
            ExecutionResult; ``success=False`` with a sanitized error when
            the driver fails

        Raises:
            SQLPolicyViolation: If the text is rejected before execution
            BadRequestError: If params is not a list
        """
        normalized = self.validate(raw_text, role)
        if params is None:
            params = []
        if isinstance(params, (str, bytes, dict)) or not isinstance(params, (list, tuple)):
            raise BadRequestError("params must be a list", field="params")

        leading = leading_keyword(normalize_sql(strip_sql_comments(raw_text))).upper()
        started = time.perf_counter()
        try:
            async with database_connection(self.pool, timeout=self.config.acquire_timeout) as conn:
                statement = await conn.prepare(raw_text)
                records = await statement.fetch(*params)
                status = statement.get_statusmsg()
        except Exception as e:
            duration_ms = (time.perf_counter() - started) * 1000
            logger.error(f"Raw SQL failed for role={role}: {e}", exc_info=True)
            return ExecutionResult(
                command=leading,
                duration_ms=duration_ms,
                success=False,
                error=sanitize_error_message(str(e), "SQL error"),
            )

        duration_ms = (time.perf_counter() - started) * 1000
        max_rows = self.config.max_sql_rows
        truncated = len(records) > max_rows
        rows = [dict(record) for record in records[:max_rows]]
        command, row_count = self._parse_status(status, leading, len(records))

        logger.info(
            f"Raw SQL executed: role={role} command={command} rows={row_count} "
            f"duration={duration_ms:.1f}ms"
            + (f" truncated_to={max_rows}" if truncated else "")
        )
        logger.debug(f"Raw SQL: {normalized}")

        return ExecutionResult(
            rows=rows,
            command=command,
            row_count=row_count,
            duration_ms=duration_ms,
            success=True,
            columns=infer_column_types(rows),
            truncated=truncated,
        )

    def describe_schema(self, role: str) -> list[dict[str, Any]]:
        """Tables ``role`` may read, with their readable columns.

        Hidden columns (password hash, API keys) are left out, as are
        tables the role holds no READ grant on. An unknown role gets an
        empty list.

        Returns:
            ``[{"entity", "table", "columns": [{"name", "type"}]}]`` sorted
            by table name
        """
        tables = []
        for spec in self.entities:
            if not self.matrix.has_permission(role, spec.entity_type, PermissionLevel.READ):
                continue
            tables.append({
                "entity": spec.entity_type.value,
                "table": spec.table,
                "columns": [
                    {"name": column.name, "type": column.type.value}
                    for column in spec.readable_columns
                ],
            })
        tables.sort(key=lambda t: t["table"])
        logger.debug(f"Schema described for role={role}: {len(tables)} table(s)")
        return tables

    @staticmethod
    def _parse_status(
        status: Optional[str],
        fallback_command: str,
        fallback_count: int,
    ) -> tuple[str, int]:
        """Split a status message such as ``INSERT 0 3`` into (verb, count)."""
        if not status:
            return fallback_command, fallback_count
        parts = status.split()
        command = parts[0].upper()
        if len(parts) > 1 and parts[-1].isdigit():
            return command, int(parts[-1])
        return command, fallback_count

    def _reject(self, rule: str, message: str, role: str):
        logger.warning(f"SQL policy violation: rule={rule} role={role}")
        raise SQLPolicyViolation(message, rule=rule, role=role)


__all__ = [
    "DEFAULT_RULES",
    "ExecutionResult",
    "RawSQLGuard",
    "SQLRule",
    "infer_column_types",
    "leading_keyword",
    "normalize_sql",
    "strip_sql_comments",
]
