"""
Database Function Registry.

Provides the named, schema-described operations the tool-calling agent may
invoke, and the dispatcher that runs them. Each registration declares the
entity and permission level it needs; the dispatcher checks that declared
requirement before binding parameters or touching storage.

Dispatch sequence:
1. Resolve the function name (NotFoundError if unknown)
2. Check the declared (entity, level) against the caller's role
3. Bind parameters: apply defaults, reject missing required ones
4. Await the registration's executor; the engines re-check permissions
5. Typed gate errors pass through; anything else becomes FunctionExecutionError
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from ..access.entities import EntityType
from ..access.permissions import PermissionLevel, PermissionMatrix
from ..api.error_sanitizer import sanitize_error_message
from ..api.exceptions import (
    BadRequestError,
    ConfigurationError,
    DataGateError,
    FunctionExecutionError,
    NotFoundError,
    PermissionDeniedError,
)

logger = logging.getLogger(__name__)


class DatabaseFunction(str, Enum):
    """Names of every function in the catalog."""

    QUERY_POWER_DATA = "queryPowerData"
    GET_POWER_DATA_BY_ID = "getPowerDataById"
    GET_POWER_DATA_STATS = "getPowerDataStats"
    GET_POWER_DATA_TIME_SERIES = "getPowerDataTimeSeries"
    QUERY_ENVIRONMENTAL_DATA = "queryEnvironmentalData"
    GET_ENVIRONMENTAL_DATA_BY_ID = "getEnvironmentalDataById"
    GET_ENVIRONMENTAL_DATA_STATS = "getEnvironmentalDataStats"
    GET_ENVIRONMENTAL_DATA_TIME_SERIES = "getEnvironmentalDataTimeSeries"
    QUERY_EQUIPMENT = "queryEquipment"
    GET_EQUIPMENT_BY_ID = "getEquipmentById"
    UPDATE_EQUIPMENT = "updateEquipment"
    CREATE_EQUIPMENT = "createEquipment"
    GET_SETTINGS = "getSettings"
    UPDATE_SETTINGS = "updateSettings"
    GET_TASKS = "getTasks"
    GET_TASK_BY_ID = "getTaskById"
    CREATE_TASK = "createTask"
    UPDATE_TASK_STATUS = "updateTaskStatus"
    CREATE_NOTIFICATION = "createNotification"
    GET_NOTIFICATIONS = "getNotifications"


class ParameterType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"


FunctionExecutor = Callable[[dict[str, Any], str], Awaitable[Any]]


@dataclass(frozen=True)
class FunctionParameter:
    """One parameter of a registered function.

    Attributes:
        name: Parameter name as the agent supplies it
        type: JSON type of the value
        description: Shown to the model in the tool schema
        required: Whether the caller must supply it
        default: Value used when an optional parameter is omitted
    """

    name: str
    type: ParameterType
    description: str
    required: bool = False
    default: Any = None

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {
            "type": self.type.value,
            "description": self.description,
        }
        if self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass(frozen=True)
class FunctionRegistration:
    """A catalog entry: schema, declared permission requirement and executor."""

    name: DatabaseFunction
    description: str
    required_entity_type: EntityType
    required_permission_level: PermissionLevel
    execute: FunctionExecutor = field(repr=False, compare=False)
    parameters: tuple[FunctionParameter, ...] = ()

    @property
    def parameters_schema(self) -> dict[str, Any]:
        """JSON Schema object describing the parameters."""
        return {
            "type": "object",
            "properties": {p.name: p.to_json_schema() for p in self.parameters},
            "required": [p.name for p in self.parameters if p.required],
        }

    def to_openai_format(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name.value,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    def to_anthropic_format(self) -> dict[str, Any]:
        """Convert to Anthropic tool use format."""
        return {
            "name": self.name.value,
            "description": self.description,
            "input_schema": self.parameters_schema,
        }

    def bind_params(self, params: Any) -> dict[str, Any]:
        """Apply defaults and check required parameters.

        Unknown keys are dropped; executors only ever see declared names.

        Raises:
            BadRequestError: If params is not an object or a required
                parameter is missing
        """
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise BadRequestError("params must be an object", field="params")

        bound: dict[str, Any] = {}
        for parameter in self.parameters:
            value = params.get(parameter.name)
            if value is not None:
                bound[parameter.name] = value
            elif parameter.required:
                raise BadRequestError(
                    f"Missing required parameter '{parameter.name}' for {self.name.value}",
                    field=parameter.name,
                )
            else:
                bound[parameter.name] = copy.deepcopy(parameter.default)
        return bound


class FunctionRegistry:
    """Immutable catalog of database functions plus the dispatcher.

    Usage:
        registry = FunctionRegistry(build_default_registrations(...), matrix)

        # Tool schemas for the model, filtered to what the role may run
        tools = [r.to_openai_format() for r in registry.list_functions("operator")]

        # Dispatch a tool call
        rows = await registry.execute_database_function(
            "queryPowerData", {"limit": 10}, "user"
        )
    """

    def __init__(
        self,
        registrations: Iterable[FunctionRegistration],
        matrix: PermissionMatrix,
    ):
        """Build the registry.

        Raises:
            ConfigurationError: If two registrations share a name
        """
        table: dict[DatabaseFunction, FunctionRegistration] = {}
        for registration in registrations:
            name = DatabaseFunction(registration.name)
            if name in table:
                raise ConfigurationError(
                    f"Duplicate function registration: {name.value}",
                    details={"function": name.value},
                )
            table[name] = registration

        self.matrix = matrix
        self._registrations: Mapping[DatabaseFunction, FunctionRegistration] = (
            MappingProxyType(table)
        )
        logger.info(f"Function registry loaded {len(table)} functions")

    def get_database_function(self, name: Any) -> Optional[FunctionRegistration]:
        """Find a registration by name; None if the name is unknown."""
        try:
            key = DatabaseFunction(name)
        except ValueError:
            return None
        return self._registrations.get(key)

    def list_functions(self, role: str) -> list[FunctionRegistration]:
        """Registrations whose declared requirement ``role`` satisfies."""
        return [
            r for r in self._registrations.values()
            if self.matrix.has_permission(
                role, r.required_entity_type, r.required_permission_level
            )
        ]

    async def execute_database_function(
        self,
        name: Any,
        params: Any,
        role: str,
    ) -> Any:
        """Run a function under the caller's role.

        Args:
            name: Function name (e.g., "queryPowerData")
            params: Parameter object supplied by the agent
            role: Caller role

        Returns:
            Whatever the function's executor returns

        Raises:
            NotFoundError: Unknown function name
            PermissionDeniedError: Role lacks the declared requirement
            BadRequestError: Invalid or missing parameters
            InternalStorageError: Storage failure
            FunctionExecutionError: Any other failure inside the function
        """
        registration = self.get_database_function(name)
        if registration is None:
            logger.warning(f"Unknown database function requested: {name}")
            raise NotFoundError("Function", name)

        function_name = registration.name.value
        if not self.matrix.has_permission(
            role,
            registration.required_entity_type,
            registration.required_permission_level,
        ):
            logger.warning(
                f"Permission denied: role={role} function={function_name} "
                f"requires {registration.required_permission_level.value} on "
                f"{registration.required_entity_type.value}"
            )
            raise PermissionDeniedError(role, "execute", function_name)

        bound = registration.bind_params(params)
        logger.debug(f"Executing function: {function_name} role={role}")

        try:
            return await registration.execute(bound, role)
        except DataGateError:
            raise
        except Exception as e:
            logger.error(f"Function {function_name} failed: {e}", exc_info=True)
            raise FunctionExecutionError(
                function_name,
                sanitize_error_message(str(e), f"Error executing function '{function_name}'"),
                cause=e,
            )

    def __len__(self) -> int:
        return len(self._registrations)

    def __contains__(self, name: Any) -> bool:
        return self.get_database_function(name) is not None


def format_functions_for_llm(registrations: Iterable[FunctionRegistration]) -> list[dict[str, Any]]:
    """Convert registrations to the OpenAI tool list the agent consumes."""
    return [r.to_openai_format() for r in registrations]
