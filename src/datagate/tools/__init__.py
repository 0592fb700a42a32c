"""Database functions exposed to the tool-calling agent."""
from .catalog import build_default_registrations
from .registry import (
    DatabaseFunction,
    FunctionParameter,
    FunctionRegistration,
    FunctionRegistry,
    ParameterType,
    format_functions_for_llm,
)

__all__ = [
    "DatabaseFunction",
    "FunctionParameter",
    "FunctionRegistration",
    "FunctionRegistry",
    "ParameterType",
    "build_default_registrations",
    "format_functions_for_llm",
]
