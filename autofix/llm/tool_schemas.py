"""
Tool Schemas
============
Declarative construction of tool definitions for the completion service.

Each tool parameter carries a ParamType. The ParamType is looked up in two
fixed tables, one building the JSON-schema fragment and one validating an
incoming argument, so tool definitions are assembled from data rather than
by inspecting Python signatures at runtime.

    ToolSpec.input_schema()       → {"type": "object", "properties": ..., "required": ...}
    ToolSpec.validate_args(args)  → cleaned args, or ToolArgumentError
    build_tool_definitions(specs) → OpenAI-compatible "tools" payload
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from autofix.core.errors import ToolArgumentError


class ParamType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    STRING_LIST = "string_list"


@dataclass(frozen=True)
class ToolParam:
    name: str
    type: ParamType
    description: str = ""
    required: bool = True
    default: Any = None


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    params: List[ToolParam] = field(default_factory=list)

    def input_schema(self) -> Dict[str, Any]:
        properties = {p.name: _SCHEMA_BUILDERS[p.type](p) for p in self.params}
        return {
            "type": "object",
            "properties": properties,
            "required": [p.name for p in self.params if p.required],
            "additionalProperties": False,
        }

    def validate_args(self, args: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Validate raw tool arguments against the declared parameters.

        Parameters
        ----------
        args : dict or None
            Arguments as received from the model or caller.

        Returns
        -------
        dict
            Arguments with defaults filled in for optional parameters.

        Raises
        ------
        ToolArgumentError
            On non-dict input, unknown keys, missing required keys or a
            value that fails its ParamType validator.
        """
        if args is None:
            args = {}
        if not isinstance(args, dict):
            raise ToolArgumentError(f"{self.name}: arguments must be an object")

        known = {p.name for p in self.params}
        unknown = sorted(set(args) - known)
        if unknown:
            raise ToolArgumentError(f"{self.name}: unexpected arguments {', '.join(unknown)}")

        cleaned: Dict[str, Any] = {}
        for param in self.params:
            if param.name not in args:
                if param.required:
                    raise ToolArgumentError(f"{self.name}: missing required argument '{param.name}'")
                cleaned[param.name] = param.default
                continue
            value = args[param.name]
            if not _VALIDATORS[param.type](value):
                raise ToolArgumentError(
                    f"{self.name}: argument '{param.name}' must be of type {param.type.value}"
                )
            cleaned[param.name] = value
        return cleaned


# ---------------------------------------------------------------------------
# ParamType → schema fragment / validator
# ---------------------------------------------------------------------------
def _scalar_schema(json_type: str) -> Callable[[ToolParam], Dict[str, Any]]:
    def build(param: ToolParam) -> Dict[str, Any]:
        return {"type": json_type, "description": param.description}
    return build


def _string_list_schema(param: ToolParam) -> Dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}, "description": param.description}


_SCHEMA_BUILDERS: Dict[ParamType, Callable[[ToolParam], Dict[str, Any]]] = {
    ParamType.STRING: _scalar_schema("string"),
    ParamType.INTEGER: _scalar_schema("integer"),
    ParamType.BOOLEAN: _scalar_schema("boolean"),
    ParamType.STRING_LIST: _string_list_schema,
}

_VALIDATORS: Dict[ParamType, Callable[[Any], bool]] = {
    ParamType.STRING: lambda v: isinstance(v, str),
    # bool is an int subclass
    ParamType.INTEGER: lambda v: isinstance(v, int) and not isinstance(v, bool),
    ParamType.BOOLEAN: lambda v: isinstance(v, bool),
    ParamType.STRING_LIST: lambda v: isinstance(v, list) and all(isinstance(i, str) for i in v),
}


def build_tool_definitions(specs: List[ToolSpec]) -> List[Dict[str, Any]]:
    """Convert ToolSpecs into the OpenAI-compatible function-tool payload."""
    return [
        {
            "type": "function",
            "function": {
                "name": spec.name,
                "description": spec.description,
                "parameters": spec.input_schema(),
            },
        }
        for spec in specs
    ]
