"""Skill and tool data model for OpsPilot."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field

ToolFunction = Callable[[dict[str, Any]], Awaitable[str]]


class ToolExecutionError(Exception):
    """Raised by a tool function when it cannot produce a result."""


class ParamType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"


class SkillCategory(str, Enum):
    CLOUD = "cloud"
    CONTAINER = "container"
    SERVER = "server"
    DEVOPS = "devops"
    NOTIFICATION = "notification"
    CUSTOM = "custom"


class ParamSpec(BaseModel):
    """Declaration of a single tool parameter."""

    type: ParamType = ParamType.STRING
    description: str = ""
    required: bool = False
    enum: list[str] | None = None

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type.value, "description": self.description}
        if self.enum:
            schema["enum"] = list(self.enum)
        return schema


class Tool(BaseModel):
    """A callable tool exposed to the model.

    ``parameters`` keeps declaration order, which is also the order used
    when rendering the tool signature into the system prompt.
    """

    name: str
    description: str
    dangerous: bool = False
    parameters: dict[str, ParamSpec] = Field(default_factory=dict)
    execute: ToolFunction = Field(exclude=True, repr=False)

    def to_openai_format(self) -> dict[str, Any]:
        """Convert to OpenAI function-calling format.

        Returns:
            Tool definition in OpenAI format
        """
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {
                        key: param.to_json_schema() for key, param in self.parameters.items()
                    },
                    "required": [key for key, param in self.parameters.items() if param.required],
                },
            },
        }

    def signature(self) -> str:
        """Render ``name(param: type, optional?: type)``."""
        params = ", ".join(
            f"{key}{'' if param.required else '?'}: {param.type.value}"
            for key, param in self.parameters.items()
        )
        return f"{self.name}({params})"


class Skill(BaseModel):
    """A named, versioned group of tools that is enabled or disabled as a unit."""

    id: str
    name: str
    description: str = ""
    icon: str = "📦"
    category: SkillCategory = SkillCategory.CUSTOM
    builtin: bool = False
    enabled: bool = True
    tools: list[Tool] = Field(default_factory=list)
    config_required: list[str] = Field(default_factory=list)
    version: str = "1.0.0"
    author: str = ""


class ToolResult(BaseModel):
    """Result from tool execution as seen by the agent loop."""

    result: str
    dangerous: bool = False
    success: bool = True

    @classmethod
    def ok(cls, result: str, dangerous: bool = False) -> "ToolResult":
        return cls(result=result, dangerous=dangerous, success=True)

    @classmethod
    def fail(cls, result: str) -> "ToolResult":
        return cls(result=result, dangerous=False, success=False)


def validate_arguments(tool: Tool, arguments: dict[str, Any]) -> list[str]:
    """Check arguments against a tool's parameter declarations.

    Unknown keys are tolerated; models often echo extra fields.

    Returns:
        List of human-readable problems, empty when the call is valid
    """
    errors = []

    for key, param in tool.parameters.items():
        if key not in arguments or arguments[key] is None:
            if param.required:
                errors.append(f"missing required parameter '{key}'")
            continue

        value = arguments[key]
        if param.type == ParamType.BOOLEAN:
            valid = isinstance(value, bool)
        elif param.type == ParamType.NUMBER:
            valid = isinstance(value, (int, float)) and not isinstance(value, bool)
        else:
            valid = isinstance(value, str)

        if not valid:
            errors.append(f"parameter '{key}' must be of type {param.type.value}")
        elif param.enum and str(value) not in param.enum:
            errors.append(f"parameter '{key}' must be one of {param.enum}")

    return errors


class BaseSkill(ABC):
    """Base class for built-in skills.

    Subclasses describe themselves with class attributes and return their
    tools from :meth:`get_tools`, binding each tool to one of their own
    coroutine methods. Tool methods raise :class:`ToolExecutionError`
    on failure instead of returning an error string.

    Example:
        >>> class EchoSkill(BaseSkill):
        ...     id = "skill-echo"
        ...     name = "Echo"
        ...
        ...     def get_tools(self) -> list[Tool]:
        ...         return [Tool(
        ...             name="echo",
        ...             description="Echo the text back",
        ...             parameters={"text": ParamSpec(description="Text", required=True)},
        ...             execute=self._echo,
        ...         )]
        ...
        ...     async def _echo(self, params: dict) -> str:
        ...         return params["text"]
    """

    id: str = "skill-base"
    name: str = "Base skill"
    description: str = ""
    icon: str = "📦"
    category: SkillCategory = SkillCategory.SERVER
    version: str = "1.0.0"
    author: str = "opspilot"
    config_required: list[str] = []

    @abstractmethod
    def get_tools(self) -> list[Tool]:
        """Return list of tools provided by this skill."""

    def to_skill(self, enabled: bool = True) -> Skill:
        """Materialize this skill as a registry record."""
        return Skill(
            id=self.id,
            name=self.name,
            description=self.description,
            icon=self.icon,
            category=self.category,
            builtin=True,
            enabled=enabled,
            tools=self.get_tools(),
            config_required=list(self.config_required),
            version=self.version,
            author=self.author,
        )
