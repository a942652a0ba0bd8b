"""
base.py - Tool Registry

Tools are self-describing and stateless:
- name / description / Input (a pydantic model) describe the tool
- execute() receives already-validated arguments
- the registry owns lookup, validation and error conversion

Design rule: a tool failure is DATA, never an exception. Whatever goes
wrong inside ToolRegistry.execute() comes back as {"error": "..."} so the
model can see it and adapt, instead of the whole exchange crashing.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, ValidationError


class Tool(ABC):
    """
    Abstract base class for all tools.

    Subclasses set three class attributes and implement execute():

        class ListDirTool(Tool):
            name = "list_dir"
            description = "List contents of a directory"
            Input = ListDirInput

            async def execute(self, args: ListDirInput) -> Any:
                ...
    """

    name: str
    description: str
    Input: type[BaseModel]

    @property
    def input_schema(self) -> dict:
        """JSON schema for tool parameters."""
        schema = self.Input.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        return schema

    def validate(self, data: Any) -> BaseModel:
        return self.Input.model_validate(data if data is not None else {})

    @abstractmethod
    async def execute(self, args: Any) -> Any:
        """
        Run the tool.

        Returns a JSON-serializable result, or {"error": reason} for
        expected failures. Unexpected exceptions are caught by the registry.
        """

    def to_schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


def format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "input"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


class ToolRegistry:
    """
    Registry for managing tools.

    - Dynamic registration/unregistration
    - Schema generation for the provider
    - Centralized dispatch with validation and error handling
    - Filtering for different modes (read-only vs full access)
    """

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, tool: Tool) -> "ToolRegistry":
        """
        Register a tool. Returns self for chaining.

            registry.register(ShellTool()).register(ReadFileTool())
        """
        self._tools[tool.name] = tool
        return self

    def unregister(self, name: str) -> bool:
        if name in self._tools:
            del self._tools[name]
            return True
        return False

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_names(self) -> list[str]:
        return list(self._tools.keys())

    def get_schemas(self, names: list[str] | None = None) -> list[dict]:
        """Schemas for the provider, optionally restricted to `names`."""
        if names is None:
            return [t.to_schema() for t in self._tools.values()]
        return [
            self._tools[n].to_schema()
            for n in names
            if n in self._tools
        ]

    async def execute(self, name: str, data: Any) -> Any:
        """
        Validate and execute a tool by name.

        Never raises (except cancellation): unknown tools, schema
        violations and exceptions from the tool all become {"error": ...}.
        """
        tool = self._tools.get(name)
        if not tool:
            return {"error": f"Unknown tool: {name}"}

        try:
            args = tool.validate(data)
        except ValidationError as e:
            return {"error": f"Invalid input for {name}: {format_validation_error(e)}"}

        try:
            return await tool.execute(args)
        except Exception as e:
            return {"error": f"{name} failed: {e}"}

    def subset(self, names: list[str]) -> "ToolRegistry":
        """
        New registry with only the named tools that are registered here.

        Used to intersect a mode's allow-list with the available tools:
            readonly = full_registry.subset(["list_dir", "read_file", "grep"])
        """
        new_registry = ToolRegistry()
        for name in names:
            if name in self._tools:
                new_registry.register(self._tools[name])
        return new_registry

    def clone(self) -> "ToolRegistry":
        new_registry = ToolRegistry()
        for t in self._tools.values():
            new_registry.register(t)
        return new_registry


def tool(name: str, description: str, input_model: type[BaseModel]):
    """
    Decorator to create a Tool from a plain async function.

        class EchoInput(BaseModel):
            text: str

        @tool(name="echo", description="Echo text back", input_model=EchoInput)
        async def echo(args: EchoInput) -> dict:
            return {"text": args.text}

    The decorated function becomes a Tool instance that can be registered.
    """
    def decorator(func: Callable[[Any], Awaitable[Any]]) -> Tool:
        class FunctionTool(Tool):
            Input = input_model

            async def execute(self, args: Any) -> Any:
                return await func(args)

        FunctionTool.name = name
        FunctionTool.description = description
        return FunctionTool()

    return decorator
