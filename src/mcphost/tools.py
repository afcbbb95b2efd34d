import inspect
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class ToolSpec(BaseModel):
    """Name, description and parameter schema of a callable tool.

    Immutable once fetched from a provider.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters: dict = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_openai(self) -> dict:
        """Return an OpenAI-compatible function tool schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolProvider(ABC):
    """Anything that can list and run tools.

    Remote MCP servers and in-process tools implement the same interface,
    so the registry and dispatcher never branch on where a tool lives.
    """

    name: str

    @abstractmethod
    async def list_tools(self) -> list[ToolSpec]:
        ...

    @abstractmethod
    async def invoke(self, name: str, args: dict) -> Any:
        """Run tool *name* with *args* and return its raw result."""
        ...

    async def close(self) -> None:
        """Release any resources held by the provider."""


# ---------------------------------------------------------------------------
# Local tools
# ---------------------------------------------------------------------------

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    set: "array",
    dict: "object",
    type(None): "null",
}


def _json_type(annotation) -> str:
    origin = getattr(annotation, "__origin__", None)
    return _JSON_TYPES.get(origin or annotation, "string")


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Extract parameter descriptions from a Google, reST or NumPy docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return {}
    lines = doc.splitlines()
    descriptions: dict[str, str] = {}

    # reST: ":param name: text"
    for line in lines:
        m = re.match(r"\s*:param\s+(?:\w+\s+)?(\w+):\s*(.*)", line)
        if m:
            descriptions[m.group(1)] = m.group(2).strip()
    if descriptions:
        return descriptions

    # NumPy: "Parameters" header underlined with dashes
    for i, line in enumerate(lines[:-1]):
        if line.strip() == "Parameters" and set(lines[i + 1].strip()) == {"-"}:
            current = None
            for body in lines[i + 2:]:
                if not body.strip():
                    if current is not None:
                        break
                    continue
                if not body.startswith((" ", "\t")):
                    m = re.match(r"(\w+)\s*(?::.*)?$", body)
                    if not m:
                        break
                    current = m.group(1)
                    descriptions[current] = ""
                elif current is not None:
                    text = body.strip()
                    prev = descriptions[current]
                    descriptions[current] = f"{prev}\n{text}" if prev else text
            return descriptions

    # Google: "Args:" block with indented "name (type): text"
    in_args = False
    indent = None
    current = None
    for line in lines:
        if line.strip() in ("Args:", "Arguments:", "Parameters:"):
            in_args = True
            continue
        if not in_args:
            continue
        if not line.strip():
            break
        line_indent = len(line) - len(line.lstrip())
        if indent is None:
            indent = line_indent
        if line_indent < indent:
            break
        m = re.match(r"\s*(\w+)\s*(?:\([^)]*\))?\s*:\s*(.*)", line)
        if line_indent == indent and m:
            current = m.group(1)
            descriptions[current] = m.group(2).strip()
        elif current is not None:
            descriptions[current] += "\n" + line.strip()
    return descriptions


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    signature = inspect.signature(func)
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for name, param in signature.parameters.items():
        annotation = param.annotation
        if annotation is inspect.Parameter.empty:
            annotation = str
        properties[name] = {
            "type": _json_type(annotation),
            "description": descriptions.get(name, ""),
        }
        if param.default is inspect.Parameter.empty:
            required.append(name)
    schema = {"type": "object", "properties": properties, "required": required}
    return schema, required


class Tool:
    """An in-process function the model can call.

    Wraps a sync or async function; the parameter schema is derived from
    its signature and docstring unless given explicitly.
    """

    def __init__(
        self,
        func: Callable,
        name: str | None = None,
        description: str | None = None,
        parameters_schema: dict | None = None,
    ):
        self.func = func
        self.name = name or func.__name__
        self.description = (
            description if description is not None
            else (inspect.getdoc(func) or "").split("\n\n")[0]
        )
        if parameters_schema is None:
            parameters_schema, _ = _build_parameters_schema(func)
        self.parameters_schema = parameters_schema

    @property
    def spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters=self.parameters_schema,
        )

    def model_dump(self) -> dict:
        return self.spec.to_openai()

    async def __call__(self, **kwargs) -> Any:
        result = self.func(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


def tool(func: Callable | None = None, *, name: str | None = None,
         description: str | None = None):
    """Decorate a function as a :class:`Tool`.

    Usable bare (``@tool``) or with arguments
    (``@tool(name="x", description="y")``).
    """
    def wrap(f: Callable) -> Tool:
        return Tool(f, name=name, description=description)

    if func is not None:
        return wrap(func)
    return wrap


class LocalToolProvider(ToolProvider):
    """Serves a fixed set of in-process :class:`Tool` objects."""

    def __init__(self, name: str, tools: list[Tool]):
        self.name = name
        self._tools = {t.name: t for t in tools}

    async def list_tools(self) -> list[ToolSpec]:
        return [t.spec for t in self._tools.values()]

    async def invoke(self, name: str, args: dict) -> Any:
        if name not in self._tools:
            raise KeyError(f"tool '{name}' is not served by {self.name}")
        logger.info(f"[{self.name}] calling local tool {name}")
        return await self._tools[name](**args)
