"""Tool definitions and the value objects exchanged during tool calling.

Tools are declared with the :func:`tool` decorator (or built directly as
:class:`Tool` instances).  A tool without a handler is *client-executed*:
the model may call it, but the call is handed back to the caller instead
of being run here.
"""

from __future__ import annotations

import asyncio
import base64
import inspect
import json
import logging
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Union, get_args, get_origin, get_type_hints, overload

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError, create_model

from tributary.exceptions import ToolArgumentsError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


def parse_arguments(raw: str | None) -> dict[str, Any]:
    """Turn a raw argument buffer into a mapping.

    Empty input gives ``{}``.  Anything that is not a JSON object is
    preserved under ``"raw"`` so partial data is never dropped.
    """
    if raw is None or raw.strip() == "":
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug(f"Tool arguments are not valid JSON: {raw!r}")
        return {"raw": raw}
    if isinstance(parsed, dict):
        return parsed
    return {"raw": raw}


@dataclass(frozen=True)
class ToolCall:
    """A fully assembled tool call requested by the model."""

    id: str = ""
    name: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)
    result_id: str | None = None
    reasoning_id: str | None = None
    reasoning_summary: list[str] = field(default_factory=list)


@dataclass
class Artifact:
    """Binary payload produced by a tool, carried base64-encoded."""

    data: str
    mime_type: str
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def raw_content(self) -> bytes:
        return base64.b64decode(self.data)

    @classmethod
    def from_raw_content(
        cls,
        content: bytes | str,
        mime_type: str,
        metadata: dict[str, Any] | None = None,
        id: str | None = None,
    ) -> Artifact:
        if isinstance(content, str):
            content = content.encode()
        kwargs: dict[str, Any] = {}
        if id is not None:
            kwargs["id"] = id
        return cls(
            data=base64.b64encode(content).decode("ascii"),
            mime_type=mime_type,
            metadata=metadata or {},
            **kwargs,
        )


@dataclass
class ToolOutput:
    """Handler return value carrying a text result plus artifacts."""

    result: str
    artifacts: list[Artifact] = field(default_factory=list)


@dataclass
class ToolResult:
    """The outcome of executing one tool call."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any]
    result: Any
    tool_call_result_id: str | None = None
    artifacts: list[Artifact] = field(default_factory=list)
    is_error: bool = False


# ---------------------------------------------------------------------------
# Schema generation
# ---------------------------------------------------------------------------


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Extract per-parameter descriptions from a docstring.

    Google (``Args:``), Sphinx (``:param x:``) and NumPy
    (``Parameters`` + underline) styles are recognised.
    """
    doc = inspect.getdoc(func)
    if not doc:
        return {}

    sphinx = re.findall(
        r"^:param\s+(?:\w+\s+)?(\w+):\s*(.*(?:\n(?!:)\s+.*)*)", doc, re.MULTILINE,
    )
    if sphinx:
        return {name: " ".join(desc.split()) for name, desc in sphinx}

    lines = doc.splitlines()
    for i, line in enumerate(lines):
        if line.strip() == "Parameters" and i + 1 < len(lines) \
                and set(lines[i + 1].strip()) == {"-"}:
            return _parse_numpy_block(lines[i + 2:])

    match = re.search(r"^(?:Args|Arguments|Parameters):\s*$", doc, re.MULTILINE)
    if not match:
        return {}
    rest = doc[match.end():]
    section_end = re.search(r"^\S", rest, re.MULTILINE)
    block = rest[:section_end.start()] if section_end else rest

    descriptions: dict[str, str] = {}
    current: str | None = None
    for line in block.splitlines():
        param = re.match(r"^\s+(\w+)(?:\s*\([^)]*\))?\s*:\s*(.*)", line)
        if param:
            current = param.group(1)
            descriptions[current] = param.group(2).strip()
        elif current is not None and line.strip():
            descriptions[current] = f"{descriptions[current]} {line.strip()}".strip()
    return descriptions


def _parse_numpy_block(lines: list[str]) -> dict[str, str]:
    descriptions: dict[str, str] = {}
    current: str | None = None
    for i, line in enumerate(lines):
        if not line.strip():
            continue
        if not line.startswith((" ", "\t")):
            # A new section starts with a header underlined by dashes.
            if i + 1 < len(lines) and set(lines[i + 1].strip()) == {"-"}:
                break
            current = line.split(":")[0].strip()
            descriptions[current] = ""
        elif current is not None:
            descriptions[current] = f"{descriptions[current]} {line.strip()}".strip()
    return descriptions


def _first_paragraph(func: Callable) -> str:
    doc = inspect.getdoc(func)
    if not doc:
        return ""
    paragraph: list[str] = []
    for line in doc.splitlines():
        stripped = line.strip()
        if not stripped:
            if paragraph:
                break
            continue
        paragraph.append(stripped)
    return " ".join(paragraph)


def _is_optional(annotation: Any) -> bool:
    if get_origin(annotation) is Union:
        return type(None) in get_args(annotation)
    return False


def _is_async_callable(func: Callable) -> bool:
    return inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
        getattr(func, "__call__", None)
    )


def _type_hints(func: Callable) -> dict[str, Any]:
    if not (inspect.isroutine(func) or inspect.isclass(func)):
        func = getattr(func, "__call__", func)
    try:
        return get_type_hints(func)
    except (NameError, TypeError):
        return dict(getattr(func, "__annotations__", {}))


def _build_input_model(func: Callable, name: str) -> type[BaseModel]:
    """Build a pydantic model mirroring ``func``'s keyword parameters."""
    hints = _type_hints(func)
    descriptions = _parse_param_descriptions(func)
    fields: dict[str, Any] = {}
    extra = "ignore"
    for param_name, param in inspect.signature(func).parameters.items():
        if param.kind == param.VAR_KEYWORD:
            extra = "allow"
            continue
        if param.kind == param.VAR_POSITIONAL:
            continue
        annotation = hints.get(param_name, Any)
        description = descriptions.get(param_name) or None
        if param.default is not inspect.Parameter.empty:
            default = param.default
        elif _is_optional(annotation):
            default = None
        else:
            default = ...
        fields[param_name] = (annotation, Field(default, description=description))
    return create_model(
        f"{name}_arguments", __config__=ConfigDict(extra=extra), **fields,
    )


def _clean_schema(schema: dict[str, Any]) -> dict[str, Any]:
    cleaned: dict[str, Any] = {"type": "object", "properties": {}}
    for key, prop in schema.get("properties", {}).items():
        prop = {k: v for k, v in prop.items() if k not in ("title", "default")}
        if not any(k in prop for k in ("type", "anyOf", "$ref", "enum", "allOf")):
            prop["type"] = "string"
        cleaned["properties"][key] = prop
    if schema.get("required"):
        cleaned["required"] = list(schema["required"])
    if "$defs" in schema:
        cleaned["$defs"] = schema["$defs"]
    return cleaned


def _build_parameters_schema(func: Callable) -> tuple[dict[str, Any], list[str]]:
    """Return ``(schema, required)`` for a handler's parameters."""
    model = _build_input_model(func, getattr(func, "__name__", "tool"))
    schema = _clean_schema(model.model_json_schema())
    return schema, schema.get("required", [])


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------


class Tool(BaseModel):
    """A callable the model may invoke.

    Args:
        name: Name exposed to the model.
        description: Natural-language description sent to the model.
        parameters: JSON schema (``type: object``) of the arguments.
        concurrent: When ``True`` the tool may run in parallel with
            other concurrent tools of the same turn.
        handler: Sync or async callable.  ``None`` marks the tool as
            client-executed.
    """

    model_config = {"arbitrary_types_allowed": True}

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
    )
    concurrent: bool = False
    handler: Callable[..., Any] | None = Field(default=None, exclude=True)

    _input_model: type[BaseModel] | None = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        if self.handler is not None:
            self._input_model = _build_input_model(self.handler, self.name)

    @classmethod
    def client(
        cls, name: str, description: str = "",
        parameters: dict[str, Any] | None = None,
    ) -> Tool:
        """Build a client-executed tool (no handler)."""
        kwargs: dict[str, Any] = {"name": name, "description": description}
        if parameters is not None:
            kwargs["parameters"] = parameters
        return cls(**kwargs)

    @property
    def is_client_executed(self) -> bool:
        return self.handler is None

    def to_schema(self) -> dict[str, Any]:
        """Vendor-neutral ``{name, description, parameters}`` triple."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> dict[str, Any]:
        if self._input_model is None:
            return dict(arguments)
        try:
            validated = self._input_model.model_validate(arguments)
        except ValidationError as e:
            raise ToolArgumentsError(
                f"Invalid arguments for tool '{self.name}': {e}"
            ) from e
        arguments = {name: getattr(validated, name) for name in self._input_model.model_fields}
        arguments.update(validated.model_extra or {})
        return arguments

    async def invoke(self, arguments: dict[str, Any], *, in_thread: bool = False) -> Any:
        """Validate ``arguments`` and run the handler.

        Sync handlers run on a worker thread when ``in_thread`` is set.
        """
        if self.handler is None:
            raise RuntimeError(f"Tool '{self.name}' is client-executed")
        kwargs = self.validate_arguments(arguments)
        if _is_async_callable(self.handler):
            return await self.handler(**kwargs)
        if in_thread:
            result = await asyncio.to_thread(self.handler, **kwargs)
        else:
            result = self.handler(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result


@overload
def tool(func: Callable[..., Any]) -> Tool: ...


@overload
def tool(
    func: None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    concurrent: bool = False,
) -> Callable[[Callable[..., Any]], Tool]: ...


def tool(
    func: Callable[..., Any] | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    concurrent: bool = False,
) -> Tool | Callable[[Callable[..., Any]], Tool]:
    """Create a :class:`Tool` from a function.

    Bare and parameterised forms are both supported::

        @tool
        def weather(city: str) -> str:
            \"\"\"Current weather for a city.\"\"\"

        @tool(concurrent=True)
        async def search(query: str) -> str:
            ...
    """
    def build(fn: Callable[..., Any]) -> Tool:
        schema, _ = _build_parameters_schema(fn)
        return Tool(
            name=name or fn.__name__,
            description=description if description is not None else _first_paragraph(fn),
            parameters=schema,
            concurrent=concurrent,
            handler=fn,
        )

    if func is not None:
        return build(func)
    return build
