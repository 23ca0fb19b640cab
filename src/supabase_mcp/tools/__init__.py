"""Tool registry: account-prefixed Supabase operations exposed to the agent."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Coroutine

import httpx
from pydantic import BaseModel, Field

from ..services.cli_runner import CommandResult, CommandRunner
from ..services.credentials import CredentialCache

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    account: str
    runner: CommandRunner
    credentials: CredentialCache
    http_transport: httpx.AsyncBaseTransport | None = None


ToolHandler = Callable[[ToolContext, Any], Coroutine[Any, Any, dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    operation: str
    description: str  # may reference {account}
    input_model: type[BaseModel]
    handler: ToolHandler


class ProjectPathInput(BaseModel):
    project_path: str | None = Field(
        default=None, description="Path to the project directory (defaults to current directory)"
    )


class ProjectRefInput(ProjectPathInput):
    project_ref: str | None = Field(
        default=None, description="Supabase project reference ID (uses linked project if not specified)"
    )


class NoInput(BaseModel):
    pass


def command_payload(ctx: ToolContext, operation: str, result: CommandResult, **extra: Any) -> dict[str, Any]:
    return {"account": ctx.account, "operation": operation, **extra, **result.to_dict()}


def with_project_ref(args: list[str], project_ref: str | None) -> list[str]:
    if project_ref:
        args.extend(["--project-ref", project_ref])
    return args


class ToolRegistry:
    """Registry of Supabase tools, keyed by ``{account}_{operation}``."""

    def __init__(self, context: ToolContext) -> None:
        self._context = context
        self._specs: dict[str, ToolSpec] = {}

    @property
    def context(self) -> ToolContext:
        return self._context

    def register(self, spec: ToolSpec) -> None:
        name = f"{self._context.account}_{spec.operation}"
        if name in self._specs:
            raise ValueError(f"Tool already registered: {name}")
        self._specs[name] = spec

    def has_tool(self, name: str) -> bool:
        return name in self._specs

    def list_tools(self) -> list[str]:
        return list(self._specs.keys())

    def get_definitions(self) -> list[dict[str, Any]]:
        return [
            {
                "name": name,
                "description": spec.description.format(account=self._context.account),
                "input_schema": spec.input_model.model_json_schema(),
            }
            for name, spec in self._specs.items()
        ]

    async def call_tool(self, name: str, arguments: dict[str, Any] | None) -> dict[str, Any]:
        spec = self._specs.get(name)
        if not spec:
            raise ValueError(f"Unknown tool: {name}")
        validated = spec.input_model.model_validate(arguments or {})
        return await spec.handler(self._context, validated)


def register_default_tools(registry: ToolRegistry) -> None:
    """Register every built-in Supabase tool."""
    from . import database, functions, migrations, typegen

    for module in [migrations, functions, typegen, database]:
        for spec in module.TOOLS:
            registry.register(spec)
    logger.debug(f"Registered {len(registry.list_tools())} tools")
