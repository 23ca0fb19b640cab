"""TypeScript type generation tools."""

from __future__ import annotations

import logging
import os
from typing import Any

from pydantic import Field

from ..services.cli_runner import CommandResult
from . import ProjectRefInput, ToolContext, ToolSpec, command_payload

logger = logging.getLogger(__name__)


class GenTypesInput(ProjectRefInput):
    output_path: str | None = Field(
        default=None, description="Output file path for generated types (e.g., src/types/database.ts)"
    )
    schema_name: str | None = Field(
        default=None, alias="schema", description="Schema to generate types for (default: public)"
    )


class GenTypesApiInput(ProjectRefInput):
    output_path: str | None = Field(default=None, description="Output file path for generated types")


def _write_types(
    ctx: ToolContext,
    operation: str,
    result: CommandResult,
    output_path: str | None,
    project_path: str | None,
) -> dict[str, Any]:
    if not (output_path and result.success and result.stdout):
        return command_payload(ctx, operation, result)

    resolved = os.path.join(project_path or os.getcwd(), output_path)
    try:
        os.makedirs(os.path.dirname(resolved) or ".", exist_ok=True)
        with open(resolved, "w", encoding="utf-8") as f:
            f.write(result.stdout)
    except OSError as e:
        logger.warning(f"Failed to write generated types to {resolved}: {e}")
        return command_payload(
            ctx, operation, result, output_file=resolved, types_written=False, write_error=str(e)
        )
    return command_payload(ctx, operation, result, output_file=resolved, types_written=True)


async def gen_types(ctx: ToolContext, args: GenTypesInput) -> dict[str, Any]:
    cmd = ["gen", "types", "typescript"]
    if args.project_ref:
        cmd.extend(["--project-id", args.project_ref])
    else:
        cmd.append("--local")
    if args.schema_name:
        cmd.extend(["--schema", args.schema_name])
    result = await ctx.runner.run(cmd, args.project_path)
    return _write_types(ctx, "gen_types", result, args.output_path, args.project_path)


async def gen_types_api(ctx: ToolContext, args: GenTypesApiInput) -> dict[str, Any]:
    if not args.project_ref:
        return {
            "account": ctx.account,
            "operation": "gen_types_api",
            "success": False,
            "error": "project_ref is required for API type generation",
        }
    result = await ctx.runner.run(["gen", "types", "typescript", "--project-id", args.project_ref], args.project_path)
    return _write_types(ctx, "gen_types_api", result, args.output_path, args.project_path)


TOOLS = [
    ToolSpec(
        "gen_types",
        "Generate TypeScript types from the Supabase database schema ({account} account)",
        GenTypesInput,
        gen_types,
    ),
    ToolSpec(
        "gen_types_api",
        "Generate TypeScript types for a remote Supabase project ({account} account)",
        GenTypesApiInput,
        gen_types_api,
    ),
]
