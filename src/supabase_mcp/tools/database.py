"""Project, local stack and database tools, plus health and credential refresh."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

import httpx
from pydantic import Field

from ..errors import SupabaseMcpError
from . import NoInput, ProjectPathInput, ProjectRefInput, ToolContext, ToolSpec, command_payload, with_project_ref

logger = logging.getLogger(__name__)

MANAGEMENT_API_URL = "https://api.supabase.com/v1"
_START_TIMEOUT = 10 * 60.0  # pulling docker images on first start is slow
_SQL_TIMEOUT = 120.0


class LinkProjectInput(ProjectPathInput):
    project_ref: str = Field(min_length=1, description="Supabase project reference ID")


class StopInput(ProjectPathInput):
    backup: bool = Field(default=False, description="Create a backup before stopping")


class DbPullInput(ProjectRefInput):
    schema_name: str | None = Field(default=None, alias="schema", description="Schema to pull (default: public)")


class DbDumpInput(ProjectRefInput):
    data_only: bool = Field(default=False, description="Dump only data, not schema")
    file: str | None = Field(default=None, description="Output file path")


class DbLintInput(ProjectPathInput):
    level: Literal["warning", "error"] | None = Field(default=None, description="Minimum lint level to report")


class ExecuteSqlInput(ProjectRefInput):
    sql: str = Field(min_length=1, description="SQL query to execute")


async def projects_list(ctx: ToolContext, args: NoInput) -> dict[str, Any]:
    result = await ctx.runner.run(["projects", "list"])
    return command_payload(ctx, "projects_list", result)


async def link_project(ctx: ToolContext, args: LinkProjectInput) -> dict[str, Any]:
    result = await ctx.runner.run(["link", "--project-ref", args.project_ref], args.project_path)
    return command_payload(ctx, "link_project", result, project_ref=args.project_ref)


async def status(ctx: ToolContext, args: ProjectPathInput) -> dict[str, Any]:
    result = await ctx.runner.run(["status"], args.project_path)
    return command_payload(ctx, "status", result)


async def start(ctx: ToolContext, args: ProjectPathInput) -> dict[str, Any]:
    result = await ctx.runner.run(["start"], args.project_path, timeout=_START_TIMEOUT)
    return command_payload(ctx, "start", result)


async def stop(ctx: ToolContext, args: StopInput) -> dict[str, Any]:
    cmd = ["stop"]
    if args.backup:
        cmd.append("--backup")
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "stop", result)


async def init(ctx: ToolContext, args: ProjectPathInput) -> dict[str, Any]:
    result = await ctx.runner.run(["init"], args.project_path)
    return command_payload(ctx, "init", result)


async def db_reset(ctx: ToolContext, args: ProjectPathInput) -> dict[str, Any]:
    result = await ctx.runner.run(["db", "reset"], args.project_path)
    return command_payload(ctx, "db_reset", result)


async def db_pull(ctx: ToolContext, args: DbPullInput) -> dict[str, Any]:
    cmd = with_project_ref(["db", "pull"], args.project_ref)
    if args.schema_name:
        cmd.extend(["--schema", args.schema_name])
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "db_pull", result)


async def db_dump(ctx: ToolContext, args: DbDumpInput) -> dict[str, Any]:
    cmd = with_project_ref(["db", "dump"], args.project_ref)
    if args.data_only:
        cmd.append("--data-only")
    if args.file:
        cmd.extend(["--file", args.file])
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "db_dump", result)


async def db_lint(ctx: ToolContext, args: DbLintInput) -> dict[str, Any]:
    cmd = ["db", "lint"]
    if args.level:
        cmd.extend(["--level", args.level])
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "db_lint", result)


async def health(ctx: ToolContext, args: NoInput) -> dict[str, Any]:
    cli_status = await ctx.runner.check_installed()

    credential_status: dict[str, Any]
    try:
        credentials = await ctx.credentials.get_credentials()
        credential_status = {"available": True, "project_refs": list(credentials.project_refs)}
        if credentials.default_project:
            credential_status["default_project"] = credentials.default_project
    except SupabaseMcpError as e:
        credential_status = {"available": False, "error": str(e)}

    return {
        "account": ctx.account,
        "operation": "health",
        "cli": cli_status.to_dict(),
        "credentials": credential_status,
    }


async def refresh_credentials(ctx: ToolContext, args: NoInput) -> dict[str, Any]:
    ctx.credentials.clear_cache()
    try:
        credentials = await ctx.credentials.get_credentials()
    except SupabaseMcpError as e:
        return {"account": ctx.account, "operation": "refresh_credentials", "success": False, "error": str(e)}
    return {
        "account": ctx.account,
        "operation": "refresh_credentials",
        "success": True,
        "project_refs": list(credentials.project_refs),
        "fetched_at": credentials.fetched_at.isoformat(),
    }


def read_linked_project_ref(project_path: str | None) -> str | None:
    """Return the ref written by ``supabase link``, or None if the directory is not linked."""
    ref_file = Path(project_path or os.getcwd()) / "supabase" / ".temp" / "project-ref"
    try:
        return ref_file.read_text(encoding="utf-8").strip() or None
    except OSError:
        return None


async def db_execute_sql(ctx: ToolContext, args: ExecuteSqlInput) -> dict[str, Any]:
    project_ref = args.project_ref or read_linked_project_ref(args.project_path)
    if not project_ref:
        return {
            "account": ctx.account,
            "operation": "db_execute_sql",
            "success": False,
            "error": (
                "No project_ref provided and no linked project found. "
                "Pass project_ref explicitly or link a project first."
            ),
        }

    access_token = await ctx.credentials.get_access_token()
    url = f"{MANAGEMENT_API_URL}/projects/{project_ref}/database/query"
    command = f"Management API POST {url}"
    base = {"account": ctx.account, "operation": "db_execute_sql", "command": command}

    logger.info(f"Executing SQL via Management API for project {project_ref}")
    try:
        async with httpx.AsyncClient(transport=ctx.http_transport, timeout=_SQL_TIMEOUT) as client:
            response = await client.post(
                url,
                headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
                json={"query": args.sql},
            )
    except httpx.HTTPError as e:
        logger.warning(f"Management API request failed: {e}")
        return {**base, "success": False, "stdout": "", "stderr": str(e), "exit_code": 1}

    text = response.text
    if not response.is_success:
        return {**base, "success": False, "stdout": "", "stderr": text, "exit_code": response.status_code}

    try:
        result: Any = json.loads(text)
    except ValueError:
        result = text
    stdout = result if isinstance(result, str) else json.dumps(result, indent=2)
    return {**base, "success": True, "result": result, "stdout": stdout, "stderr": "", "exit_code": 0}


TOOLS = [
    ToolSpec("projects_list", "List all Supabase projects in the {account} account", NoInput, projects_list),
    ToolSpec(
        "link_project",
        "Link a directory to a Supabase project ({account} account)",
        LinkProjectInput,
        link_project,
    ),
    ToolSpec("status", "Show the status of the linked Supabase project ({account} account)", ProjectPathInput, status),
    ToolSpec("start", "Start the local Supabase development stack ({account} account)", ProjectPathInput, start),
    ToolSpec("stop", "Stop the local Supabase development stack ({account} account)", StopInput, stop),
    ToolSpec("init", "Initialize a new Supabase project in a directory ({account} account)", ProjectPathInput, init),
    ToolSpec("db_reset", "Reset the local database to a clean state ({account} account)", ProjectPathInput, db_reset),
    ToolSpec("db_pull", "Pull schema changes from the remote database ({account} account)", DbPullInput, db_pull),
    ToolSpec("db_dump", "Dump the remote database as SQL ({account} account)", DbDumpInput, db_dump),
    ToolSpec("db_lint", "Lint the local database schema for errors ({account} account)", DbLintInput, db_lint),
    ToolSpec("health", "Check Supabase CLI installation and credential status ({account} account)", NoInput, health),
    ToolSpec(
        "refresh_credentials",
        "Force refresh credentials from the credential service ({account} account)",
        NoInput,
        refresh_credentials,
    ),
    ToolSpec(
        "db_execute_sql",
        "Execute a SQL query against the remote Supabase database ({account} account)",
        ExecuteSqlInput,
        db_execute_sql,
    ),
]
