"""Migration tools: push, create, list, diff, repair and squash."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field

from . import ProjectPathInput, ProjectRefInput, ToolContext, ToolSpec, command_payload, with_project_ref


class DbPushInput(ProjectRefInput):
    dry_run: bool = Field(default=False, description="Show which migrations would be applied without applying them")
    include_seed: bool = Field(default=False, description="Also run the seed script after migrations")


class MigrationNewInput(ProjectPathInput):
    name: str = Field(min_length=1, description="Name of the migration (e.g., create_users_table)")


class DbDiffInput(ProjectRefInput):
    schema_name: str | None = Field(default=None, alias="schema", description="Schema to diff (default: public)")
    file: str | None = Field(default=None, description="Save the diff as a new migration file with this name")


class MigrationRepairInput(ProjectRefInput):
    version: str = Field(min_length=1, description="Migration version to repair")
    status: Literal["applied", "reverted"] = Field(description="Status to record for the migration")


class MigrationSquashInput(ProjectRefInput):
    version: str | None = Field(default=None, description="Squash migrations up to this version")


async def db_push(ctx: ToolContext, args: DbPushInput) -> dict[str, Any]:
    cmd = with_project_ref(["db", "push"], args.project_ref)
    if args.dry_run:
        cmd.append("--dry-run")
    if args.include_seed:
        cmd.append("--include-seed")
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "db_push", result, dry_run=args.dry_run)


async def migrations_new(ctx: ToolContext, args: MigrationNewInput) -> dict[str, Any]:
    result = await ctx.runner.run(["migration", "new", args.name], args.project_path)
    return command_payload(ctx, "migrations_new", result, migration_name=args.name)


async def migrations_list(ctx: ToolContext, args: ProjectRefInput) -> dict[str, Any]:
    result = await ctx.runner.run(with_project_ref(["migration", "list"], args.project_ref), args.project_path)
    return command_payload(ctx, "migrations_list", result)


async def db_diff(ctx: ToolContext, args: DbDiffInput) -> dict[str, Any]:
    cmd = with_project_ref(["db", "diff"], args.project_ref)
    if args.schema_name:
        cmd.extend(["--schema", args.schema_name])
    if args.file:
        cmd.extend(["--file", args.file])
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "db_diff", result)


async def migrations_repair(ctx: ToolContext, args: MigrationRepairInput) -> dict[str, Any]:
    cmd = with_project_ref(["migration", "repair", "--status", args.status, args.version], args.project_ref)
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "migrations_repair", result, version=args.version, status=args.status)


async def migrations_squash(ctx: ToolContext, args: MigrationSquashInput) -> dict[str, Any]:
    cmd = with_project_ref(["migration", "squash"], args.project_ref)
    if args.version:
        cmd.extend(["--version", args.version])
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "migrations_squash", result)


TOOLS = [
    ToolSpec("db_push", "Push local migrations to the remote database ({account} account)", DbPushInput, db_push),
    ToolSpec(
        "migrations_new",
        "Create a new empty migration file ({account} account)",
        MigrationNewInput,
        migrations_new,
    ),
    ToolSpec(
        "migrations_list",
        "List local and remote migrations and their status ({account} account)",
        ProjectRefInput,
        migrations_list,
    ),
    ToolSpec("db_diff", "Diff the local database schema against migrations ({account} account)", DbDiffInput, db_diff),
    ToolSpec(
        "migrations_repair",
        "Repair the remote migration history table ({account} account)",
        MigrationRepairInput,
        migrations_repair,
    ),
    ToolSpec(
        "migrations_squash",
        "Squash local migrations into a single file ({account} account)",
        MigrationSquashInput,
        migrations_squash,
    ),
]
