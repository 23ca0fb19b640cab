"""Edge Function and secrets tools."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from . import ProjectPathInput, ProjectRefInput, ToolContext, ToolSpec, command_payload, with_project_ref

_SERVE_TIMEOUT = 10.0  # serve never exits on its own; capture startup output only


class FunctionsDeployInput(ProjectRefInput):
    function_name: str | None = Field(default=None, description="Function to deploy (deploys all if omitted)")
    no_verify_jwt: bool = Field(default=False, description="Disable JWT verification for the function")


class FunctionNameInput(ProjectRefInput):
    function_name: str = Field(min_length=1, description="Name of the Edge Function")


class FunctionsNewInput(ProjectPathInput):
    function_name: str = Field(min_length=1, description="Name of the new Edge Function")


class FunctionsServeInput(ProjectPathInput):
    function_name: str | None = Field(default=None, description="Function to serve (serves all if omitted)")
    env_file: str | None = Field(default=None, description="Path to an env file with function secrets")
    no_verify_jwt: bool = Field(default=False, description="Disable JWT verification")


class SecretsSetInput(ProjectRefInput):
    secrets: dict[str, str] = Field(min_length=1, description="Secrets to set, as NAME: value pairs")


class SecretsUnsetInput(ProjectRefInput):
    names: list[str] = Field(min_length=1, description="Names of the secrets to remove")


async def functions_deploy(ctx: ToolContext, args: FunctionsDeployInput) -> dict[str, Any]:
    cmd = ["functions", "deploy"]
    if args.function_name:
        cmd.append(args.function_name)
    with_project_ref(cmd, args.project_ref)
    if args.no_verify_jwt:
        cmd.append("--no-verify-jwt")
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "functions_deploy", result, function_name=args.function_name or "all")


async def functions_list(ctx: ToolContext, args: ProjectRefInput) -> dict[str, Any]:
    result = await ctx.runner.run(with_project_ref(["functions", "list"], args.project_ref), args.project_path)
    return command_payload(ctx, "functions_list", result)


async def functions_delete(ctx: ToolContext, args: FunctionNameInput) -> dict[str, Any]:
    cmd = with_project_ref(["functions", "delete", args.function_name], args.project_ref)
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "functions_delete", result, function_name=args.function_name)


async def functions_new(ctx: ToolContext, args: FunctionsNewInput) -> dict[str, Any]:
    result = await ctx.runner.run(["functions", "new", args.function_name], args.project_path)
    return command_payload(ctx, "functions_new", result, function_name=args.function_name)


async def functions_serve(ctx: ToolContext, args: FunctionsServeInput) -> dict[str, Any]:
    cmd = ["functions", "serve"]
    if args.function_name:
        cmd.append(args.function_name)
    if args.env_file:
        cmd.extend(["--env-file", args.env_file])
    if args.no_verify_jwt:
        cmd.append("--no-verify-jwt")
    result = await ctx.runner.run(cmd, args.project_path, timeout=_SERVE_TIMEOUT)
    return command_payload(
        ctx,
        "functions_serve",
        result,
        note="functions serve runs until stopped; output shows the first seconds of startup",
    )


async def functions_logs(ctx: ToolContext, args: FunctionNameInput) -> dict[str, Any]:
    cmd = with_project_ref(["functions", "logs", args.function_name], args.project_ref)
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "functions_logs", result, function_name=args.function_name)


async def secrets_set(ctx: ToolContext, args: SecretsSetInput) -> dict[str, Any]:
    pairs = [f"{name}={value}" for name, value in args.secrets.items()]
    cmd = with_project_ref(["secrets", "set", *pairs], args.project_ref)
    result = await ctx.runner.run(cmd, args.project_path)
    # secret values must not appear in the reported command
    payload = command_payload(ctx, "secrets_set", result, secrets_set=list(args.secrets))
    payload["command"] = ctx.runner.describe(with_project_ref(["secrets", "set", *args.secrets], args.project_ref))
    return payload


async def secrets_list(ctx: ToolContext, args: ProjectRefInput) -> dict[str, Any]:
    result = await ctx.runner.run(with_project_ref(["secrets", "list"], args.project_ref), args.project_path)
    return command_payload(ctx, "secrets_list", result)


async def secrets_unset(ctx: ToolContext, args: SecretsUnsetInput) -> dict[str, Any]:
    cmd = with_project_ref(["secrets", "unset", *args.names], args.project_ref)
    result = await ctx.runner.run(cmd, args.project_path)
    return command_payload(ctx, "secrets_unset", result, secrets_unset=args.names)


TOOLS = [
    ToolSpec(
        "functions_deploy",
        "Deploy Edge Functions to Supabase ({account} account)",
        FunctionsDeployInput,
        functions_deploy,
    ),
    ToolSpec("functions_list", "List deployed Edge Functions ({account} account)", ProjectRefInput, functions_list),
    ToolSpec(
        "functions_delete",
        "Delete a deployed Edge Function ({account} account)",
        FunctionNameInput,
        functions_delete,
    ),
    ToolSpec(
        "functions_new",
        "Create a new Edge Function locally ({account} account)",
        FunctionsNewInput,
        functions_new,
    ),
    ToolSpec(
        "functions_serve",
        "Serve Edge Functions locally for testing ({account} account)",
        FunctionsServeInput,
        functions_serve,
    ),
    ToolSpec(
        "functions_logs",
        "Show logs for an Edge Function ({account} account)",
        FunctionNameInput,
        functions_logs,
    ),
    ToolSpec("secrets_set", "Set Edge Function secrets ({account} account)", SecretsSetInput, secrets_set),
    ToolSpec("secrets_list", "List Edge Function secrets ({account} account)", ProjectRefInput, secrets_list),
    ToolSpec("secrets_unset", "Remove Edge Function secrets ({account} account)", SecretsUnsetInput, secrets_unset),
]
