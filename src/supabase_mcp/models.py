"""Pydantic models for credential service payloads."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class CredentialMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore")

    project_refs: list[str] | None = None
    default_project: str | None = None


class CredentialResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    credential: str = Field(min_length=1)
    metadata: CredentialMetadata
