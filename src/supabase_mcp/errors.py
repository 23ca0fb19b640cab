"""Exception hierarchy shared across the bridge."""

from __future__ import annotations


class SupabaseMcpError(Exception):
    """Base class for errors raised by supabase-mcp."""


class ConfigurationError(SupabaseMcpError):
    """Raised when a required environment setting is missing."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Missing required environment variables: {', '.join(missing)}")


class CredentialFetchError(SupabaseMcpError):
    """Raised when the credential service cannot be reached or rejects the request."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class CredentialParseError(CredentialFetchError):
    """Raised when the credential service answers with an unusable body."""
