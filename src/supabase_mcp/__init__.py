"""Supabase CLI bridge for tool-calling agents, with cloud-stored credentials."""

__version__ = "1.0.0"
