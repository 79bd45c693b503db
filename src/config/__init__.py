"""
Configuration Management.

Centralized configuration using Pydantic Settings.

Configuration sources (in order of precedence):
1. Environment variables
2. .env file
3. Default values

Sensitive values (API keys, Supabase keys) are loaded from environment
variables and never committed to source control.

Example:
    from src.config import get_settings

    settings = get_settings()
    workspace_root = settings.workspace_root
"""

from src.config.settings import Settings, get_settings, settings

__all__ = [
    "Settings",
    "get_settings",
    "settings",
]
