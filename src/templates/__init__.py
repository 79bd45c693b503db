"""Registry of versioned provisioning templates."""

from src.templates.registry import TemplateRegistry

__all__ = ["TemplateRegistry"]
