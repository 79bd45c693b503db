"""Template registry.

Templates are loaded from JSON manifests (one ``*.json`` file per template)
or registered directly. A template is addressed by id; registering the same
id again replaces it with the newer version.
"""

from pathlib import Path
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from src.models.schemas import Template

logger = structlog.get_logger(__name__)


class TemplateRegistry:
    """In-memory catalogue of templates keyed by id."""

    def __init__(self, templates: Optional[list[Template]] = None) -> None:
        self._templates: dict[str, Template] = {}
        for template in templates or []:
            self.register(template)

    def register(self, template: Template) -> Template:
        previous = self._templates.get(template.id)
        self._templates[template.id] = template
        logger.info(
            "template_registered",
            template_id=template.id,
            version=template.version,
            replaced=previous.version if previous else None,
        )
        return template

    def get(self, template_id: str) -> Optional[Template]:
        return self._templates.get(template_id)

    def list(self, category: Optional[str] = None) -> list[Template]:
        templates = sorted(self._templates.values(), key=lambda t: t.name.lower())
        if category:
            templates = [t for t in templates if t.category == category]
        return templates

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: str) -> bool:
        return template_id in self._templates

    def load_directory(self, directory: Path) -> int:
        """Load every ``*.json`` manifest in ``directory``.

        Manifests that fail validation are logged and skipped.

        Returns:
            Number of templates loaded.
        """
        if not directory.is_dir():
            logger.warning("templates_dir_missing", path=str(directory))
            return 0

        loaded = 0
        for path in sorted(directory.glob("*.json")):
            try:
                template = Template.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, PydanticValidationError) as e:
                logger.error("template_load_failed", path=str(path), error=str(e))
                continue
            self.register(template)
            loaded += 1

        logger.info("templates_loaded", path=str(directory), count=loaded)
        return loaded
