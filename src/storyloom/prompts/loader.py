from __future__ import annotations

from pathlib import Path

from storyloom.config import settings


class PromptLoader:
    """Loads prompt templates from .txt files and renders them with variables.

    Templates use ``{variable_name}`` placeholders.  Literal JSON braces in a
    template are left alone because only known keys are substituted.
    """

    def __init__(self, templates_dir: str | Path | None = None):
        self._dir = Path(templates_dir or settings.prompts_dir)
        self._cache: dict[str, str] = {}

    def load(self, category: str, name: str) -> str:
        """Load raw template text, e.g. ``loader.load("story", "first_segment")``."""
        key = f"{category}/{name}"
        if key not in self._cache:
            path = self._dir / category / f"{name}.txt"
            self._cache[key] = path.read_text(encoding="utf-8").strip()
        return self._cache[key]

    def render(self, category: str, name: str, /, **variables: object) -> str:
        """Load a template and substitute the ``{var}`` placeholders given in *variables*."""
        template = self.load(category, name)
        for k, v in variables.items():
            template = template.replace(f"{{{k}}}", str(v))
        return template
