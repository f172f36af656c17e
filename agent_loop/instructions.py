"""Load and render prompt templates from disk.

Templates are looked up in an optional override directory first, then in the
``prompts/`` folder shipped with the package.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping


_PACKAGE_PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"


class _SafeFormatDict(dict[str, str]):
    """Leave unknown placeholders untouched instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class InstructionLoader:
    """Read and render prompt templates with override support."""

    def __init__(
        self,
        base_dir: Path | str | None = None,
        override_dir: Path | str | None = None,
    ):
        self.base_dir = Path(base_dir).expanduser().resolve() if base_dir is not None else _PACKAGE_PROMPTS_DIR
        self.override_dir = Path(override_dir).expanduser().resolve() if override_dir is not None else None
        self._cache: dict[str, str] = {}

    def _path(self, name: str) -> Path:
        """Return the effective file path, preferring the override."""
        if self.override_dir is not None:
            override = self.override_dir / name
            if override.is_file():
                return override
        return self.base_dir / name

    def load(self, name: str) -> str:
        """Load template content by filename."""
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        path = self._path(name)
        if not path.is_file():
            raise FileNotFoundError(f"Prompt template not found: {path}")
        content = path.read_text(encoding="utf-8").strip()
        self._cache[name] = content
        return content

    def render(self, name: str, **variables: object) -> str:
        """Render template with simple ``str.format`` placeholder substitution."""
        template = self.load(name)
        values: Mapping[str, str] = {k: str(v) for k, v in variables.items()}
        return template.format_map(_SafeFormatDict(values))
