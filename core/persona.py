import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml

log = logging.getLogger(__name__)

PROMPT_SECTIONS = ("role", "focus", "tone", "privacy")
TOOLS_SECTION = "tools"
FALLBACK_PROMPT = "You are a strategic business intelligence assistant."


class PersonaConfig:
    """System prompt assembled from YAML files with hot-reload support."""

    def __init__(self, *, default_path: Path, override_path: Optional[Path] = None) -> None:
        self.default_path = Path(default_path)
        self.override_path = Path(override_path) if override_path else None
        self._sections: Dict[str, List[str]] = {}
        self._default_mtime: Optional[float] = None
        self._override_mtime: Optional[float] = None
        self._load()

    def _read_config(self, path: Optional[Path]) -> Dict[str, List[str]]:
        if path is None or not path.exists():
            return {}
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            log.warning("failed to read persona config %s: %s", path, exc)
            return {}
        sections: Dict[str, List[str]] = {}
        if isinstance(raw, dict):
            for key, value in raw.items():
                slug = str(key).strip().lower()
                if isinstance(value, (list, tuple)):
                    lines = [str(item).strip() for item in value if str(item or "").strip()]
                elif isinstance(value, str):
                    lines = [value.strip()] if value.strip() else []
                else:
                    lines = []
                if lines:
                    sections[slug] = lines
        return sections

    def _load(self) -> None:
        merged = dict(self._read_config(self.default_path))
        for key, lines in self._read_config(self.override_path).items():
            merged[key] = lines
        if merged != self._sections:
            if self._sections:
                log.info("persona configuration reloaded")
            self._sections = merged

    @staticmethod
    def _mtime(path: Optional[Path]) -> Optional[float]:
        if path is None:
            return None
        try:
            return path.stat().st_mtime if path.exists() else None
        except OSError:
            return None

    def _refresh(self) -> None:
        default_mtime = self._mtime(self.default_path)
        override_mtime = self._mtime(self.override_path)
        if default_mtime != self._default_mtime or override_mtime != self._override_mtime:
            self._default_mtime = default_mtime
            self._override_mtime = override_mtime
            self._load()

    def get_prompt(self, *, include_tools: bool = False) -> str:
        self._refresh()
        keys = list(PROMPT_SECTIONS)
        if include_tools:
            keys.append(TOOLS_SECTION)
        blocks = ["\n".join(self._sections[key]) for key in keys if self._sections.get(key)]
        return "\n\n".join(blocks) or FALLBACK_PROMPT
