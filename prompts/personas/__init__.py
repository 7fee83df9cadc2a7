"""Loading of the group-chat persona presets."""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

import yaml

_PERSONA_FILE = Path(__file__).resolve().parent / "personas.yaml"
MAX_PERSONAS = 5


@dataclass(frozen=True)
class Persona:
    """A named system-prompt preset that answers as a distinct character."""

    name: str
    title: str
    system_prompt: str

    @property
    def key(self) -> str:
        return self.name.lower()


def _load_persona(entry: object, source: Path) -> Persona:
    if not isinstance(entry, dict):
        raise ValueError(f"Persona entries in {source.name} must be mappings")
    missing = sorted({"name", "title", "system_prompt"} - entry.keys())
    if missing:
        raise ValueError(f"Persona in {source.name} missing keys: {', '.join(missing)}")
    name = str(entry["name"]).strip()
    if not name or not name.replace("_", "").isalnum():
        raise ValueError(f"Persona name must be a single word: {name!r}")
    return Persona(
        name=name,
        title=str(entry["title"]),
        system_prompt=str(entry["system_prompt"]).strip(),
    )


@lru_cache(maxsize=4)
def load_personas(path: Optional[Path] = None) -> Tuple[Persona, ...]:
    """Return personas in declaration order."""
    source = Path(path) if path else _PERSONA_FILE
    payload = yaml.safe_load(source.read_text(encoding="utf-8")) or {}
    entries = payload.get("personas") or []
    personas = tuple(_load_persona(entry, source) for entry in entries)
    if not personas:
        raise RuntimeError(f"No personas defined in {source}")
    if len(personas) > MAX_PERSONAS:
        raise ValueError(f"At most {MAX_PERSONAS} personas are supported, got {len(personas)}")
    keys = [p.key for p in personas]
    duplicates = sorted({k for k in keys if keys.count(k) > 1})
    if duplicates:
        raise ValueError(f"Duplicate persona names: {', '.join(duplicates)}")
    return personas


def get_persona(name: str) -> Persona:
    key = name.strip().lstrip("@").lower()
    for persona in load_personas():
        if persona.key == key:
            return persona
    available = ", ".join(p.name for p in load_personas())
    raise KeyError(f"Unknown persona '{name}'. Available: {available}")


__all__ = ["MAX_PERSONAS", "Persona", "load_personas", "get_persona"]
