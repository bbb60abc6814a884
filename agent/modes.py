"""
Mode engine.
A mode bundles a system prompt, a tool allow-list and sampling overrides.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import app_config

from .prompts import DEFAULT_MODES

logger = logging.getLogger(__name__)


@dataclass
class ModeConfig:
    name: str
    system_message: str = ""
    allowed_tools: List[str] = field(default_factory=list)
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    streaming: Optional[bool] = None
    description: str = ""
    # Name of a registered algorithm that handles turns in this mode
    algorithm: Optional[str] = None

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "ModeConfig":
        return cls(
            name=name,
            system_message=data.get("system_message", ""),
            allowed_tools=list(data.get("allowed_tools") or []),
            temperature=data.get("temperature"),
            top_p=data.get("top_p"),
            streaming=data.get("streaming"),
            description=data.get("description", ""),
            algorithm=data.get("algorithm"),
        )


class ModeEngine:
    """Resolves mode names and tracks the active mode."""

    def __init__(self, modes: Dict[str, ModeConfig], default_mode: str = "Coder"):
        if not modes:
            raise ValueError("At least one mode is required")
        self._modes = dict(modes)
        self.default_mode = default_mode if default_mode in self._modes else next(iter(self._modes))
        self.current_mode = self.default_mode

    @classmethod
    def from_config(cls, modes_file: Optional[str] = None, default_mode: Optional[str] = None) -> "ModeEngine":
        """Built-in modes, overridden or extended by the JSON modes file."""
        raw: Dict[str, Dict[str, Any]] = {name: dict(cfg) for name, cfg in DEFAULT_MODES.items()}
        path = modes_file if modes_file is not None else app_config.modes_file
        if path:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    overrides = json.load(f)
                for name, cfg in overrides.items():
                    raw[name] = {**raw.get(name, {}), **cfg}
                logger.info(f"Loaded {len(overrides)} mode definitions from {path}")
            except (OSError, ValueError, AttributeError) as e:
                logger.warning(f"Ignoring modes file {path}: {e}")
        modes = {name: ModeConfig.from_dict(name, cfg) for name, cfg in raw.items()}
        return cls(modes, default_mode or app_config.default_mode)

    @property
    def names(self) -> List[str]:
        return list(self._modes)

    def find(self, name: Optional[str]) -> Optional[ModeConfig]:
        if not name:
            return None
        wanted = name.strip().lower()
        for mode_name, mode in self._modes.items():
            if mode_name.lower() == wanted:
                return mode
        return None

    def resolve(self, name: Optional[str] = None) -> ModeConfig:
        """Mode by name (case-insensitive), else the active mode, else the default."""
        mode = self.find(name) or self.find(self.current_mode)
        if mode is None:
            if name:
                logger.warning(f"Unknown mode {name!r}, using {self.default_mode}")
            mode = self._modes[self.default_mode]
        elif name and mode.name.lower() != name.strip().lower():
            logger.warning(f"Unknown mode {name!r}, using {mode.name}")
        return mode

    def set_mode(self, name: str) -> ModeConfig:
        mode = self.find(name)
        if mode is None:
            raise KeyError(f"Unknown mode: {name}")
        self.current_mode = mode.name
        return mode

    def describe(self) -> str:
        return "\n".join(f"- {m.name}: {m.description}" for m in self._modes.values())
