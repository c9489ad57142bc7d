"""
Settings — loads profile.yaml and provides validated configuration.

The profile is the single source of truth for all user-configurable settings:
system name and prompt, inference backend, orchestrator limits, and
execution engine toggles.

Usage:
    from settings import get_profile
    profile = get_profile()
    print(profile.inference.model)
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from invocation.parser import DEFAULT_SENTINEL

logger = logging.getLogger(__name__)

# ── Profile Path Resolution ──
_PROJECT_ROOT = Path(__file__).parent.parent
_DEFAULT_PROFILE_PATH = _PROJECT_ROOT / "profile.yaml"


# ── Dataclasses ──

@dataclass
class SystemConfig:
    name: str = "doloop"
    system_prompt: str = ""


@dataclass
class InferenceConfig:
    type: str = "openai"  # openai | ollama
    endpoint: str = "https://openrouter.ai/api/v1"
    model: str = "google/gemini-2.5-flash-preview"
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout: float = 60.0
    api_key: str = ""  # loaded from DOLOOP_API_KEY env var


@dataclass
class OrchestratorConfig:
    sentinel: str = DEFAULT_SENTINEL
    max_iterations: int = 3
    memory_window: int = 10
    history_limit: int = 50
    history_surface: int = 5


@dataclass
class EngineToggle:
    enabled: bool = True


@dataclass
class TypedCodeConfig:
    enabled: bool = True
    target_version: str = "3.10"
    strict: bool = False


@dataclass
class TerminalConfig:
    enabled: bool = True
    shell: str = "bash"
    workdir: str = ""


@dataclass
class EnginesConfig:
    sandbox: bool = True
    timeout: float = 30.0
    code: EngineToggle = field(default_factory=EngineToggle)
    typed_code: TypedCodeConfig = field(default_factory=TypedCodeConfig)
    terminal: TerminalConfig = field(default_factory=TerminalConfig)

    def enabled_formats(self) -> list[str]:
        """Return the payload formats whose engines are enabled."""
        formats = []
        if self.code.enabled:
            formats.append("code")
        if self.typed_code.enabled:
            formats.append("typed-code")
        if self.terminal.enabled:
            formats.append("terminal")
        return formats


@dataclass
class Profile:
    system: SystemConfig = field(default_factory=SystemConfig)
    inference: InferenceConfig = field(default_factory=InferenceConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    engines: EnginesConfig = field(default_factory=EnginesConfig)


# ── Parsing ──

def _parse_dict(data: dict, cls, **overrides):
    """Create a dataclass instance from a dict, ignoring unknown keys."""
    field_names = {f.name for f in dataclasses.fields(cls)}
    filtered = {k: v for k, v in data.items() if k in field_names}
    filtered.update(overrides)
    return cls(**filtered)


def parse_target_version(value) -> tuple[int, int]:
    """'3.10' -> (3, 10). Accepts a string, float or 2-item list."""
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return int(value[0]), int(value[1])
    major, _, minor = str(value).partition(".")
    return int(major), int(minor or 0)


def _load_profile_from_dict(raw: dict) -> Profile:
    """Parse a raw YAML dict into a Profile dataclass."""
    profile = Profile()

    # System
    if "system" in raw and isinstance(raw["system"], dict):
        profile.system = _parse_dict(raw["system"], SystemConfig)

    # Inference
    inf_raw = raw.get("inference", {})
    if not isinstance(inf_raw, dict):
        inf_raw = {}
    profile.inference = _parse_dict(
        inf_raw, InferenceConfig,
        api_key=os.environ.get("DOLOOP_API_KEY", inf_raw.get("api_key", "")),
    )

    # Orchestrator
    if "orchestrator" in raw and isinstance(raw["orchestrator"], dict):
        profile.orchestrator = _parse_dict(raw["orchestrator"], OrchestratorConfig)

    # Engines
    if "engines" in raw and isinstance(raw["engines"], dict):
        eng_raw = raw["engines"]
        engines = _parse_dict(
            {k: v for k, v in eng_raw.items() if k in ("sandbox", "timeout")},
            EnginesConfig,
        )
        code_raw = eng_raw.get("code", {})
        if isinstance(code_raw, dict):
            engines.code = EngineToggle(enabled=code_raw.get("enabled", True))
        typed_raw = eng_raw.get("typed_code", {})
        if isinstance(typed_raw, dict):
            engines.typed_code = _parse_dict(typed_raw, TypedCodeConfig)
        term_raw = eng_raw.get("terminal", {})
        if isinstance(term_raw, dict):
            engines.terminal = _parse_dict(term_raw, TerminalConfig)
        profile.engines = engines

    return profile


def load_profile(path: Optional[Path] = None) -> Profile:
    """Load a profile from YAML. Falls back to defaults if missing or invalid."""
    if path is None:
        env_path = os.environ.get("PROFILE_PATH")
        path = Path(env_path) if env_path else _DEFAULT_PROFILE_PATH

    if not path.exists():
        logger.info("No profile.yaml found at %s — using defaults", path)
        return _load_profile_from_dict({})

    try:
        raw = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        logger.error("Failed to parse %s: %s — using defaults", path, e)
        return _load_profile_from_dict({})
    if not isinstance(raw, dict):
        logger.warning("profile.yaml is not a valid YAML mapping — using defaults")
        return _load_profile_from_dict({})

    profile = _load_profile_from_dict(raw)
    logger.info("Profile loaded: system=%s, backend=%s, model=%s, engines=%s",
                profile.system.name, profile.inference.type, profile.inference.model,
                profile.engines.enabled_formats())
    return profile


# ── Singleton ──

_profile: Optional[Profile] = None


def get_profile() -> Profile:
    """Return the validated profile singleton. Loads on first call."""
    global _profile
    if _profile is None:
        _profile = load_profile()
    return _profile


def reload_profile() -> Profile:
    """Force reload of the profile from disk."""
    global _profile
    _profile = load_profile()
    return _profile
