# Chat Client Configuration
#
# Settings for the local Ollama backend and the chat pipeline. Values come from
# (lowest to highest priority) the dataclass defaults, an optional YAML file,
# and the OLLAMA_BASE_URL / OLLAMA_MODEL environment variables.

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from clients.client_factory import create_chat_backend
from core.conversation import PREMISE_POLICIES, ConversationState
from core.fragments import ON_MALFORMED_CHOICES
from core.pipeline import ChatPipeline
from core.segmenter import ThinkMarkers

logger = logging.getLogger(__name__)

DEFAULT_PREMISE = (
    "You are a software developer with a focus on React/TypeScript.\n"
    "Keep your answer simple and straight forward."
)

ENV_OVERRIDES = {
    "OLLAMA_BASE_URL": "base_url",
    "OLLAMA_MODEL": "model",
}


@dataclass
class ChatConfig:
    base_url: str = "http://127.0.0.1:11434"
    model: str = "deepseek-r1:1.5b"
    temperature: float = 0.1
    repeat_penalty: float = 1.2
    numa: bool = True  # platform hint, forwarded untouched
    timeout_s: float = 300
    premise: str = DEFAULT_PREMISE
    premise_policy: str = "once"
    think_open: str = "<think>"
    think_close: str = "</think>"
    on_malformed: str = "raise"

    def __post_init__(self) -> None:
        if self.premise_policy not in PREMISE_POLICIES:
            raise ValueError(f"premise_policy must be one of {PREMISE_POLICIES}")
        if self.on_malformed not in ON_MALFORMED_CHOICES:
            raise ValueError(f"on_malformed must be one of {ON_MALFORMED_CHOICES}")
        if not self.think_open or not self.think_close:
            raise ValueError("think_open and think_close must be non-empty")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")

    @property
    def markers(self) -> ThinkMarkers:
        return ThinkMarkers(self.think_open, self.think_close)


def load_config(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> ChatConfig:
    """
    Build a ChatConfig from an optional YAML file plus environment overrides.

    Raises:
        FileNotFoundError: If ``path`` is given but does not exist
        ValueError: On unknown keys or invalid values
    """
    data: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(config_path)
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")

    known = {f.name for f in fields(ChatConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

    env = os.environ if environ is None else environ
    for var, key in ENV_OVERRIDES.items():
        if env.get(var):
            data[key] = env[var]
            logger.debug(f"{key} overridden by ${var}")

    return ChatConfig(**data)


def get_ollama_client(config: ChatConfig):
    """
    Get the Ollama backend for this configuration.

    Requirements:
    - Ollama running locally (https://ollama.com)
    - The model pulled, e.g.: ollama pull deepseek-r1:1.5b
    """
    return create_chat_backend(
        "ollama",
        base_url=config.base_url,
        model_id=config.model,
        temperature=config.temperature,
        repeat_penalty=config.repeat_penalty,
        numa=config.numa,
        timeout_s=config.timeout_s,
    )


def build_pipeline(config: ChatConfig, backend=None) -> ChatPipeline:
    """Wire a backend and a fresh conversation into a pipeline."""
    state = ConversationState(premise_policy=config.premise_policy, markers=config.markers)
    return ChatPipeline(
        backend if backend is not None else get_ollama_client(config),
        state=state,
        on_malformed=config.on_malformed,
    )
