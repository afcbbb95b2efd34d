"""Host configuration.

A config file is JSON in one of two shapes: a full :class:`HostConfig`
document, or a bare server map ``{"name": {"url": "..."}}`` as used by
``server-config.json``. API keys never live in the file; they are read
from the environment variable named by ``ModelConfig.api_key_env``.
"""

import json
import logging
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from mcphost.loop import DEFAULT_STEERING

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    url: str


class ModelConfig(BaseModel):
    provider: Literal["dashscope", "openai", "compatible"] = "dashscope"
    model: str = "qwen3-235b-a22b"
    base_url: str | None = None
    api_key_env: str | None = None
    enable_thinking: bool = True

    def api_key(self) -> str | None:
        if self.api_key_env:
            return os.getenv(self.api_key_env)
        return None


class HostConfig(BaseModel):
    servers: dict[str, ServerConfig] = Field(default_factory=dict)
    model: ModelConfig = Field(default_factory=ModelConfig)
    steering_instruction: str | None = DEFAULT_STEERING
    max_turns: int = 50
    parallel_tool_calls: bool = False
    require_servers: bool = True


def load_config(path: str | Path) -> HostConfig:
    """Read a config file in either supported shape."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict) and "servers" not in raw and all(
        isinstance(v, dict) and "url" in v for v in raw.values()
    ):
        logger.debug(f"{path} is a bare server map")
        raw = {"servers": raw}
    return HostConfig.model_validate(raw)
