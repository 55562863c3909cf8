"""Configuration for cardlink.

Config discovery (first match wins):
  1. ``--config`` flag
  2. ``./cardlink.yaml``
  3. ``~/.config/cardlink/config.yaml``
  4. Built-in defaults

Environment variables ``LLM_BASE_URL``, ``LLM_API_KEY``, ``LLM_MODEL`` and
``MCP_SERVER_URL`` override whatever the file says.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from cardlink.errors import ConfigurationError

_logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config data structures
# ---------------------------------------------------------------------------

@dataclass
class LLMSettings:
    """Connection and sampling settings for the chat-completions endpoint."""

    base_url: str = ""
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 4000
    timeout: float = 30  # read timeout, seconds
    connect_timeout: float = 10
    max_tool_iterations: int = 5
    tool_choice: Any = None  # "auto" | "required" | "none" | {"type": "function", ...}
    extra_params: dict[str, Any] = field(default_factory=dict)

    def require_credentials(self) -> None:
        """Raise :class:`ConfigurationError` unless key and base URL are set."""
        if not self.api_key:
            raise ConfigurationError("LLM_API_KEY not configured")
        if not self.base_url:
            raise ConfigurationError("LLM_BASE_URL not configured")


@dataclass
class RetrySpec:
    """Job-layer retry delays (seconds) and attempt counts."""

    timeout_wait: float = 5
    timeout_attempts: int = 3
    api_error_wait: float = 10
    api_error_attempts: int = 2


@dataclass
class CardlinkConfig:
    """Top-level config."""

    llm: LLMSettings = field(default_factory=LLMSettings)
    mcp_server_url: str | None = None
    history_limit: int = 10
    database: str = "~/.cardlink/cardlink.db"
    concurrent_tools: bool = False
    retry: RetrySpec = field(default_factory=RetrySpec)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_SEARCH_PATHS = [
    Path("./cardlink.yaml"),
    Path.home() / ".config" / "cardlink" / "config.yaml",
]


def _parse_llm(raw: dict[str, Any] | None) -> LLMSettings:
    if not raw:
        return LLMSettings()
    known = {
        k: v for k, v in raw.items()
        if v is not None and k in LLMSettings.__dataclass_fields__
    }
    return LLMSettings(**known)


def _parse_retry(raw: dict[str, Any] | None) -> RetrySpec:
    if not raw:
        return RetrySpec()
    known = {
        k: v for k, v in raw.items()
        if v is not None and k in RetrySpec.__dataclass_fields__
    }
    return RetrySpec(**known)


def apply_env(config: CardlinkConfig, env: Mapping[str, str] | None = None) -> CardlinkConfig:
    """Overlay environment variables onto *config* (in place) and return it."""
    env = os.environ if env is None else env
    if env.get("LLM_BASE_URL"):
        config.llm.base_url = env["LLM_BASE_URL"]
    if env.get("LLM_API_KEY"):
        config.llm.api_key = env["LLM_API_KEY"]
    if env.get("LLM_MODEL"):
        config.llm.model = env["LLM_MODEL"]
    if env.get("MCP_SERVER_URL"):
        config.mcp_server_url = env["MCP_SERVER_URL"]
    return config


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> CardlinkConfig:
    """Load configuration from YAML, then apply environment overrides.

    Parameters
    ----------
    path:
        Explicit config path.  If *None*, search default locations.
    env:
        Environment mapping (defaults to ``os.environ``).

    Returns
    -------
    CardlinkConfig
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            _logger.warning("Config file not found: %s, using defaults", path)
            return apply_env(CardlinkConfig(), env)
    else:
        for candidate in _SEARCH_PATHS:
            if candidate.exists():
                config_path = candidate
                break

    if config_path is None:
        _logger.info("No config file found, using defaults")
        return apply_env(CardlinkConfig(), env)

    _logger.info("Loading config from %s", config_path)
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = CardlinkConfig(
        llm=_parse_llm(raw.get("llm")),
        mcp_server_url=raw.get("mcp_server_url"),
        history_limit=raw.get("history_limit", 10),
        database=raw.get("database", "~/.cardlink/cardlink.db"),
        concurrent_tools=raw.get("concurrent_tools", False),
        retry=_parse_retry(raw.get("retry")),
    )
    return apply_env(config, env)
