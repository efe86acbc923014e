# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
FlowEngine Configuration - Single source of truth.
YAML holds every setting; the environment holds only secrets.

Every tunable of the engine (timeouts, retry policy, collaborator endpoints,
sandbox caps, logging) lives in configs/engine.yaml and is inspectable with `cat`.
"""

import os
import logging
import yaml
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from flowengine.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = str(Path(__file__).resolve().parent.parent.parent / "configs" / "engine.yaml")


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class EngineConfig:
    """
    Immutable engine configuration.
    All values from YAML. No hidden state.
    """

    # -- Execution --
    timeout_seconds: int = 300
    max_retries: int = 0
    retry_delay: float = 1.0
    max_retry_delay: float = 30.0
    cancel_grace_seconds: float = 1.0

    # -- HTTP --
    http_timeout: float = 30.0

    # -- AI --
    ai_provider: str = "openai"
    default_model: str = "gpt-4o-mini"
    ai_base_url: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 2048

    # -- Retrieval --
    retrieval_url: Optional[str] = None
    retrieval_timeout: float = 10.0

    # -- Paths --
    data_dir: str = "./volumes/data"
    storage_dir: str = "./volumes/outputs"
    storage_public_url: str = "/files"
    store_dir: str = "./volumes/executions"

    # -- Sandbox --
    sandbox_python: str = "python3"
    sandbox_timeout: int = 30
    sandbox_max_log_lines: int = 100
    sandbox_max_output_chars: int = 10000

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "json"


# =============================================================================
# SECRETS (environment only)
# =============================================================================

def get_openai_api_key() -> Optional[str]:
    return os.getenv("OPENAI_API_KEY")


def get_anthropic_api_key() -> Optional[str]:
    """Read from the environment, never from engine.yaml."""
    return os.getenv("ANTHROPIC_API_KEY")


def get_retrieval_token() -> Optional[str]:
    return os.getenv("FLOWENGINE_RETRIEVAL_TOKEN")


# =============================================================================
# LOADER
# =============================================================================

# EngineConfig field -> (yaml section, key)
YAML_KEYS = {
    "timeout_seconds": ("execution", "timeout_seconds"),
    "max_retries": ("execution", "max_retries"),
    "retry_delay": ("execution", "retry_delay"),
    "max_retry_delay": ("execution", "max_retry_delay"),
    "cancel_grace_seconds": ("execution", "cancel_grace_seconds"),
    "http_timeout": ("http", "timeout"),
    "ai_provider": ("ai", "provider"),
    "default_model": ("ai", "default_model"),
    "ai_base_url": ("ai", "base_url"),
    "temperature": ("ai", "temperature"),
    "max_tokens": ("ai", "max_tokens"),
    "retrieval_url": ("retrieval", "url"),
    "retrieval_timeout": ("retrieval", "timeout"),
    "data_dir": ("paths", "data_dir"),
    "storage_dir": ("paths", "storage_dir"),
    "storage_public_url": ("paths", "storage_public_url"),
    "store_dir": ("paths", "store_dir"),
    "sandbox_python": ("sandbox", "python"),
    "sandbox_timeout": ("sandbox", "timeout"),
    "sandbox_max_log_lines": ("sandbox", "max_log_lines"),
    "sandbox_max_output_chars": ("sandbox", "max_output_chars"),
    "log_level": ("logging", "level"),
    "log_format": ("logging", "format"),
}


def load_config(path: str = DEFAULT_CONFIG_PATH) -> EngineConfig:
    """
    Build an EngineConfig from the YAML file at `path`.

    Missing sections, keys and null values keep the dataclass defaults.
    A missing file yields the defaults. LOG_LEVEL in the environment
    overrides logging.level so verbosity can be raised without editing YAML.
    """
    config_file = Path(path)
    if not config_file.exists():
        logger.info(f"Config not found at {path}, using defaults")
        return EngineConfig()

    raw = yaml.safe_load(config_file.read_text()) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{path} must contain a mapping", details={"config_file": str(path)})

    overrides = {}
    for field_name, (section, key) in YAML_KEYS.items():
        values = raw.get(section)
        if isinstance(values, dict) and values.get(key) is not None:
            overrides[field_name] = values[key]

    if os.getenv("LOG_LEVEL"):
        overrides["log_level"] = os.getenv("LOG_LEVEL")

    return replace(EngineConfig(), **overrides)


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Process-wide config, loaded once from FLOWENGINE_CONFIG_PATH or the bundled file."""
    global _config
    if _config is None:
        _config = load_config(os.getenv("FLOWENGINE_CONFIG_PATH", DEFAULT_CONFIG_PATH))
    return _config


def reload_config() -> EngineConfig:
    global _config
    _config = None
    return get_config()
