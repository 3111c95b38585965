"""
Stepwise Configuration System

Configure via:
1. Environment variables (STEPWISE_*)
2. Config file (stepwise.config.json or .stepwise/config.json)
3. Direct code configuration

Priority: Direct code > Environment variables > Config file > Defaults

Example config file (stepwise.config.json):
{
    "llm_provider": "openrouter",
    "max_plan_steps": 30,
    "adapt_plan": true
}

Example environment variables:
    STEPWISE_MAX_PLAN_STEPS=30
    STEPWISE_ADAPT_PLAN=true
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


DEFAULT_MODEL = "anthropic/claude-sonnet-4.5"
STEPWISE_DIR = ".stepwise"

# Environment variable -> config attribute
ENV_VARS = {
    "STEPWISE_LLM_PROVIDER": "llm_provider",
    "OPENROUTER_API_KEY": "openrouter_api_key",
    "STEPWISE_MODEL": "model",
    "STEPWISE_MAX_TOKENS": "max_tokens",
    "STEPWISE_TEMPERATURE": "temperature",
    "STEPWISE_MAX_PLAN_STEPS": "max_plan_steps",
    "STEPWISE_DEADLOCK_REPAIR_ATTEMPTS": "deadlock_repair_attempts",
    "STEPWISE_CONTEXT_RECENT_ENTRIES": "context_recent_entries",
    "STEPWISE_WORKER_MAX_STEPS": "worker_max_steps",
    "STEPWISE_SCHEMA_RETRIES": "schema_retries",
    "STEPWISE_ADAPT_PLAN": "adapt_plan",
    "STEPWISE_COMMAND_TIMEOUT": "command_timeout",
    "STEPWISE_MEMORY_DIR": "memory_dir",
    "STEPWISE_DEBUG_LOGGING": "debug_logging",
    "AZURE_OPENAI_ENDPOINT": "azure_endpoint",
    "AZURE_OPENAI_API_KEY": "azure_api_key",
    "AZURE_OPENAI_DEPLOYMENT": "azure_deployment",
    "STEPWISE_BEDROCK_REGION": "bedrock_region",
    "STEPWISE_BEDROCK_MODEL_ID": "bedrock_model_id",
    "STEPWISE_OLLAMA_URL": "ollama_url",
    "STEPWISE_OLLAMA_MODEL": "ollama_model",
}


def _coerce(value, target_type):
    """Convert a raw file/env value to the type of the default."""
    if target_type is bool:
        if isinstance(value, bool):
            return value
        return str(value).lower() in ("true", "1", "yes")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    return str(value)


@dataclass
class StepwiseConfig:
    """
    Configuration for the orchestration engine.

    Attributes:
        llm_provider: One of "openrouter" (default), "azure", "bedrock", "ollama",
            or "custom" when a client is passed in code.

        model: Model used with OpenRouter.

        max_plan_steps: Safety bound on executed steps per plan.

        deadlock_repair_attempts: How many times the scheduler clears a step's
            dependencies when no step is runnable before giving up.

        context_recent_entries: Number of resource-log entries kept in the
            summarized context handed to workers.

        worker_max_steps: Maximum tool rounds per worker call.

        schema_retries: Re-prompts allowed when structured output fails validation.

        adapt_plan: Ask the verification worker after each step whether the
            remaining plan should change.
    """
    # LLM configuration
    llm_provider: str = "openrouter"
    openrouter_api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096
    temperature: float = 0.3

    # Orchestration settings
    max_plan_steps: int = 20
    deadlock_repair_attempts: int = 1
    context_recent_entries: int = 3
    worker_max_steps: int = 10
    schema_retries: int = 2
    adapt_plan: bool = False

    # Worker settings
    command_timeout: int = 60
    memory_dir: str = f"{STEPWISE_DIR}/memory"

    # Debug settings
    debug_logging: bool = True

    # Provider specific
    azure_endpoint: Optional[str] = None
    azure_api_key: Optional[str] = None
    azure_deployment: Optional[str] = None
    bedrock_region: str = "us-east-1"
    bedrock_model_id: str = "anthropic.claude-3-5-sonnet-20240620-v1:0"
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "llama3.1"

    def _apply(self, key: str, value) -> None:
        """Set one attribute, ignoring values that don't convert."""
        defaults = {f.name: f for f in fields(self)}
        if key not in defaults:
            return
        current = getattr(self, key)
        target_type = type(current) if current is not None else str
        try:
            setattr(self, key, _coerce(value, target_type))
        except (ValueError, TypeError):
            pass

    @classmethod
    def from_env(cls) -> 'StepwiseConfig':
        """Load configuration from environment variables."""
        config = cls()
        for env_name, attr in ENV_VARS.items():
            value = os.getenv(env_name)
            if value:
                config._apply(attr, value)
        return config

    @classmethod
    def from_file(cls, path: Path) -> 'StepwiseConfig':
        """Load configuration from a JSON file."""
        config = cls()

        if not path.exists():
            return config

        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            # Invalid config file, use defaults
            return config

        if not isinstance(data, dict):
            return config

        for key, value in data.items():
            config._apply(key, value)

        if "openrouter_model" in data:  # alias
            config._apply("model", data["openrouter_model"])

        return config

    @classmethod
    def load(cls, repo_path: Optional[Path] = None) -> 'StepwiseConfig':
        """
        Load configuration from all sources (file, env, defaults).

        Priority: Environment variables > Config file > Defaults

        Args:
            repo_path: Path to repository (to look for config files)

        Returns:
            Merged configuration
        """
        config = cls()

        if repo_path:
            config_paths = [
                Path(repo_path) / "stepwise.config.json",
                Path(repo_path) / STEPWISE_DIR / "config.json",
            ]
            for config_path in config_paths:
                if config_path.exists():
                    config = cls.from_file(config_path)
                    break

        # Environment wins over the file
        for env_name, attr in ENV_VARS.items():
            value = os.getenv(env_name)
            if value:
                config._apply(attr, value)

        return config

    def to_dict(self) -> dict:
        """Convert config to dictionary (secrets omitted)."""
        secret = {"openrouter_api_key", "azure_api_key"}
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name not in secret}

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


# Global config instance (can be overridden)
_global_config: Optional[StepwiseConfig] = None


def get_config(repo_path: Optional[Path] = None) -> StepwiseConfig:
    """Get the current configuration."""
    global _global_config
    if _global_config is None:
        _global_config = StepwiseConfig.load(repo_path)
    return _global_config


def set_config(config: StepwiseConfig):
    """Set the global configuration."""
    global _global_config
    _global_config = config


def reset_config():
    """Reset configuration to reload from sources."""
    global _global_config
    _global_config = None
