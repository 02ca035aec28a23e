#!/usr/bin/env python3
"""
Unified configuration management for mediaflow.
Handles interactive credential prompts and configuration storage.
"""
import os
import json
import getpass
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass, asdict, field, fields

logger = logging.getLogger(__name__)


@dataclass
class ServiceConfig:
    """Configuration for the generation service"""
    service_url: str = "http://localhost:3000"
    timeout: float = 300.0  # per-request timeout seconds; renders can be slow
    max_retries_429: int = 6
    max_retries_5xx: int = 5


@dataclass
class CredentialsConfig:
    """API keys forwarded to the generation service"""
    gemini_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None
    replicate_api_key: Optional[str] = None


@dataclass
class EngineConfig:
    """Configuration for the execution engine"""
    max_concurrency: int = 4
    history_limit: int = 100


# Environment variables take precedence over stored keys
CREDENTIAL_ENV_VARS = {
    "gemini_api_key": "GEMINI_API_KEY",
    "openai_api_key": "OPENAI_API_KEY",
    "elevenlabs_api_key": "ELEVENLABS_API_KEY",
    "replicate_api_key": "REPLICATE_API_KEY",
}


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


@dataclass
class MediaflowConfig:
    """Main mediaflow configuration"""
    service: ServiceConfig = field(default_factory=ServiceConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "service": asdict(self.service),
            "credentials": asdict(self.credentials),
            "engine": asdict(self.engine)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaflowConfig":
        """Create from dictionary"""
        return cls(
            service=ServiceConfig(**_known_fields(ServiceConfig, data.get("service", {}))),
            credentials=CredentialsConfig(**_known_fields(CredentialsConfig, data.get("credentials", {}))),
            engine=EngineConfig(**_known_fields(EngineConfig, data.get("engine", {})))
        )


class ConfigManager:
    """Manages mediaflow configuration with interactive prompts"""

    CONFIG_FILE = Path.home() / ".mediaflow" / "config.json"

    def __init__(self, config_file: Optional[Path] = None):
        if config_file is not None:
            self.CONFIG_FILE = Path(config_file)
        self.config: Optional[MediaflowConfig] = None

    def _ensure_config_dir(self):
        """Ensure config directory exists"""
        self.CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        # Set restrictive permissions
        self.CONFIG_FILE.parent.chmod(0o700)

    def load(self) -> MediaflowConfig:
        """Load configuration from file"""
        self.config = None
        if self.CONFIG_FILE.exists():
            try:
                with open(self.CONFIG_FILE, 'r') as f:
                    data = json.load(f)
                self.config = MediaflowConfig.from_dict(data)
            except (OSError, ValueError, TypeError, AttributeError) as e:
                logger.warning("Could not load config file %s: %s", self.CONFIG_FILE, e)

        # Fall back to defaults if file doesn't exist or is invalid
        if self.config is None:
            self.config = MediaflowConfig()
        return self.config

    def get_credentials(self) -> CredentialsConfig:
        """Stored API keys with environment variables applied on top"""
        stored = self.load().credentials
        credentials = CredentialsConfig(**asdict(stored))
        for attr, env_var in CREDENTIAL_ENV_VARS.items():
            value = os.environ.get(env_var)
            if value:
                setattr(credentials, attr, value)
        return credentials

    def save(self, config: Optional[MediaflowConfig] = None):
        """Save configuration to file"""
        if config:
            self.config = config

        if not self.config:
            return

        try:
            self._ensure_config_dir()
            with open(self.CONFIG_FILE, 'w') as f:
                json.dump(self.config.to_dict(), f, indent=2)
            # Set restrictive permissions
            self.CONFIG_FILE.chmod(0o600)
        except OSError as e:
            logger.warning("Could not save config file %s: %s", self.CONFIG_FILE, e)

    def get_api_headers(self) -> Dict[str, str]:
        """Headers carrying every configured API key"""
        credentials = self.get_credentials()
        headers = {}
        for attr, header in (
            ("gemini_api_key", "x-gemini-api-key"),
            ("openai_api_key", "x-openai-api-key"),
            ("elevenlabs_api_key", "x-elevenlabs-api-key"),
            ("replicate_api_key", "x-replicate-api-key"),
        ):
            value = getattr(credentials, attr)
            if value:
                headers[header] = value
        return headers

    def prompt_credentials(self) -> CredentialsConfig:
        """Interactively ask for any missing API keys"""
        config = self.load()
        credentials = config.credentials

        print("\n" + "="*60)
        print("Generation Service Credentials")
        print("="*60)
        print("Leave blank to skip. Environment variables override stored keys:")
        for env_var in CREDENTIAL_ENV_VARS.values():
            print(f"  - {env_var}")
        print()

        changed = False
        for attr in CREDENTIAL_ENV_VARS:
            if getattr(credentials, attr):
                continue
            label = attr.replace("_api_key", "").capitalize()
            value = getpass.getpass(f"{label} API key (hidden): ").strip()
            if value:
                setattr(credentials, attr, value)
                changed = True

        if changed:
            self.save(config)
        return credentials

    def clear_credentials(self):
        """Clear stored credentials (for security)"""
        config = self.load()
        config.credentials = CredentialsConfig()
        self.save(config)
        print("Credentials cleared from config file.")


# Global instance
_config_manager = None

def get_config_manager() -> ConfigManager:
    """Get global config manager instance"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager
