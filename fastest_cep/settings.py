import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger


# ===========================
# Constants
# ===========================

class Constants:
    """Defaults used when config.yaml leaves a value out."""

    CONFIG_ENV_VAR = "FASTEST_CEP_CONFIG"
    CONFIG_FILE = "config.yaml"

    HOST = "0.0.0.0"
    PORT = 8080

    # The race deadline; every provider shares it
    RACE_TIMEOUT = 1.0
    HTTP_CLIENT_TIMEOUT = 5.0

    LOG_LEVEL = "INFO"

    VIACEP_BASE_URL = "https://viacep.com.br/ws"
    BRASILAPI_BASE_URL = "https://brasilapi.com.br/api/cep/v1"


# ===========================
# Configuration Management
# ===========================

def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from a YAML file, returning {} when it is missing."""
    path = Path(config_path or os.environ.get(Constants.CONFIG_ENV_VAR, Constants.CONFIG_FILE))
    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(f"{path} not found! Falling back to defaults")
        return {}

    if not isinstance(config, dict):
        raise ValueError(f"Configuration in {path} must be a mapping, got {type(config).__name__}")

    logger.info(f"Configuration loaded from {path}")
    return config


class ProviderSettings:
    """Per-provider switches read from the `providers` section."""

    def __init__(self, name: str, base_url: str, enabled: bool = True):
        self.name = name
        self.base_url = base_url
        self.enabled = enabled


class Settings:
    """Application settings built from a config mapping."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        server = config.get("server") or {}
        timeouts = config.get("timeouts") or {}
        providers = config.get("providers") or {}

        self.host: str = server.get("host", Constants.HOST)
        self.port: int = int(server.get("port", Constants.PORT))

        self.race_timeout: float = float(timeouts.get("race_timeout", Constants.RACE_TIMEOUT))
        self.http_client_timeout: float = float(
            timeouts.get("http_client_timeout", Constants.HTTP_CLIENT_TIMEOUT)
        )
        if self.race_timeout <= 0:
            raise ValueError(f"timeouts.race_timeout must be positive, got {self.race_timeout}")

        self.log_level: str = str((config.get("logging") or {}).get("level", Constants.LOG_LEVEL)).upper()

        self.providers: Dict[str, ProviderSettings] = {
            "ViaCEP": self._provider("ViaCEP", providers.get("viacep") or {}, Constants.VIACEP_BASE_URL),
            "BrasilAPI": self._provider(
                "BrasilAPI", providers.get("brasilapi") or {}, Constants.BRASILAPI_BASE_URL
            ),
        }

    @staticmethod
    def _provider(name: str, section: Dict[str, Any], default_url: str) -> ProviderSettings:
        return ProviderSettings(
            name=name,
            base_url=section.get("base_url", default_url),
            enabled=bool(section.get("enabled", True)),
        )

    @classmethod
    def from_file(cls, config_path: Optional[str] = None) -> "Settings":
        return cls(load_config(config_path))


def configure_logging(level: str) -> None:
    """Send loguru output to stderr at the given level."""
    logger.remove()
    logger.add(sys.stderr, level=level)
