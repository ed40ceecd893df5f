import os
import logging
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv, find_dotenv

class ConfigError(Exception):
    """Custom exception for configuration errors."""
    pass

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_PRESETS_FILE_PATH = Path("presets.json")


def _load_dotenv() -> None:
    dotenv_path = find_dotenv(usecwd=True) # Search in current working directory and upwards
    logger.debug(f"Attempting to load .env file from: {dotenv_path if dotenv_path else 'Not found'}")
    found_dotenv = load_dotenv(dotenv_path=dotenv_path, override=False) # Existing env vars win
    logger.debug(f".env file found: {found_dotenv}")


def load_presets_file_path() -> Path:
    """
    Returns the batch presets file from PRESETS_FILE_PATH (.env or environment).

    Presets work offline, so unlike AppConfig.load this never requires the API settings.
    """
    _load_dotenv()
    presets_path = os.environ.get("PRESETS_FILE_PATH")
    logger.debug(f"PRESETS_FILE_PATH from env/dotenv: {presets_path}")
    return Path(presets_path) if presets_path else DEFAULT_PRESETS_FILE_PATH


@dataclass
class AppConfig:
    """Application configuration data."""
    inventory_api_url: str
    inventory_api_token: str
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    @classmethod
    def load(cls) -> 'AppConfig':
        """
        Loads configuration from environment variables.

        Loads .env file first, then checks environment variables.
        Raises ConfigError if required variables are missing or malformed.
        """
        _load_dotenv()

        url = os.environ.get("INVENTORY_API_URL")
        token = os.environ.get("INVENTORY_API_TOKEN")
        timeout_raw = os.environ.get("INVENTORY_REQUEST_TIMEOUT")

        logger.debug(f"INVENTORY_API_URL from env/dotenv: {url}")
        logger.debug(f"INVENTORY_API_TOKEN from env/dotenv: {'SET' if token else 'NOT SET'}") # Never log the token itself
        logger.debug(f"INVENTORY_REQUEST_TIMEOUT from env/dotenv: {timeout_raw}")

        if not url:
            logger.error("INVENTORY_API_URL not found in environment variables or .env file")
            raise ConfigError("INVENTORY_API_URL not found in environment variables or .env file")
        if not token:
            logger.error("INVENTORY_API_TOKEN not found in environment variables or .env file")
            raise ConfigError("INVENTORY_API_TOKEN not found in environment variables or .env file")

        timeout = DEFAULT_REQUEST_TIMEOUT
        if timeout_raw:
            try:
                timeout = float(timeout_raw)
            except ValueError:
                raise ConfigError(f"INVENTORY_REQUEST_TIMEOUT must be a number of seconds, got '{timeout_raw}'")
            if timeout <= 0:
                raise ConfigError(f"INVENTORY_REQUEST_TIMEOUT must be positive, got '{timeout_raw}'")

        config_instance = cls(
            inventory_api_url=url,
            inventory_api_token=token,
            request_timeout=timeout,
        )
        logger.info(
            f"AppConfig loaded: URL='{config_instance.inventory_api_url}', "
            f"Token is {'SET' if config_instance.inventory_api_token else 'NOT SET'}, "
            f"Timeout={config_instance.request_timeout}s"
        )
        return config_instance
