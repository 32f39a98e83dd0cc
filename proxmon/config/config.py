# proxmon/config/config.py

import logging
import os
from pathlib import Path

import tomli
from pydantic import BaseModel

logger = logging.getLogger(__name__)

CONFIG_FILE_PATH = Path(os.getenv("PROXMON_CONFIG", "config.toml"))

class ProxmoxSettings(BaseModel):
    base_url: str = ""
    token_id: str = ""
    token_secret: str = ""
    default_node: str = ""
    default_vmid: str = ""
    verify_ssl: bool = True
    poll_interval_seconds: float = 15.0
    timeout_seconds: float = 10.0

class StorageSettings(BaseModel):
    path: str = "proxmon.db"

class SeriesSettings(BaseModel):
    window_size: int = 20

class Settings(BaseModel):
    proxmox: ProxmoxSettings = ProxmoxSettings()
    storage: StorageSettings = StorageSettings()
    series: SeriesSettings = SeriesSettings()

def load_config(path: Path = CONFIG_FILE_PATH) -> Settings:
    """
    Loads configuration from a TOML file (config.toml by default).
    """
    if not path.exists():
        logger.critical("Configuration file not found at %s", path.resolve())
        logger.critical("Copy 'config.example.toml' to 'config.toml' and fill it out.")
        raise FileNotFoundError(f"{path} not found")

    try:
        with open(path, "rb") as f:
            data = tomli.load(f)
        settings = Settings.model_validate(data)

        # Check for placeholder token secret
        if "REPLACE_ME" in settings.proxmox.token_secret:
            logger.warning("Using placeholder Proxmox API token secret.")
            logger.warning("Create an API token in Proxmox and update %s.", path)

        return settings
    except Exception as e:
        logger.error("Error loading configuration: %s", e)
        raise

# Load config on import and make it available
try:
    settings = load_config()
except FileNotFoundError:
    # Allow imports to succeed; components fail on use
    settings = None

def get_settings() -> Settings:
    """
    Returns the loaded settings, or defaults when no config file exists.
    """
    return settings if settings is not None else Settings()
