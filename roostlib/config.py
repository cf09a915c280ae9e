"""
Roost configuration loading.

Settings come from a small TOML file, by default ~/.config/roost.toml:

    dbs_folder = "~/passwords"
    clipboard_timeout = 30
    log_level = "INFO"

A missing file means defaults. The ROOST_CONFIG environment variable
points at a different file. Settings the file leaves out can also be given
as ROOST_DBS_FOLDER, ROOST_CLIPBOARD_TIMEOUT and ROOST_LOG_LEVEL.
"""

import os
import logging
import tomllib
from typing import Annotated, Literal, Optional

from pydantic import NonNegativeInt, StringConstraints, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ROOST_CONFIG"
DEFAULT_CONFIG_PATH = os.path.join("~", ".config", "roost.toml")
DEFAULT_DBS_FOLDER = os.path.join("~", ".local", "share", "roost")
DEFAULT_CLIPBOARD_TIMEOUT = 30
DEFAULT_LOG_LEVEL = "WARNING"

LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"]


class RoostConfig(BaseSettings):
    # Folder holding the *.json databases; "~" is expanded
    dbs_folder: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)] = DEFAULT_DBS_FOLDER

    # Seconds before a copied password is wiped from the clipboard, 0 = never
    clipboard_timeout: NonNegativeInt = DEFAULT_CLIPBOARD_TIMEOUT

    log_level: LogLevel = DEFAULT_LOG_LEVEL

    model_config = SettingsConfigDict(env_prefix="ROOST_", extra="ignore", validate_default=True)

    @field_validator("dbs_folder")
    @classmethod
    def expand_home(cls, v: str) -> str:
        return os.path.expanduser(v)

    @field_validator("clipboard_timeout", mode="before")
    @classmethod
    def reject_bool(cls, v):
        # bool is an int subclass; "clipboard_timeout = true" is a typo, not 1
        if isinstance(v, bool):
            raise ValueError("must be a number of seconds, not a boolean")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v


def resolve_config_path(path: Optional[str] = None) -> str:
    """Explicit path, then $ROOST_CONFIG, then the default location."""
    chosen = path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    return os.path.expanduser(chosen)


def _describe(err: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}"
        for item in err.errors()
    )


def load_config(path: Optional[str] = None) -> RoostConfig:
    """
    Load settings from a TOML file.

    Args:
        path (str, optional): Settings file. See resolve_config_path().

    Returns:
        RoostConfig: Parsed settings, defaults for anything not set

    Raises:
        ConfigError: If the file exists but cannot be read or parsed, or a
            value has the wrong type
    """
    config_path = resolve_config_path(path)

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        logger.debug("No config file at %s, using defaults", config_path)
        data = {}
    except tomllib.TOMLDecodeError as err:
        raise ConfigError(f"Invalid config file {config_path}: {err}") from err
    except OSError as err:
        raise ConfigError(f"Cannot read config file {config_path}: {err}") from err

    try:
        return RoostConfig(**data)
    except ValidationError as err:
        raise ConfigError(f"Invalid setting in {config_path}: {_describe(err)}") from err
