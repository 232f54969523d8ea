"""User-editable client configuration with a persisted override."""
import json
import os
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from encore_console.core.logging import logger


CONFIG_KEY = "encore-ui-config"


class ClientSettings(BaseSettings):
    """Defaults for the client configuration, from the environment."""

    model_config = SettingsConfigDict(env_prefix="ENCORE_UI_", env_file=".env", extra="ignore")

    encore_api_url: str = "http://localhost:8080"
    bearer_token: str = ""


class ClientConfig(BaseModel):
    """Backend location and credential used by the console client."""
    encore_api_url: str
    bearer_token: str = ""


def default_config() -> ClientConfig:
    defaults = ClientSettings()
    return ClientConfig(
        encore_api_url=defaults.encore_api_url,
        bearer_token=defaults.bearer_token,
    )


class ConfigStore:
    """
    Persisted client configuration.

    `load()` merges persisted values over the defaults and falls back to the
    defaults when nothing usable is persisted.
    """

    def __init__(self, defaults: Optional[ClientConfig] = None):
        self.defaults = defaults or default_config()

    def _read(self) -> Optional[dict]:
        raise NotImplementedError

    def _write(self, values: dict):
        raise NotImplementedError

    def _delete(self):
        raise NotImplementedError

    def load(self) -> ClientConfig:
        try:
            persisted = self._read()
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to parse saved config, using defaults: {e}")
            return self.defaults.model_copy()

        if not persisted:
            return self.defaults.model_copy()
        if not isinstance(persisted, dict):
            logger.warning("Saved config is not an object, using defaults")
            return self.defaults.model_copy()

        merged = {**self.defaults.model_dump(), **persisted}
        try:
            return ClientConfig.model_validate(merged)
        except ValidationError as e:
            logger.warning(f"Saved config is invalid, using defaults: {e}")
            return self.defaults.model_copy()

    def save(self, config: ClientConfig):
        self._write(config.model_dump())

    def update(self, **changes) -> ClientConfig:
        """Apply a partial change and persist the result."""
        config = self.load().model_copy(update=changes)
        config = ClientConfig.model_validate(config.model_dump())
        self.save(config)
        return config

    def clear(self) -> ClientConfig:
        """Forget persisted values; returns the defaults."""
        self._delete()
        return self.defaults.model_copy()


class MemoryConfigStore(ConfigStore):
    """Keeps the persisted values in memory."""

    def __init__(self, defaults: Optional[ClientConfig] = None):
        super().__init__(defaults)
        self._values: Optional[dict] = None

    def _read(self) -> Optional[dict]:
        return self._values

    def _write(self, values: dict):
        self._values = dict(values)

    def _delete(self):
        self._values = None


class JsonFileConfigStore(ConfigStore):
    """
    Stores the configuration under `encore-ui-config` in a JSON file.

    The file is readable and writable by the current user only.
    """

    def __init__(self, path: Union[str, Path], defaults: Optional[ClientConfig] = None):
        super().__init__(defaults)
        self.path = Path(path).expanduser()

    def _read_file(self) -> dict:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("config file does not hold a JSON object")
        return data

    def _read(self) -> Optional[dict]:
        return self._read_file().get(CONFIG_KEY)

    def _write(self, values: dict):
        try:
            data = self._read_file()
        except ValueError:
            logger.warning(f"Overwriting unreadable config file {self.path}")
            data = {}
        data[CONFIG_KEY] = values
        self._dump(data)

    def _delete(self):
        try:
            data = self._read_file()
        except ValueError:
            self._dump({})
            return
        if CONFIG_KEY not in data:
            return
        del data[CONFIG_KEY]
        self._dump(data)

    def _dump(self, data: dict):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
