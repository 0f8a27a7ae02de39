"""Settings persistence for agquota.

Settings live in ``settings.json`` inside the platform config directory and
are loaded once when the ConfigStore is created. Every update is written
back immediately and announced to change listeners.
"""

import json
import logging
import os
import platform
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from agquota.events import Subscribers

logger = logging.getLogger(__name__)

APP_NAME = "agquota"
MIN_POLLING_INTERVAL = 30


@dataclass(slots=True, frozen=True)
class WatcherConfig:
    """User-facing settings."""

    enabled: bool = True
    polling_interval: int = 120  # Seconds
    pinned_models: tuple[str, ...] = field(default_factory=tuple)
    show_prompt_credits: bool = False
    use_simple_names: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "polling_interval", max(MIN_POLLING_INTERVAL, int(self.polling_interval))
        )
        object.__setattr__(self, "pinned_models", tuple(self.pinned_models))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WatcherConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["pinned_models"] = list(self.pinned_models)
        return data


def default_config_dir() -> Path:
    """Return the per-user directory for settings and logs."""
    override = os.getenv("AGQUOTA_CONFIG_DIR")
    if override:
        return Path(override).expanduser()

    system = platform.system()
    if system == "Darwin":
        return Path.home() / "Library" / "Preferences" / APP_NAME
    if system == "Windows":
        return Path.home() / "AppData" / "Local" / APP_NAME
    return Path.home() / ".config" / APP_NAME


class ConfigStore:
    """Loads, saves and announces changes to WatcherConfig."""

    def __init__(self, config_dir: Path | None = None, persist: bool = True) -> None:
        self._config_dir = config_dir or default_config_dir()
        self._persist = persist
        self._config = WatcherConfig()
        self._listeners: Subscribers[WatcherConfig] = Subscribers("config change")
        if persist:
            self.load()

    @property
    def settings_file(self) -> Path:
        return self._config_dir / "settings.json"

    def get_config(self) -> WatcherConfig:
        return self._config

    def on_change(self, callback: Callable[[WatcherConfig], None]) -> Callable[[], None]:
        return self._listeners.add(callback)

    def load(self) -> WatcherConfig:
        """Read settings from disk, falling back to defaults."""
        if not self.settings_file.exists():
            self._config = WatcherConfig()
            return self._config

        try:
            with open(self.settings_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("settings root is not an object")
            self._config = WatcherConfig.from_dict(data)
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", self.settings_file, exc)
            self._config = WatcherConfig()
        return self._config

    def update(self, **changes: Any) -> WatcherConfig:
        """Apply changes, persist them and notify listeners."""
        self._config = replace(self._config, **changes)
        self._save()
        logger.info("Config changed: %s", changes)
        self._listeners.publish(self._config)
        return self._config

    def toggle_pinned_model(self, model_id: str) -> WatcherConfig:
        pinned = list(self._config.pinned_models)
        if model_id in pinned:
            pinned.remove(model_id)
        else:
            pinned.append(model_id)
        return self.update(pinned_models=tuple(pinned))

    def toggle_simple_names(self) -> WatcherConfig:
        return self.update(use_simple_names=not self._config.use_simple_names)

    def _save(self) -> None:
        if not self._persist:
            return
        try:
            self._config_dir.mkdir(parents=True, exist_ok=True)
            old_umask = os.umask(0o077)
            try:
                with open(self.settings_file, "w", encoding="utf-8") as f:
                    json.dump(self._config.to_dict(), f, indent=2)
                os.chmod(self.settings_file, 0o600)
            finally:
                os.umask(old_umask)
        except OSError as exc:
            logger.error("Could not save settings to %s: %s", self.settings_file, exc)
