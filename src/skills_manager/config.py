"""Configuration storage for Skills Manager."""

import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import yaml
from platformdirs import user_config_path
from pydantic import BaseModel, ValidationError

from .models import PlatformPreset, SystemConfig, UserConfig

logger = logging.getLogger(__name__)

APP_NAME = "skills-manager"

PATH_VARIABLES = ("${HOME}", "${APPDATA}", "${XDG_CONFIG_HOME}", "${LOCALAPPDATA}")


def default_system_config_path() -> Path:
    """Return the per-user location of the system config file."""
    return user_config_path(APP_NAME) / "config.yaml"


def resolve_path_variables(value: str, env: Optional[Mapping[str, str]] = None) -> str:
    """Substitute path-variable tokens and convert to host separators.

    Recognizes ``${HOME}``, ``${APPDATA}``, ``${XDG_CONFIG_HOME}`` and
    ``${LOCALAPPDATA}``. Forward slashes in the result are rewritten to
    ``os.sep``.

    Args:
        value: A stored, possibly templated, path.
        env: Environment to read variables from. Defaults to ``os.environ``.

    Returns:
        The resolved path string.
    """
    if not value:
        return value
    if env is None:
        env = os.environ

    home = env.get("HOME") or env.get("USERPROFILE") or ""
    xdg = env.get("XDG_CONFIG_HOME") or (f"{home}/.config" if home else "")
    values = {
        "${HOME}": home,
        "${APPDATA}": env.get("APPDATA", ""),
        "${XDG_CONFIG_HOME}": xdg,
        "${LOCALAPPDATA}": env.get("LOCALAPPDATA", ""),
    }

    result = value
    for token in PATH_VARIABLES:
        result = result.replace(token, values[token])

    return result.replace("/", os.sep)


class _DebouncedWriter:
    """Trailing-edge write coalescing for one config domain.

    ``mark_dirty`` (re)starts a timer; when it fires, or when ``flush`` is
    called, the write callback runs once for all changes accumulated since
    the last write.
    """

    def __init__(self, name: str, write: Callable[[], None], delay: float, lock: threading.RLock):
        self.name = name
        self._write = write
        self._delay = delay
        self._lock = lock
        self._timer: Optional[threading.Timer] = None
        self.dirty = False

    def mark_dirty(self) -> None:
        with self._lock:
            self.dirty = True
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            if not self.dirty:
                return
            try:
                self._write()
            except OSError as e:
                # stays dirty so the next flush retries
                logger.error("Failed to write %s config: %s", self.name, e)
                raise
            self.dirty = False

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


class ConfigStore:
    """Owns the system and user configuration domains.

    Both domains are loaded lazily, cached in memory and written back with a
    debounce. Callers receive copies; mutations go through ``set_*`` with a
    shallow patch of top-level fields.
    """

    DEBOUNCE_SECONDS = 0.5
    CONFIG_DIR = "config"

    # field -> (file name, header comment)
    USER_FILES = {
        "platforms": (
            "ai-agent.yaml",
            "# Skills Manager - AI agent platforms\n"
            "# Each platform has a skills directory and a rules file.\n"
            "# linkedSkills / linkedRules record what is deployed to it.\n",
        ),
        "repositories": (
            "skills.yaml",
            "# Skills Manager - skill repositories\n"
            "# Git repositories cloned under {baseDir}/skills.\n",
        ),
        "rules": (
            "rules.yaml",
            "# Skills Manager - rule catalog\n"
            "# Rule content lives in {baseDir}/rules/<id>.md.\n",
        ),
    }

    def __init__(
        self,
        system_config_path: Optional[Path] = None,
        presets_dir: Optional[Path] = None,
        debounce_seconds: Optional[float] = None,
    ):
        """Initialize the store.

        Args:
            system_config_path: Location of the system config file. Defaults to
                the per-user application config directory.
            presets_dir: Directory of built-in preset YAML files. Defaults to
                the presets shipped with the package.
            debounce_seconds: Write coalescing window.
        """
        self.system_config_path = Path(system_config_path or default_system_config_path())
        self.presets_dir = Path(presets_dir or Path(__file__).parent / "presets")
        delay = self.DEBOUNCE_SECONDS if debounce_seconds is None else debounce_seconds

        self._lock = threading.RLock()
        self._system: Optional[SystemConfig] = None
        self._user: Optional[UserConfig] = None
        self._user_dirty_fields: set[str] = set()
        self._system_writer = _DebouncedWriter("system", self._write_system, delay, self._lock)
        self._user_writer = _DebouncedWriter("user", self._write_user, delay, self._lock)

    # -- system domain -------------------------------------------------

    def get_system_config(self) -> SystemConfig:
        """Return a copy of the system config."""
        with self._lock:
            return self._system_config().model_copy(deep=True)

    def set_system_config(self, patch: dict[str, Any]) -> SystemConfig:
        """Shallow-merge ``patch`` into the system config and schedule a write.

        Changing ``base_dir`` flushes pending user writes to the old location
        and reloads the user domain from the new one before returning.
        """
        with self._lock:
            current = self._system_config()
            updated = _merge(current, patch)
            base_dir_changed = updated.base_dir != current.base_dir

            if base_dir_changed:
                self._user_writer.flush()
                self._user = None

            self._system = updated
            self._system_writer.mark_dirty()

            if base_dir_changed:
                logger.info("Base directory changed to %s, reloading user config", updated.base_dir)
                self._user = self._load_user()

            return updated.model_copy(deep=True)

    @property
    def base_dir(self) -> Optional[Path]:
        """The configured base directory, if any."""
        base_dir = self.get_system_config().base_dir
        return Path(base_dir) if base_dir else None

    # -- user domain ---------------------------------------------------

    def get_user_config(self) -> UserConfig:
        """Return a copy of the user config (empty while no base dir is set)."""
        with self._lock:
            if self.base_dir is None:
                return UserConfig()
            if self._user is None:
                self._user = self._load_user()
            return self._user.model_copy(deep=True)

    def set_user_config(self, patch: dict[str, Any]) -> Optional[UserConfig]:
        """Shallow-merge ``patch`` into the user config and schedule a write.

        Collection fields are replaced wholesale, so callers must pass the
        complete list. Without a base directory this is a logged no-op.

        Returns:
            The updated config, or None if nothing was changed.
        """
        with self._lock:
            if self.base_dir is None:
                logger.warning("No base directory configured; ignoring user config update")
                return None
            if self._user is None:
                self._user = self._load_user()

            self._user = _merge(self._user, patch)
            self._user_dirty_fields.update(patch)
            self._user_writer.mark_dirty()
            return self._user.model_copy(deep=True)

    # -- presets -------------------------------------------------------

    def get_presets(self) -> list[PlatformPreset]:
        """Return built-in presets followed by presets stored in system config."""
        presets = []

        if self.presets_dir.is_dir():
            for preset_file in sorted(self.presets_dir.glob("*.yaml")):
                try:
                    with open(preset_file, "r", encoding="utf-8") as f:
                        data = yaml.safe_load(f) or {}
                    preset = PlatformPreset.model_validate(data)
                except (OSError, yaml.YAMLError, ValidationError) as e:
                    logger.warning("Skipping invalid preset %s: %s", preset_file, e)
                    continue

                preset.skills_dir = resolve_path_variables(preset.skills_dir)
                preset.rules_file = resolve_path_variables(preset.rules_file)
                presets.append(preset)

        presets.extend(self.get_system_config().presets)
        return presets

    # -- persistence ---------------------------------------------------

    def flush(self) -> None:
        """Write every pending change to disk now."""
        self._system_writer.flush()
        self._user_writer.flush()

    def close(self) -> None:
        """Flush pending writes and stop the timers."""
        self.flush()
        self._system_writer.cancel()
        self._user_writer.cancel()

    def __enter__(self) -> "ConfigStore":
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _system_config(self) -> SystemConfig:
        if self._system is None:
            self._system = _load_model(self.system_config_path, SystemConfig)
        return self._system

    def _user_config_dir(self) -> Optional[Path]:
        base_dir = self._system_config().base_dir
        return Path(base_dir) / self.CONFIG_DIR if base_dir else None

    def _load_user(self) -> UserConfig:
        config_dir = self._user_config_dir()
        self._user_dirty_fields.clear()
        if config_dir is None:
            return UserConfig()

        data = {}
        for field, (filename, _) in self.USER_FILES.items():
            path = config_dir / filename
            items = _read_yaml(path)
            if isinstance(items, dict):
                items = items.get(field)
            if items is None:
                continue
            if not isinstance(items, list):
                logger.warning("Ignoring %s: expected a list of %s", path, field)
                continue
            data[field] = items

        try:
            return UserConfig.model_validate(data)
        except ValidationError as e:
            logger.warning("Invalid user config in %s, using defaults: %s", config_dir, e)
            return UserConfig()

    def _write_system(self) -> None:
        _write_yaml(
            self.system_config_path,
            self._system_config().to_yaml_dict(),
            "# Skills Manager - system settings\n",
        )

    def _write_user(self) -> None:
        config_dir = self._user_config_dir()
        if config_dir is None or self._user is None:
            return

        data = self._user.to_yaml_dict()
        for field in sorted(self._user_dirty_fields):
            filename, header = self.USER_FILES[field]
            _write_yaml(config_dir / filename, {field: data.get(field, [])}, header)
        self._user_dirty_fields.clear()


def _merge(model: BaseModel, patch: dict[str, Any]):
    unknown = set(patch) - set(type(model).model_fields)
    if unknown:
        raise ValueError(f"Unknown config fields: {', '.join(sorted(unknown))}")
    data = {name: getattr(model, name) for name in type(model).model_fields}
    data.update(patch)
    return type(model).model_validate(data)


def _read_yaml(path: Path) -> Any:
    if not path.exists():
        logger.info("Config file %s not found, using defaults", path)
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Could not read %s, using defaults: %s", path, e)
        return None


def _load_model(path: Path, model_cls):
    data = _read_yaml(path)
    if data is None:
        return model_cls()
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, using defaults", path)
        return model_cls()
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        logger.warning("Invalid config in %s, using defaults: %s", path, e)
        return model_cls()


def _write_yaml(path: Path, data: Any, header: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")

    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(header)
        f.write("\n")
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    os.replace(tmp_path, path)
