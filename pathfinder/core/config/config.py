import configparser
import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union, get_args, get_origin

from pydantic import AnyUrl, BaseModel, SecretStr
from pydantic_settings import BaseSettings


class PATHFINDER_DIR_PATHS(BaseModel):
    ROOT: str
    LOGGER_DIR: str
    STRUCT_LOGGER_DIR: str


class PATHFINDER_LOGGER(BaseModel):
    USE_STRUCTLOG: bool = False


class PATHFINDER_REDIS(BaseModel):
    URL: str


class PATHFINDER_ROUTING(BaseModel):
    GOOGLE_MAPS_API_KEY: Optional[SecretStr] = None
    DIRECTIONS_URL: str
    REQUEST_TIMEOUT: float
    CACHE_TTL: int
    CACHE_PREFIX: str
    MAX_ALTERNATIVES: int


class PATHFINDER_QUEUE(BaseModel):
    BACKEND: str
    LEASE_SECONDS: float
    POLL_INTERVAL: float
    BACKOFF_MS: int
    CLEAN_MAX_AGE: float
    SHUTDOWN_TIMEOUT: float
    KEY_PREFIX: str


def load_ini_as_dict(ini_path: Path) -> Dict[str, Any]:
    """
    Load and parse an INI file into a nested dictionary with normalized keys.

    Sections and keys are converted to uppercase for uniform access. Tilde (`~`)
    in values is expanded to the user home directory.

    Args:
        ini_path (Path): Path to the `.ini` configuration file.

    Returns:
        Dict[str, Any]: A dictionary where each section is a key mapped to another
        dictionary of key-value pairs from that section.

    Example:
        .. code-block:: ini

            [PATHFINDER_QUEUE]
            lease_seconds = 30

        .. code-block:: python

            config = load_ini_as_dict(Path("config.ini"))
            print(config["PATHFINDER_QUEUE"]["LEASE_SECONDS"])
    """
    if not ini_path.exists():
        return {}

    config = configparser.ConfigParser(interpolation=configparser.ExtendedInterpolation())
    config.optionxform = str
    config.read(ini_path)

    result = {}
    for section in config.sections():
        result[section.upper()] = {
            key.upper(): os.path.expanduser(value) if value.startswith("~") else value
            for key, value in config[section].items()
        }
    return result


def load_ini_settings() -> Dict[str, Any]:
    ini_path = Path(__file__).parent / "config.ini"
    return load_ini_as_dict(ini_path)


class CoreSettings(BaseSettings):
    PATHFINDER_DIR_PATHS: PATHFINDER_DIR_PATHS
    PATHFINDER_LOGGER: PATHFINDER_LOGGER
    PATHFINDER_REDIS: PATHFINDER_REDIS
    PATHFINDER_ROUTING: PATHFINDER_ROUTING
    PATHFINDER_QUEUE: PATHFINDER_QUEUE

    model_config = {
        "env_nested_delimiter": "__",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def _expand_tilde(obj):
            if isinstance(obj, str):
                return os.path.expanduser(obj) if obj.startswith("~") else obj
            if isinstance(obj, dict):
                return {k: _expand_tilde(v) for k, v in obj.items()}
            if isinstance(obj, (list, tuple, set)):
                t = type(obj)
                return t(_expand_tilde(v) for v in obj)
            return obj

        def env_settings_expanded():
            return _expand_tilde(env_settings())

        return (
            init_settings,  # constructor kwargs
            env_settings_expanded,  # env vars (with '~' expanded) take precedence
            dotenv_settings,  # then .env
            load_ini_settings,  # then INI file (lowest precedence)
            file_secret_settings,
        )


SettingsLike = Union[
    Dict[str, Any],
    List[Union[Dict[str, Any], BaseSettings, BaseModel]],
    BaseSettings,
    BaseModel,
    None,
]


class _AttrView:
    """
    Lightweight attribute-access wrapper around a mapping.

    Enables access like obj.SECTION.KEY for nested dictionaries.
    """

    def __init__(self, data: Dict[str, Any]):
        self._data = data

    def __getattr__(self, name: str):
        if name in self._data:
            value = self._data[name]
            if isinstance(value, dict):
                return _AttrView(value)
            return value
        raise AttributeError(f"No such attribute: {name}")

    def __getitem__(self, key: str):
        value = self._data[key]
        if isinstance(value, dict):
            return _AttrView(value)
        return value

    def __repr__(self) -> str:
        return f"_AttrView({self._data!r})"


class Config(dict):
    """
    Unified configuration manager for Pathfinder components.

    The `Config` class consolidates configuration from dictionaries and Pydantic `BaseSettings` or `BaseModel`
    objects. Later sources override earlier ones, environment variables (`SECTION__KEY`) are overlaid last, and
    every value is normalized to a string. `SecretStr` fields are masked; use `get_secret` for the real value.

    Args:
        extra_settings: Configuration overrides or full config objects.
            Can be a `dict`, `BaseSettings`, `BaseModel`, or list of any of these.

    Example:
        >>> from pathfinder.core.config import Config, CoreSettings
        >>> config = Config(CoreSettings())
        >>> config["PATHFINDER_ROUTING"]["GOOGLE_MAPS_API_KEY"]  # '********'
        >>> config.get_secret("PATHFINDER_ROUTING", "GOOGLE_MAPS_API_KEY")  # real value
    """

    def __init__(self, extra_settings: SettingsLike = None, *, apply_env: bool = True):
        self._secret_paths: set[Tuple[str, ...]] = set()
        self._secrets: Dict[Tuple[str, ...], str] = {}

        merged: Dict[str, Any] = {}
        for override in self._normalize(extra_settings):
            merged = self._deep_update(merged, override)

        if apply_env:
            merged = self._apply_env_overrides(merged)

        super().__init__(self._stringify_and_mask(merged))

    def __getattr__(self, name: str):
        """Enable attribute-style access for top-level keys."""
        if name in self:
            value = self[name]
            if isinstance(value, dict):
                return _AttrView(value)
            return value
        raise AttributeError(f"No such attribute: {name}")

    def _normalize(self, extra_settings: SettingsLike) -> List[Dict[str, Any]]:
        if extra_settings is None:
            return []
        items = extra_settings if isinstance(extra_settings, list) else [extra_settings]
        converted: List[Dict[str, Any]] = []
        for item in items:
            if isinstance(item, (BaseSettings, BaseModel)):
                self._secret_paths.update(self._collect_secret_paths_from_model(type(item)))
                converted.append(item.model_dump())
            elif isinstance(item, dict):
                converted.append(item)
        return converted

    def clone_with_overrides(self, *overrides: SettingsLike) -> "Config":
        """Return a new Config with overrides applied (original remains unchanged)."""
        items: List[Any] = [self._revealed()]
        for override in overrides:
            if isinstance(override, list):
                items.extend(override)
            elif override is not None:
                items.append(override)
        clone = Config(items, apply_env=False)
        clone._secret_paths.update(self._secret_paths)
        clone._secrets.update(self._secrets)
        return clone

    def get_secret(self, *path: str) -> Optional[str]:
        """Retrieve a secret by path components, e.g., get_secret("PATHFINDER_ROUTING", "GOOGLE_MAPS_API_KEY")."""
        return self._secrets.get(tuple(path))

    def secret_paths(self) -> List[str]:
        """Return dotted paths of fields considered secrets."""
        return sorted(".".join(p) for p in self._secret_paths)

    def _revealed(self) -> Dict[str, Any]:
        data = deepcopy(dict(self))
        for path, value in self._secrets.items():
            node = data
            for key in path[:-1]:
                node = node.setdefault(key, {})
            node[path[-1]] = value
        return data

    def _deep_update(self, base: dict, override: dict) -> dict:
        for k, v in override.items():
            if isinstance(v, dict) and isinstance(base.get(k), dict):
                base[k] = self._deep_update(base.get(k, {}), v)
            else:
                base[k] = v
        return base

    @staticmethod
    def _apply_env_overrides(base: dict, delimiter: str = "__") -> dict:
        result = deepcopy(base)
        for env_key, env_value in os.environ.items():
            if delimiter not in env_key:
                continue
            parts = [p.strip().upper() for p in env_key.split(delimiter) if p.strip()]
            # Only overlay sections the config already knows about
            if not parts or parts[0] not in result:
                continue
            node = result
            for key in parts[:-1]:
                if key not in node or not isinstance(node[key], dict):
                    node[key] = {}
                node = node[key]
            node[parts[-1]] = env_value
        return result

    def _stringify_and_mask(self, data: Dict[str, Any], mask: str = "********") -> Dict[str, Any]:
        def convert(v: Any, path: Tuple[str, ...]):
            if isinstance(v, SecretStr):
                self._secrets[path] = v.get_secret_value()
                return mask
            if isinstance(v, AnyUrl):
                v = str(v)
            if isinstance(v, dict):
                return {k: convert(x, path + (k,)) for k, x in v.items()}
            if isinstance(v, (list, tuple, set)):
                return [convert(x, path) for x in v]
            if v is None:
                return None
            sval = str(v)
            if path in self._secret_paths:
                self._secrets[path] = sval
                return mask
            return os.path.expanduser(sval) if sval.startswith("~") else sval

        return convert(data, ())

    def _collect_secret_paths_from_model(
        self, model_cls: type[BaseModel] | type[BaseSettings], prefix: Tuple[str, ...] = ()
    ) -> set[Tuple[str, ...]]:
        paths: set[Tuple[str, ...]] = set()
        for name, field in getattr(model_cls, "model_fields", {}).items():
            ann = field.annotation
            if self._is_secret_annotation(ann):
                paths.add(prefix + (name,))
                continue
            nested_cls = self._extract_model_class(ann)
            if nested_cls is not None:
                paths.update(self._collect_secret_paths_from_model(nested_cls, prefix + (name,)))
        return paths

    @staticmethod
    def _is_secret_annotation(ann: Any) -> bool:
        if ann is SecretStr:
            return True
        if get_origin(ann) is Union:
            return any(a is SecretStr for a in get_args(ann))
        return False

    @staticmethod
    def _extract_model_class(ann: Any) -> Optional[type]:
        candidates = get_args(ann) if get_origin(ann) is Union else (ann,)
        for candidate in candidates:
            if isinstance(candidate, type) and issubclass(candidate, BaseModel):
                return candidate
        return None


class CoreConfig(Config):
    """
    Wrapper around `Config` that always includes `CoreSettings` by default.

    Usage:
        from pathfinder.core.config import CoreConfig
        cfg = CoreConfig()  # loads CoreSettings (env + .env + INI with '~' expansion)

    Extra overrides are applied on top of CoreSettings and remain highest precedence. Env is not re-applied at the
    Config layer since CoreSettings already applied it.
    """

    def __init__(self, extra_settings: SettingsLike = None):
        if extra_settings is None:
            extras: List[Any] = [CoreSettings()]
        elif isinstance(extra_settings, list):
            extras = [CoreSettings()] + extra_settings
        else:
            extras = [CoreSettings(), extra_settings]
        super().__init__(extras, apply_env=False)


def get_config(extra_settings: SettingsLike = None) -> CoreConfig:
    return CoreConfig(extra_settings)
