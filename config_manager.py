from __future__ import annotations
import yaml

from copy import deepcopy
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional, get_type_hints, get_origin, get_args

from config import Config
from kalman import LocalLinearTrendKalman
import logging

CONFIG_VERSION = "1.0"

def represent_tuple(dumper, data):
    return dumper.represent_sequence('tag:yaml.org,2002:seq', data, flow_style=True)

yaml.add_representer(tuple, represent_tuple, Dumper=yaml.SafeDumper)

def dataclass_to_dict(obj: Any) -> Any:
    if is_dataclass(obj):
        return {k: dataclass_to_dict(v) for k, v in asdict(obj).items()}
    elif isinstance(obj, list):
        return [dataclass_to_dict(v) for v in obj]
    elif isinstance(obj, tuple):
        # Matrices stay tuples so they dump as compact flow sequences
        return tuple(dataclass_to_dict(v) for v in obj)
    elif isinstance(obj, dict):
        return {k: dataclass_to_dict(v) for k, v in obj.items()}
    else:
        return obj

def _to_tuple(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_to_tuple(v) for v in value)
    return value

def dict_to_dataclass(cls, data: Dict[str, Any]) -> Any:
    if not is_dataclass(cls):
        return data

    try:
        field_types = get_type_hints(cls)
    except Exception:
        field_types = {f.name: f.type for f in cls.__dataclass_fields__.values()}

    constructor_args = {}
    for name, value in (data or {}).items():
        if name not in field_types:
            logging.warning(f"Ignoring unknown config key '{name}' for {cls.__name__}")
            continue
        field_type = field_types[name]
        origin = get_origin(field_type)
        if is_dataclass(field_type) and isinstance(value, dict):
            constructor_args[name] = dict_to_dataclass(field_type, value)
            continue
        if origin is tuple and isinstance(value, (list, tuple)):
            constructor_args[name] = _to_tuple(value)
            continue
        if origin is not None:
            args = get_args(field_type)
            dataclass_arg = next((a for a in args if is_dataclass(a)), None)
            if dataclass_arg and isinstance(value, dict):
                constructor_args[name] = dict_to_dataclass(dataclass_arg, value)
                continue
        constructor_args[name] = value

    return cls(**constructor_args)


def merge_overrides(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = deepcopy(base)
    for k, v in (overrides or {}).items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k] = merge_overrides(merged[k], v)
        else:
            merged[k] = v
    return merged


def build_config(overrides: Dict[str, Any]) -> Config:
    config = dict_to_dataclass(Config, merge_overrides(dataclass_to_dict(Config()), overrides))
    config.validate()
    LocalLinearTrendKalman(config.kalman)  # raises ConfigurationError on bad matrices
    return config


class ConfigManager:
    """Named estimator profiles in a YAML file.

    A profile stores only the keys it changes; everything else comes from
    the built-in defaults, so new settings reach old files automatically.
    """

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self.config_data: Dict[str, Any] = {}
        self.active_profile_name: str = "default"
        self.load_or_create()

    def get_active_config(self) -> Config:
        return self.get_profile_config(self.active_profile_name) or Config()

    def get_profile_config(self, name: str) -> Optional[Config]:
        if name not in self.get_profile_names():
            return None
        overrides = self.config_data["profiles"].get(name) or {}
        return build_config(overrides)

    def load_or_create(self):
        if self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    self.config_data = yaml.safe_load(f) or {}
            except (yaml.YAMLError, IOError) as e:
                logging.error(f"Error loading config file: {e}. Using defaults.")
                self.config_data = {}
            if self.config_data.get("version") != CONFIG_VERSION:
                logging.warning(f"Config file {self.config_path} has no usable version; using defaults.")
                self._create_default_config()
            self.active_profile_name = self.config_data.get("active_profile", "default")
        else:
            self._create_default_config()
            self.save()

    def _create_default_config(self):
        self.config_data = {
            "version": CONFIG_VERSION,
            "active_profile": "default",
            "profiles": {"default": {}},
        }
        self.active_profile_name = "default"

    def save(self):
        try:
            with open(self.config_path, "w", encoding="utf-8") as f:
                yaml.dump(self.config_data, f, indent=2, Dumper=yaml.SafeDumper)
        except IOError as e:
            logging.error(f"Error saving config file: {e}")

    def get_profile_names(self) -> list[str]:
        return list(self.config_data.get("profiles", {}).keys())

    def set_active_profile(self, name: str):
        if name in self.get_profile_names():
            self.active_profile_name = name
            self.config_data["active_profile"] = name
        else:
            logging.warning(f"Profile '{name}' not found.")

    def save_profile(self, name: str, overrides: Dict[str, Any]):
        # Validate before anything reaches disk
        build_config(overrides)
        self.config_data.setdefault("profiles", {})[name] = dataclass_to_dict(overrides)
        self.save()
