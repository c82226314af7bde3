"""
This module defines the configuration for the function lifecycle example and
loads it from an optional YAML file plus environment variable overrides.
"""

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import yaml

from errors import ConfigurationError

DEFAULT_NAME = "oci-python-sdk-function-example"
DEFAULT_REGION = "us-phoenix-1"
SUPPORTED_MEMORY_IN_MBS = (128, 256, 512, 1024)
MIN_TIMEOUT_IN_SECONDS = 30
MAX_TIMEOUT_IN_SECONDS = 120

# Environment variable -> (section, key). A section of None is a top-level key.
ENV_OVERRIDES = {
    "COMPARTMENT_ID": (None, "compartment_id"),
    "OCI_REGION": (None, "region"),
    "OCI_CONFIG_FILE": ("oci", "config_file"),
    "OCI_PROFILE": ("oci", "profile"),
    "OCIR_FN_IMAGE": ("function", "image"),
    "FN_PAYLOAD": ("function", "payload"),
}


@dataclass
class OCIConfig:
    config_file: str = "~/.oci/config"
    profile: str = "DEFAULT"


@dataclass
class NetworkConfig:
    vcn_cidr_block: str = "10.0.0.0/16"
    subnet_cidr_block: str = "10.0.0.0/24"


@dataclass
class FunctionConfig:
    image: Optional[str] = None
    memory_in_mbs: int = 128
    timeout_in_seconds: int = 30
    payload: str = ""


@dataclass
class WaitPolicy:
    poll_interval_seconds: float = 5.0
    max_wait_seconds: float = 1200.0


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    delay_seconds: float = 10.0


@dataclass
class Config:
    compartment_id: str
    name: str = DEFAULT_NAME
    region: str = DEFAULT_REGION
    cooldown_minutes: int = 30
    oci: OCIConfig = field(default_factory=OCIConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    function: FunctionConfig = field(default_factory=FunctionConfig)
    wait: WaitPolicy = field(default_factory=WaitPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass
class _TopLevel:
    compartment_id: str = ""
    name: str = DEFAULT_NAME
    region: str = DEFAULT_REGION
    cooldown_minutes: int = 30


SECTIONS = {
    "oci": OCIConfig,
    "network": NetworkConfig,
    "function": FunctionConfig,
    "wait": WaitPolicy,
    "retry": RetryPolicy,
}


def read_config_file(file_path: str) -> Dict[str, Any]:
    """Load the raw YAML mapping from the given file path."""
    try:
        with open(file_path, "r") as file:
            config_data = yaml.safe_load(file)
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file '{file_path}': {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in '{file_path}': {e}") from e

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Configuration file '{file_path}' must contain a mapping")
    return config_data


def apply_env_overrides(config_data: Dict[str, Any], environ: Mapping[str, str]) -> Dict[str, Any]:
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in config_data.items()}
    for variable, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if value is None:
            continue
        if section is None:
            merged[key] = value
        else:
            merged.setdefault(section, {})[key] = value
    return merged


def _build_section(name: str, cls, values: Any):
    if values is None:
        return cls()
    if not isinstance(values, dict):
        raise ConfigurationError(f"Configuration section '{name}' must be a mapping")
    known = {f.name: f for f in dataclasses.fields(cls)}
    unknown = set(values) - set(known)
    if unknown:
        raise ConfigurationError(f"Unknown keys in '{name}': {', '.join(sorted(unknown))}")

    converted = {}
    for key, value in values.items():
        default = known[key].default
        # Environment values arrive as strings.
        if isinstance(value, str) and isinstance(default, (int, float)) and not isinstance(default, bool):
            try:
                value = type(default)(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for '{name}.{key}': {value!r}") from e
        converted[key] = value
    return cls(**converted)


def validate(config: Config, require_image: bool = False) -> Config:
    if not config.compartment_id:
        raise ConfigurationError(
            "Please ensure you have set the mandatory environment variables - COMPARTMENT_ID, OCIR_FN_IMAGE"
        )
    if require_image and not config.function.image:
        raise ConfigurationError("A function image is required to set up resources (OCIR_FN_IMAGE)")
    if not config.name:
        raise ConfigurationError("Resource name prefix must not be empty")
    if config.function.memory_in_mbs not in SUPPORTED_MEMORY_IN_MBS:
        raise ConfigurationError(
            f"function.memory_in_mbs must be one of {SUPPORTED_MEMORY_IN_MBS}, got {config.function.memory_in_mbs}"
        )
    if not MIN_TIMEOUT_IN_SECONDS <= config.function.timeout_in_seconds <= MAX_TIMEOUT_IN_SECONDS:
        raise ConfigurationError(
            f"function.timeout_in_seconds must be between {MIN_TIMEOUT_IN_SECONDS} and {MAX_TIMEOUT_IN_SECONDS}"
        )
    if config.wait.poll_interval_seconds <= 0 or config.wait.max_wait_seconds <= 0:
        raise ConfigurationError("wait.poll_interval_seconds and wait.max_wait_seconds must be positive")
    if config.retry.max_attempts < 1 or config.retry.delay_seconds < 0:
        raise ConfigurationError("retry.max_attempts must be at least 1 and retry.delay_seconds non-negative")
    return config


def load_config(file_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None,
                require_image: bool = False) -> Config:
    """Build a validated Config from an optional YAML file and the environment."""
    environ = os.environ if environ is None else environ
    config_data = read_config_file(file_path) if file_path else {}
    config_data = apply_env_overrides(config_data, environ)

    sections = {name: _build_section(name, cls, config_data.pop(name, None)) for name, cls in SECTIONS.items()}
    top_level = _build_section("config", _TopLevel, config_data)
    config = Config(**dataclasses.asdict(top_level), **sections)
    return validate(config, require_image=require_image)

