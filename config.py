"""
Stack options and project settings for the website program.

Two sources feed a synthesis pass: the four stack options, read from the
environment the deploy pipeline exports, and the project settings kept in
config.yaml next to the Pulumi program.
"""

import os
import yaml
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from errors import ConfigurationError

# Environment variable -> StackOptions field
OPTION_VARIABLES = {
    "STAGE": "environment",
    "IMAGE": "container_name",
    "REGION": "region",
    "FULLNAME": "image_uri",
}

REQUIRED_KEYS = ["domain", "variant", "state_bucket"]


class Variant(str, Enum):
    # zone and certificate lookups, HTTP redirects to HTTPS
    REDIRECT = "redirect"
    # lookup-based, plain HTTP forward, service driven by an ECS task-set
    FORWARD = "forward"
    # certificate requested and DNS-validated in the same stack
    VALIDATED = "validated"


@dataclass(frozen=True)
class StackOptions:
    environment: str
    container_name: str
    region: str
    image_uri: str

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StackOptions":
        """Read the stack options, failing on every missing variable at once."""
        environ = os.environ if environ is None else environ
        values = {}
        missing = []
        for variable, attr in OPTION_VARIABLES.items():
            value = (environ.get(variable) or "").strip()
            if not value:
                missing.append(variable)
            values[attr] = value
        if missing:
            raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")
        return cls(**values)


@dataclass
class ProjectConfig:
    domain: str
    variant: Variant
    state_bucket: str
    state_region: str = "us-east-1"
    output_dir: str = "synth.out"
    tags: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, config_data: Dict[str, Any]) -> "ProjectConfig":
        for key in REQUIRED_KEYS:
            if key not in config_data:
                raise ConfigurationError(f"Missing required configuration key: {key}")
            value = config_data[key]
            if value is None or not str(value).strip():
                raise ConfigurationError(f"Configuration key '{key}' must not be empty")
        tags = config_data.get("tags") or {}
        if not isinstance(tags, dict):
            raise ConfigurationError("Configuration key 'tags' must be a mapping")
        try:
            variant = Variant(config_data["variant"])
        except ValueError:
            choices = ", ".join(v.value for v in Variant)
            raise ConfigurationError(
                f"Unknown variant '{config_data['variant']}', expected one of: {choices}"
            ) from None
        known = {k: v for k, v in config_data.items() if k in cls.__dataclass_fields__}
        known["variant"] = variant
        known["domain"] = str(known["domain"]).strip().rstrip(".")
        if not known["domain"]:
            raise ConfigurationError("Configuration key 'domain' must not be empty")
        known["state_bucket"] = str(known["state_bucket"]).strip()
        known["tags"] = {str(k): str(v) for k, v in tags.items()}
        return cls(**known)


def load_config(file_path: str) -> ProjectConfig:
    """Load and validate YAML configuration from the given file path."""
    with open(file_path, "r") as file:
        config_data = yaml.safe_load(file) or {}
    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Configuration file '{file_path}' must contain a mapping")
    return ProjectConfig.from_dict(config_data)
