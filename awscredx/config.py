"""
Configuration loading for awscredx.

The configuration is a YAML document with the main profile, the MFA device
and a table of role profiles. Role profiles may be written as a bare role ARN
or as a mapping; both forms are decoded here into a single Profile shape.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_PATH = "~/.config/awscredx/config.yaml"
CONFIG_PATH_ENV = "AWSCREDX_CONFIG"

DEFAULT_REGION = "us-east-1"
DEFAULT_SESSION_NAME = "credential-tool"
DEFAULT_FRESHNESS_MARGIN_MINUTES = 10
MFA_PROFILE_SUFFIX = "-mfa"

PROFILE_KEYS = {"role_arn", "parent_profile", "duration_sec", "color"}

CONFIG_TEMPLATE = """\
# awscredx configuration

# Profile in ~/.aws/credentials holding your long-lived IAM access key.
main_profile: my-user

# Profile that will hold the MFA session (defaults to "<main_profile>-mfa").
# mfa_profile: my-user-mfa

# ARN of your MFA device.
mfa_serial_number: arn:aws:iam::123456789012:mfa/my-user

# Command printing a one-time code, e.g. from a password manager.
# Leave unset to be prompted for the code.
# mfa_command: ykman oath accounts code --single aws

# region: us-east-1
# freshness_margin_minutes: 10
# rotate_credentials_days: 30

profiles:
  # Shorthand: assumed from the MFA session.
  dev: arn:aws:iam::123456789012:role/developer
  # Full form.
  # prod:
  #   role_arn: arn:aws:iam::210987654321:role/admin
  #   parent_profile: dev
  #   duration_sec: 3600
  #   color: red
"""


@dataclass(frozen=True)
class Profile:
    name: str
    role_arn: str
    parent_profile: str = None
    duration_sec: int = None
    color: str = None


@dataclass(frozen=True)
class Config:
    main_profile: str
    mfa_serial_number: str
    mfa_profile: str = None
    mfa_command: str = None
    profiles: dict = field(default_factory=dict)
    region: str = DEFAULT_REGION
    session_name: str = DEFAULT_SESSION_NAME
    freshness_margin: timedelta = timedelta(minutes=DEFAULT_FRESHNESS_MARGIN_MINUTES)
    rotate_credentials_days: int = None

    def __post_init__(self):
        if self.mfa_profile is None:
            object.__setattr__(self, "mfa_profile", f"{self.main_profile}{MFA_PROFILE_SUFFIX}")

    def is_known(self, profile_name):
        return profile_name in (self.main_profile, self.mfa_profile) or profile_name in self.profiles


def get_config_path():
    """Get the configuration file path, honouring AWSCREDX_CONFIG."""
    return os.path.expanduser(os.environ.get(CONFIG_PATH_ENV) or CONFIG_FILE_PATH)


def decode_profile(name, value):
    """
    Decode one entry of the profiles table.

    Args:
        name: Profile name (the table key)
        value: Either a role ARN string or a mapping with role_arn and
            optional parent_profile, duration_sec and color

    Returns:
        Profile

    Raises:
        ConfigError: If the entry has neither form or carries bad values
    """
    if isinstance(value, str):
        value = {"role_arn": value}
    if not isinstance(value, dict):
        raise ConfigError(
            f"profile '{name}' must be a role ARN or a mapping, got {type(value).__name__}",
            profile=name,
        )

    unknown = set(value) - PROFILE_KEYS
    if unknown:
        raise ConfigError(
            f"profile '{name}' has unknown keys: {', '.join(sorted(unknown))}", profile=name
        )

    role_arn = value.get("role_arn")
    if not isinstance(role_arn, str) or not role_arn.strip():
        raise ConfigError(f"profile '{name}' is missing role_arn", profile=name)

    duration_sec = value.get("duration_sec")
    if duration_sec is not None and (
        isinstance(duration_sec, bool) or not isinstance(duration_sec, int) or duration_sec <= 0
    ):
        raise ConfigError(
            f"profile '{name}' has invalid duration_sec: {duration_sec!r}", profile=name
        )

    parent = value.get("parent_profile")
    if parent is not None and not isinstance(parent, str):
        # unquoted YAML such as `on` or `123` does not load as a string
        raise ConfigError(
            f"profile '{name}' has a non-string parent_profile: {parent!r}; quote it",
            profile=name,
        )
    color = value.get("color")

    return Profile(
        name=name,
        role_arn=role_arn.strip(),
        parent_profile=parent,
        duration_sec=duration_sec,
        color=str(color) if color is not None else None,
    )


def _optional_non_negative_int(data, key):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"'{key}' must be a non-negative integer, got {value!r}")
    return value


def _required_str(data, key):
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{key}' is required in configuration")
    return value.strip()


def validate_graph(config):
    """
    Check that profile parents exist and form a tree rooted at the main profile.

    Raises:
        ConfigError: On a reserved name in profiles, an unknown parent or a cycle
    """
    for reserved in (config.main_profile, config.mfa_profile):
        if reserved in config.profiles:
            raise ConfigError(
                f"'{reserved}' is reserved for the main/MFA profile and cannot be configured as a role",
                profile=reserved,
            )

    for name, profile in config.profiles.items():
        if profile.parent_profile is not None and not config.is_known(profile.parent_profile):
            raise ConfigError(
                f"profile '{name}' has unknown parent_profile '{profile.parent_profile}'",
                profile=name,
            )

    for name in config.profiles:
        seen = [name]
        current = config.profiles[name].parent_profile or config.mfa_profile
        while current in config.profiles:
            if current in seen:
                cycle = " -> ".join(seen + [current])
                raise ConfigError(f"profile parents form a cycle: {cycle}", profile=name)
            seen.append(current)
            current = config.profiles[current].parent_profile or config.mfa_profile


def parse_config(data):
    """
    Build a Config from an already parsed YAML document.

    Args:
        data: dict loaded from the configuration file

    Returns:
        Config
    """
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping")

    main_profile = _required_str(data, "main_profile")
    mfa_serial_number = _required_str(data, "mfa_serial_number")

    raw_profiles = data.get("profiles") or {}
    if not isinstance(raw_profiles, dict):
        raise ConfigError("'profiles' must be a mapping of profile name to role")
    profiles = {}
    for name, value in raw_profiles.items():
        if not isinstance(name, str):
            raise ConfigError(f"profile name {name!r} is not a string; quote it in the configuration")
        profiles[name] = decode_profile(name, value)

    margin = _optional_non_negative_int(data, "freshness_margin_minutes")
    if margin is None:
        margin = DEFAULT_FRESHNESS_MARGIN_MINUTES

    mfa_profile = data.get("mfa_profile")
    mfa_command = data.get("mfa_command")

    config = Config(
        main_profile=main_profile,
        mfa_serial_number=mfa_serial_number,
        mfa_profile=str(mfa_profile) if mfa_profile else None,
        mfa_command=str(mfa_command).strip() if mfa_command else None,
        profiles=profiles,
        region=str(data.get("region") or DEFAULT_REGION),
        session_name=str(data.get("session_name") or DEFAULT_SESSION_NAME),
        freshness_margin=timedelta(minutes=margin),
        rotate_credentials_days=_optional_non_negative_int(data, "rotate_credentials_days"),
    )
    validate_graph(config)
    return config


def read_config(config_file=None):
    """
    Read and validate the awscredx configuration file.

    Args:
        config_file: Path to config file (defaults to get_config_path())

    Returns:
        Config

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    config_file = config_file or get_config_path()
    if not os.path.exists(config_file):
        raise ConfigError(
            f"configuration file {config_file} does not exist.\n"
            f"  Run 'awscredx init' to create one."
        )

    try:
        with open(config_file, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read configuration file {config_file}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse configuration file {config_file}: {e}")

    config = parse_config(data or {})
    logger.debug(
        "Loaded config from %s: main=%s mfa=%s profiles=%d",
        config_file,
        config.main_profile,
        config.mfa_profile,
        len(config.profiles),
    )
    return config


def write_config_template(config_file=None):
    """
    Create the configuration directory and a template config file.

    Returns:
        bool: True if the file was created, False if it already existed
    """
    config_file = config_file or get_config_path()
    config_dir = os.path.dirname(config_file)
    if config_dir and not os.path.isdir(config_dir):
        os.makedirs(config_dir, mode=0o700, exist_ok=True)

    if os.path.exists(config_file):
        return False

    fd = os.open(config_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(CONFIG_TEMPLATE)
    return True
