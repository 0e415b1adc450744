"""
awscredx: AWS credentials management, a.k.a. role assumption made easy.

Obtains short-lived AWS credentials for a named profile by walking a
configured chain of role assumptions that starts at a long-lived IAM key and
usually passes through an MFA session. Every intermediate and final
credential is cached in the AWS shared credentials file together with its
expiration, so repeated requests skip STS calls that are not needed.

Key features:
- Chained role assumption (main key -> MFA session -> role -> role ...)
- Caching with expiration-driven refresh of only the stale links
- MFA codes from a prompt or from an external command
- Optional periodic rotation of the main IAM access key
"""

__version__ = "0.4.0"
__license__ = "MIT"

from .config import Config, Profile, read_config
from .credentials import (
    CredentialEntry,
    CredentialStore,
    InMemoryCredentialStore,
    get_aws_credentials_path,
)
from .errors import (
    AwsCredxError,
    ConfigError,
    InvalidMfaCode,
    MissingRootCredentials,
    ProfileNotFound,
    RemoteAssumptionError,
    RotationError,
    StoreError,
    StoreParseError,
    StoreWriteError,
    UnknownAssumeSubject,
)
from .graph import MfaSessionSubject, ProfileGraph, RoleSubject
from .mfa import CommandCodeProvider, PromptCodeProvider, validate_mfa_code
from .resolver import ChainResolver, assume

__all__ = [
    # Python API - Most commonly used for programmatic access
    "assume",
    "read_config",
    "CredentialStore",
    "get_aws_credentials_path",
    # Resolution building blocks
    "ChainResolver",
    "ProfileGraph",
    "RoleSubject",
    "MfaSessionSubject",
    "InMemoryCredentialStore",
    # Data model
    "Config",
    "Profile",
    "CredentialEntry",
    # MFA
    "CommandCodeProvider",
    "PromptCodeProvider",
    "validate_mfa_code",
    # Errors
    "AwsCredxError",
    "ConfigError",
    "ProfileNotFound",
    "MissingRootCredentials",
    "UnknownAssumeSubject",
    "StoreError",
    "StoreParseError",
    "StoreWriteError",
    "InvalidMfaCode",
    "RemoteAssumptionError",
    "RotationError",
]
