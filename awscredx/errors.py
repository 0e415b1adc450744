"""
Exception types raised by awscredx.
"""


class AwsCredxError(Exception):
    """Base class for every error awscredx reports to the user."""

    def __init__(self, message, profile=None):
        super().__init__(message)
        self.profile = profile


class ConfigError(AwsCredxError):
    """Configuration file is missing, unreadable or malformed."""


class ProfileNotFound(AwsCredxError):
    def __init__(self, profile):
        super().__init__(f"profile '{profile}' does not exist", profile=profile)


class MissingRootCredentials(AwsCredxError):
    def __init__(self, profile, reason="no credentials stored"):
        super().__init__(
            f"cannot get credentials for main profile '{profile}': {reason}\n"
            f"  The main profile must be supplied in the AWS credentials file "
            f"(aws_access_key_id / aws_secret_access_key)",
            profile=profile,
        )


class UnknownAssumeSubject(AwsCredxError):
    def __init__(self, profile):
        super().__init__(f"cannot get assume subject for profile '{profile}'", profile=profile)


class StoreError(AwsCredxError):
    """Base class for credential store failures."""


class StoreParseError(StoreError):
    """Credentials file or its expiration table cannot be parsed."""


class StoreWriteError(StoreError):
    """Credentials file or its expiration table cannot be written."""


class InvalidMfaCode(AwsCredxError):
    """MFA code could not be obtained or is not six digits."""


class RemoteAssumptionError(AwsCredxError):
    """
    STS refused or failed an assumption call.

    Carries the identity of the parent credential that made the call so the
    user can tell which link of the chain was rejected.
    """

    def __init__(self, message, profile=None, parent_profile=None, parent_access_key_id=None):
        details = message
        if parent_profile:
            details += f"\n  Called with credentials of profile '{parent_profile}'"
            if parent_access_key_id:
                details += f" (access key {parent_access_key_id})"
        super().__init__(details, profile=profile)
        self.parent_profile = parent_profile
        self.parent_access_key_id = parent_access_key_id


class RotationError(AwsCredxError):
    """Main profile access key rotation failed."""
