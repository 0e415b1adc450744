"""
STS calls that turn a parent credential into a new one.
"""

import logging

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from . import __version__
from .credentials import CredentialEntry, parse_timestamp
from .errors import RemoteAssumptionError
from .graph import MfaSessionSubject, RoleSubject

logger = logging.getLogger(__name__)

# Proxy settings (HTTPS_PROXY / NO_PROXY) are read from the environment by botocore
BOTO_CONFIG = BotoConfig(user_agent_extra=f"awscredx/{__version__}")

STS_CREDENTIAL_KEYS = ("AccessKeyId", "SecretAccessKey", "SessionToken", "Expiration")


def create_session_with_credentials(entry):
    """
    Create a boto3 session from a CredentialEntry.

    Args:
        entry: CredentialEntry to authenticate with

    Returns:
        boto3.Session using only the given keys (bypasses the credentials file)
    """
    return boto3.Session(
        aws_access_key_id=entry.access_key_id,
        aws_secret_access_key=entry.secret_access_key,
        aws_session_token=entry.session_token if entry.session_token else None,
    )


def entry_from_sts_credentials(profile_name, credentials):
    """
    Convert the Credentials block of an STS response into a CredentialEntry.

    Raises:
        RemoteAssumptionError: If a field is missing or the expiration is unreadable
    """
    missing = [key for key in STS_CREDENTIAL_KEYS if not credentials.get(key)]
    if missing:
        raise RemoteAssumptionError(
            f"STS response for profile '{profile_name}' is missing {', '.join(missing)}",
            profile=profile_name,
        )
    try:
        expires_at = parse_timestamp(credentials["Expiration"])
    except (TypeError, ValueError) as e:
        raise RemoteAssumptionError(
            f"STS response for profile '{profile_name}' has invalid expiration: {e}",
            profile=profile_name,
        )
    return CredentialEntry(
        profile_name=profile_name,
        access_key_id=credentials["AccessKeyId"],
        secret_access_key=credentials["SecretAccessKey"],
        session_token=credentials["SessionToken"],
        expires_at=expires_at,
    )


class StsAssumptionClient:
    """
    STS client authenticated with one parent credential.

    Args:
        parent: CredentialEntry of the parent profile
        region: AWS region for the STS endpoint
    """

    def __init__(self, parent, region):
        self.parent = parent
        self.region = region
        session = create_session_with_credentials(parent)
        self._client = session.client("sts", region_name=region, config=BOTO_CONFIG)

    def _error(self, profile_name, action, error):
        if isinstance(error, ClientError):
            code = error.response.get("Error", {}).get("Code", "Unknown")
            message = error.response.get("Error", {}).get("Message", str(error))
            reason = f"{code}: {message}"
        else:
            reason = f"AWS connection failed: {error}"
        return RemoteAssumptionError(
            f"unable to {action} for profile '{profile_name}': {reason}",
            profile=profile_name,
            parent_profile=self.parent.profile_name,
            parent_access_key_id=self.parent.access_key_id,
        )

    def _credentials_of(self, profile_name, response):
        credentials = response.get("Credentials") if isinstance(response, dict) else None
        if not credentials:
            raise RemoteAssumptionError(
                f"STS response for profile '{profile_name}' contains no credentials",
                profile=profile_name,
                parent_profile=self.parent.profile_name,
                parent_access_key_id=self.parent.access_key_id,
            )
        return entry_from_sts_credentials(profile_name, credentials)

    def assume_role(self, profile_name, subject):
        params = {"RoleArn": subject.role_arn, "RoleSessionName": subject.session_name}
        if subject.duration_sec:
            params["DurationSeconds"] = subject.duration_sec
        logger.debug("AssumeRole %s as %s", subject.role_arn, self.parent.profile_name)
        try:
            response = self._client.assume_role(**params)
        except (ClientError, BotoCoreError) as e:
            raise self._error(profile_name, f"assume role {subject.role_arn}", e)
        return self._credentials_of(profile_name, response)

    def get_session_token(self, profile_name, subject):
        logger.debug("GetSessionToken with MFA device %s", subject.serial_number)
        try:
            response = self._client.get_session_token(
                SerialNumber=subject.serial_number,
                TokenCode=subject.token_code,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._error(profile_name, "get MFA session token", e)
        return self._credentials_of(profile_name, response)

    def assume(self, profile_name, subject):
        """
        Perform the STS call matching the subject type.

        Returns:
            CredentialEntry for profile_name
        """
        if isinstance(subject, RoleSubject):
            return self.assume_role(profile_name, subject)
        if isinstance(subject, MfaSessionSubject):
            return self.get_session_token(profile_name, subject)
        raise TypeError(f"unsupported assume subject: {subject!r}")
