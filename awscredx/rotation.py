"""
Periodic rotation of the main profile's IAM access key.

When rotate_credentials_days is configured, the long-lived key of the main
profile is replaced once it is older than that many days. The time of the
last rotation is kept in a small YAML state file.
"""

import logging
import os
import sys
from datetime import datetime, timedelta, timezone

import yaml
from botocore.exceptions import BotoCoreError, ClientError

from .credentials import CredentialEntry, format_timestamp, parse_timestamp
from .errors import MissingRootCredentials, RotationError
from .sts import BOTO_CONFIG, create_session_with_credentials

logger = logging.getLogger(__name__)

STATE_FILE_PATH = "~/.local/share/awscredx/state.yaml"
LAST_ROTATION_KEY = "last_credentials_rotation_time"


def get_state_path():
    return os.path.expanduser(STATE_FILE_PATH)


def read_state(state_file=None):
    """
    Read the state file.

    Returns:
        dict (empty if the file does not exist or is unreadable)
    """
    state_file = state_file or get_state_path()
    if not os.path.exists(state_file):
        return {}
    try:
        with open(state_file, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable state file %s: %s", state_file, e)
        return {}
    return data if isinstance(data, dict) else {}


def write_state(state, state_file=None):
    """Write the state file with owner-only permissions."""
    state_file = state_file or get_state_path()
    parent = os.path.dirname(state_file)
    if parent and not os.path.isdir(parent):
        os.makedirs(parent, mode=0o700, exist_ok=True)
    fd = os.open(state_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        yaml.safe_dump(state, f, default_flow_style=False)


def last_rotation_time(state):
    value = state.get(LAST_ROTATION_KEY)
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid %s in state file: %r", LAST_ROTATION_KEY, value)
        return None


def rotation_due(config, state, now):
    if config.rotate_credentials_days is None:
        return False
    last = last_rotation_time(state)
    if last is None:
        return True
    return now - last >= timedelta(days=config.rotate_credentials_days)


def create_iam_client(entry):
    session = create_session_with_credentials(entry)
    return session.client("iam", config=BOTO_CONFIG)


def rotate_credentials(config, store, iam_client=None):
    """
    Replace the main profile's access key.

    Creates a new key, stores and persists it, then deletes the old key.

    Args:
        config: Config
        store: CredentialStore holding the main profile
        iam_client: boto3 IAM client (defaults to one authenticated as main)

    Returns:
        CredentialEntry: The new main entry

    Raises:
        MissingRootCredentials: If the main profile has no stored credentials
        RotationError: If IAM refuses to create or delete a key
    """
    main = store.get(config.main_profile)
    if main is None:
        raise MissingRootCredentials(config.main_profile)

    old_key_id = main.access_key_id
    client = iam_client or create_iam_client(main)

    print(
        f"Rotating access key of '{config.main_profile}': "
        f"older than {config.rotate_credentials_days} days",
        file=sys.stderr,
    )
    try:
        response = client.create_access_key()
        access_key = response["AccessKey"]
    except (ClientError, BotoCoreError) as e:
        raise RotationError(f"cannot create new IAM access key: {e}", profile=config.main_profile)
    except KeyError:
        raise RotationError(
            "IAM CreateAccessKey response contains no access key", profile=config.main_profile
        )

    new_entry = store.put(
        CredentialEntry(
            profile_name=config.main_profile,
            access_key_id=access_key["AccessKeyId"],
            secret_access_key=access_key["SecretAccessKey"],
            extra=dict(main.extra),
        )
    )
    store.persist()
    print(f"  ✓ New access key {new_entry.access_key_id} stored", file=sys.stderr)

    try:
        client.delete_access_key(AccessKeyId=old_key_id)
    except (ClientError, BotoCoreError) as e:
        raise RotationError(
            f"cannot delete old access key ({old_key_id}): {e}\n"
            f"  The new key is already in use; delete the old one manually.",
            profile=config.main_profile,
        )
    print(f"  ✓ Old access key {old_key_id} deleted", file=sys.stderr)
    return new_entry


def rotate_if_needed(config, store, state_file=None, iam_client=None, clock=None):
    """
    Rotate the main access key when rotate_credentials_days says it is due.

    Returns:
        bool: True if a rotation happened
    """
    if config.rotate_credentials_days is None:
        return False
    now = clock() if clock else datetime.now(timezone.utc)
    state = read_state(state_file)
    if not rotation_due(config, state, now):
        return False

    logger.debug("Main access key rotation is due")
    rotate_credentials(config, store, iam_client=iam_client)
    state[LAST_ROTATION_KEY] = format_timestamp(now)
    write_state(state, state_file)
    return True
