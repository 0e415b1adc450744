"""Tests for main access key rotation."""

import os
import shutil
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

from awscredx.config import parse_config
from awscredx.credentials import CredentialEntry, CredentialStore
from awscredx.errors import MissingRootCredentials, RotationError
from awscredx.rotation import (
    LAST_ROTATION_KEY,
    read_state,
    rotate_if_needed,
    rotation_due,
    write_state,
)

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)


def rotating_config(days=30):
    data = {"main_profile": "me", "mfa_serial_number": "arn:aws:iam::1:mfa/me"}
    if days is not None:
        data["rotate_credentials_days"] = days
    return parse_config(data)


class TestRotationDue(unittest.TestCase):
    def test_not_configured(self):
        self.assertFalse(rotation_due(rotating_config(None), {}, NOW))

    def test_never_rotated(self):
        self.assertTrue(rotation_due(rotating_config(), {}, NOW))

    def test_recent_rotation(self):
        state = {LAST_ROTATION_KEY: (NOW - timedelta(days=29)).isoformat()}
        self.assertFalse(rotation_due(rotating_config(), state, NOW))

    def test_old_rotation(self):
        state = {LAST_ROTATION_KEY: (NOW - timedelta(days=30)).isoformat()}
        self.assertTrue(rotation_due(rotating_config(), state, NOW))


class TestRotateIfNeeded(unittest.TestCase):
    """Test rotation against a real store and a mocked IAM client."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.creds_file = os.path.join(self.temp_dir, "credentials")
        self.state_file = os.path.join(self.temp_dir, "share", "state.yaml")
        self.store = CredentialStore(
            self.creds_file,
            [CredentialEntry("me", "AKIAOLD", "old-secret", extra={"region": "eu-west-1"})],
        )
        self.iam = MagicMock()
        self.iam.create_access_key.return_value = {
            "AccessKey": {"AccessKeyId": "AKIANEW", "SecretAccessKey": "new-secret"}
        }

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def rotate(self, config=None):
        return rotate_if_needed(
            config or rotating_config(),
            self.store,
            state_file=self.state_file,
            iam_client=self.iam,
            clock=lambda: NOW,
        )

    def test_not_configured_does_nothing(self):
        self.assertFalse(self.rotate(rotating_config(None)))
        self.iam.create_access_key.assert_not_called()
        self.assertFalse(os.path.exists(self.state_file))

    def test_rotation(self):
        """Test that the new key is persisted, the old deleted and the time recorded."""
        self.assertTrue(self.rotate())

        self.iam.delete_access_key.assert_called_once_with(AccessKeyId="AKIAOLD")
        reloaded = CredentialStore.load(self.creds_file, now=NOW)
        self.assertEqual(reloaded.get("me").access_key_id, "AKIANEW")
        self.assertEqual(reloaded.get("me").extra, {"region": "eu-west-1"})
        self.assertEqual(os.stat(self.state_file).st_mode & 0o777, 0o600)
        self.assertEqual(read_state(self.state_file)[LAST_ROTATION_KEY], NOW.isoformat())

    def test_rotation_not_due(self):
        write_state({LAST_ROTATION_KEY: NOW.isoformat()}, self.state_file)
        self.assertFalse(self.rotate())
        self.iam.create_access_key.assert_not_called()

    def test_create_failure(self):
        self.iam.create_access_key.side_effect = ClientError(
            {"Error": {"Code": "LimitExceeded", "Message": "too many keys"}}, "CreateAccessKey"
        )
        with self.assertRaises(RotationError):
            self.rotate()
        self.assertFalse(os.path.exists(self.creds_file))
        self.assertEqual(read_state(self.state_file), {})

    def test_delete_failure_keeps_new_key(self):
        self.iam.delete_access_key.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "no"}}, "DeleteAccessKey"
        )
        with self.assertRaises(RotationError) as ctx:
            self.rotate()
        self.assertIn("AKIAOLD", str(ctx.exception))
        reloaded = CredentialStore.load(self.creds_file, now=NOW)
        self.assertEqual(reloaded.get("me").access_key_id, "AKIANEW")

    def test_missing_main_profile(self):
        self.store = CredentialStore(self.creds_file)
        with self.assertRaises(MissingRootCredentials):
            self.rotate()


class TestState(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_missing_state_file(self):
        self.assertEqual(read_state(os.path.join(self.temp_dir, "state.yaml")), {})

    def test_corrupt_state_file_ignored(self):
        path = os.path.join(self.temp_dir, "state.yaml")
        with open(path, "w") as f:
            f.write("[unclosed\n")
        self.assertEqual(read_state(path), {})


if __name__ == "__main__":
    unittest.main()
