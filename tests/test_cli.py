"""Tests for the awscredx command line."""

import io
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from awscredx.cli import export_statement, format_remaining, main
from awscredx.credentials import CredentialEntry, CredentialStore

CONFIG = """\
main_profile: me
mfa_serial_number: arn:aws:iam::123456789012:mfa/me
profiles:
  dev: arn:aws:iam::1:role/dev
  prod:
    role_arn: arn:aws:iam::2:role/admin
    parent_profile: dev
"""


class FakeStsFactory:
    def __init__(self):
        self.calls = []

    def __call__(self, parent):
        factory = self

        class Client:
            def assume(self, profile_name, subject):
                factory.calls.append(profile_name)
                return CredentialEntry(
                    profile_name,
                    "ASIANEW",
                    "secret",
                    "token",
                    datetime.now(timezone.utc) + timedelta(hours=1),
                )

        return Client()


class TestExportStatement(unittest.TestCase):
    def test_bash(self):
        self.assertEqual(export_statement("dev", shell="bash"), 'export AWS_PROFILE="dev"')

    def test_fish(self):
        self.assertEqual(export_statement("dev", shell="fish"), 'set -x AWS_PROFILE "dev"')

    @patch.dict(os.environ, {"SHELL": "/usr/bin/fish"})
    def test_shell_from_environment(self):
        self.assertTrue(export_statement("dev").startswith("set -x"))

    def test_format_remaining(self):
        self.assertEqual(format_remaining(timedelta(hours=1, minutes=5)), "1:05")
        self.assertEqual(format_remaining(timedelta(seconds=-30)), "0:00")


class TestMain(unittest.TestCase):
    """Test CLI commands end to end with temporary files."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_file = os.path.join(self.temp_dir, "config.yaml")
        self.creds_file = os.path.join(self.temp_dir, "credentials")
        with open(self.config_file, "w") as f:
            f.write(CONFIG)

    def tearDown(self):
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def run_cli(self, *args):
        stdout, stderr = io.StringIO(), io.StringIO()
        argv = ["--config", self.config_file, "--credentials-file", self.creds_file] + list(args)
        with redirect_stdout(stdout), redirect_stderr(stderr):
            with self.assertRaises(SystemExit) as ctx:
                main(argv)
        return ctx.exception.code, stdout.getvalue(), stderr.getvalue()

    @patch.dict(os.environ, {"SHELL": "/bin/bash"})
    def test_assume_from_cache(self):
        """Test that a fresh cached profile is exported without STS calls."""
        expires = datetime.now(timezone.utc) + timedelta(hours=1)
        CredentialStore(
            self.creds_file,
            [CredentialEntry("me", "AKIA", "s"), CredentialEntry("prod", "ASIA", "s", "t", expires)],
        ).persist()

        factory = FakeStsFactory()
        with patch("awscredx.resolver.default_client_factory", return_value=factory):
            code, out, err = self.run_cli("assume", "prod")

        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), 'export AWS_PROFILE="prod"')
        self.assertEqual(factory.calls, [])

    @patch.dict(os.environ, {"SHELL": "/bin/zsh"})
    def test_assume_refreshes_chain(self):
        expires = datetime.now(timezone.utc) + timedelta(hours=1)
        CredentialStore(
            self.creds_file,
            [CredentialEntry("me", "AKIA", "s"), CredentialEntry("me-mfa", "ASIA", "s", "t", expires)],
        ).persist()

        factory = FakeStsFactory()
        with patch("awscredx.resolver.default_client_factory", return_value=factory):
            code, out, err = self.run_cli("assume", "prod")

        self.assertEqual(code, 0)
        self.assertEqual(factory.calls, ["dev", "prod"])
        reloaded = CredentialStore.load(self.creds_file)
        self.assertEqual(reloaded.profile_names(), ["me", "me-mfa", "dev", "prod"])

    def test_assume_without_root(self):
        code, out, err = self.run_cli("assume", "dev")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("ERROR: cannot get credentials for main profile 'me'", err)

    def test_assume_unknown_profile(self):
        code, out, err = self.run_cli("assume", "nope")
        self.assertEqual(code, 1)
        self.assertIn("profile 'nope' does not exist", err)

    def test_missing_config(self):
        os.remove(self.config_file)
        code, out, err = self.run_cli("list-profiles")
        self.assertEqual(code, 2)
        self.assertIn("does not exist", err)

    def test_malformed_credentials_file(self):
        with open(self.creds_file, "w") as f:
            f.write("[me]\naws_access_key_id = AKIA\n")
        code, out, err = self.run_cli("list-credentials")
        self.assertEqual(code, 3)
        self.assertIn("aws_secret_access_key", err)

    def test_list_profiles(self):
        code, out, err = self.run_cli("list-profiles")
        self.assertEqual(code, 0)
        lines = out.splitlines()
        self.assertTrue(lines[0].startswith("me ") and lines[0].endswith("Main profile"))
        self.assertIn("Main profile MFA session", lines[1])
        self.assertIn("arn:aws:iam::1:role/dev", lines[2])
        self.assertIn("(via me -> me-mfa -> dev)", lines[3])

    def test_list_credentials(self):
        expires = datetime.now(timezone.utc) + timedelta(hours=2)
        CredentialStore(
            self.creds_file,
            [CredentialEntry("me", "AKIA", "s"), CredentialEntry("dev", "ASIA", "s", "t", expires)],
        ).persist()
        code, out, err = self.run_cli("list-credentials")
        self.assertEqual(code, 0)
        self.assertIn("expires never", out)
        self.assertIn("in 1:59", out)

    def test_init(self):
        config_file = os.path.join(self.temp_dir, "new", "config.yaml")
        stderr = io.StringIO()
        with redirect_stderr(stderr), redirect_stdout(io.StringIO()):
            with self.assertRaises(SystemExit) as ctx:
                main(["--config", config_file, "init"])
        self.assertEqual(ctx.exception.code, 0)
        self.assertTrue(os.path.exists(config_file))
        self.assertIn("Created configuration file", stderr.getvalue())


if __name__ == "__main__":
    unittest.main()
