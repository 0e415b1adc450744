"""
Local credential store backed by the AWS shared credentials file.

The credentials file has no field for expiration times, so they are kept in a
YAML side file next to it (<credentials file>.expirations.yaml).
"""

import configparser
import io
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone

import yaml

from .errors import StoreParseError, StoreWriteError

logger = logging.getLogger(__name__)

ACCESS_KEY_ID = "aws_access_key_id"
SECRET_ACCESS_KEY = "aws_secret_access_key"
SESSION_TOKEN = "aws_session_token"
CREDENTIAL_KEYS = (ACCESS_KEY_ID, SECRET_ACCESS_KEY, SESSION_TOKEN)

EXPIRATIONS_SUFFIX = ".expirations.yaml"
CREDENTIALS_PATH_ENV = "AWS_SHARED_CREDENTIALS_FILE"

# configparser swallows a section named like its default section
_NO_DEFAULT_SECTION = "\x00awscredx-no-default"


@dataclass(frozen=True)
class CredentialEntry:
    profile_name: str
    access_key_id: str
    secret_access_key: str
    session_token: str = None
    expires_at: datetime = None
    # Other keys found in the section (e.g. region), written back unchanged
    extra: dict = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self):
        if self.session_token and self.expires_at is None:
            raise ValueError(
                f"credentials for '{self.profile_name}' have a session token but no expiration"
            )

    @property
    def is_long_lived(self):
        return self.session_token is None and self.expires_at is None

    def remaining(self, now=None):
        """Time left before expiration, or None for credentials that never expire."""
        if self.expires_at is None:
            return None
        return self.expires_at - (now or datetime.now(timezone.utc))

    def is_fresh(self, margin, now=None):
        """
        Check whether the entry can be used without refreshing.

        Args:
            margin: timedelta of validity that must remain
            now: Current time (defaults to datetime.now(timezone.utc))

        Returns:
            bool: True for non-expiring entries or when more than margin remains
        """
        remaining = self.remaining(now)
        return remaining is None or remaining > margin


def get_aws_credentials_path():
    """Get the AWS credentials file path, honouring AWS_SHARED_CREDENTIALS_FILE."""
    return os.path.expanduser(os.environ.get(CREDENTIALS_PATH_ENV) or "~/.aws/credentials")


def expirations_path_for(creds_file):
    return f"{creds_file}{EXPIRATIONS_SUFFIX}"


def parse_timestamp(value):
    """
    Parse an expiration timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (with or without a trailing Z) and datetime
    objects. Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        expiration = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        expiration = datetime.fromisoformat(text)
    if expiration.tzinfo is None:
        expiration = expiration.replace(tzinfo=timezone.utc)
    return expiration.astimezone(timezone.utc)


def format_timestamp(value):
    return value.astimezone(timezone.utc).isoformat()


def _new_parser():
    parser = configparser.ConfigParser(
        delimiters=("=",),
        interpolation=None,
        strict=False,
        default_section=_NO_DEFAULT_SECTION,
    )
    # Preserve case sensitivity for AWS credentials
    parser.optionxform = str
    return parser


def _unquote(value):
    text = value.strip()
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1]
    return text


def _section_header(profile_name):
    if any(c.isspace() for c in profile_name):
        return f'"{profile_name}"'
    return profile_name


def parse_credentials(text, source="<string>"):
    """
    Parse credentials file text into per-profile property dicts.

    Args:
        text: File content
        source: File name used in error messages

    Returns:
        list of (profile_name, properties) tuples in file order

    Raises:
        StoreParseError: If the text is not a sequence of sections
    """
    parser = _new_parser()
    try:
        parser.read_string(text, source=source)
    except configparser.Error as e:
        raise StoreParseError(f"cannot parse credentials file {source}: {e}")

    sections = []
    seen = {}
    for header in parser.sections():
        name = _unquote(header)
        props = {key: _unquote(value) for key, value in parser[header].items()}
        if name in seen:
            # [a b] and ["a b"] name the same profile
            sections[seen[name]][1].update(props)
            continue
        seen[name] = len(sections)
        sections.append((name, props))
    return sections


def entry_from_properties(profile_name, props, expires_at=None, source="<string>"):
    """
    Build a CredentialEntry from one parsed section.

    Raises:
        StoreParseError: If a mandatory key is missing
    """
    for key in (ACCESS_KEY_ID, SECRET_ACCESS_KEY):
        if not props.get(key):
            raise StoreParseError(
                f"profile '{profile_name}' in {source} does not have property {key}",
                profile=profile_name,
            )
    return CredentialEntry(
        profile_name=profile_name,
        access_key_id=props[ACCESS_KEY_ID],
        secret_access_key=props[SECRET_ACCESS_KEY],
        session_token=props.get(SESSION_TOKEN) or None,
        expires_at=expires_at,
        extra={k: v for k, v in props.items() if k not in CREDENTIAL_KEYS},
    )


def format_credentials(entries):
    """Serialise entries into credentials file text, in the given order."""
    parser = _new_parser()
    for entry in entries:
        section = {
            ACCESS_KEY_ID: entry.access_key_id,
            SECRET_ACCESS_KEY: entry.secret_access_key,
        }
        if entry.session_token:
            section[SESSION_TOKEN] = entry.session_token
        for key, value in entry.extra.items():
            section.setdefault(key, value)
        parser[_section_header(entry.profile_name)] = section

    buf = io.StringIO()
    parser.write(buf)
    return buf.getvalue()


def read_expirations(expirations_file):
    """
    Read the expiration side table.

    Returns:
        dict of profile name to aware UTC datetime (empty if the file is missing)

    Raises:
        StoreParseError: If the file exists but cannot be parsed
    """
    if not os.path.exists(expirations_file):
        return {}
    try:
        with open(expirations_file, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise StoreParseError(f"cannot read expirations file {expirations_file}: {e}")
    except yaml.YAMLError as e:
        raise StoreParseError(f"cannot parse expirations file {expirations_file}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise StoreParseError(f"expirations file {expirations_file} must be a mapping")

    expirations = {}
    for profile_name, value in data.items():
        try:
            expirations[str(profile_name)] = parse_timestamp(value)
        except (TypeError, ValueError) as e:
            raise StoreParseError(
                f"invalid expiration for profile '{profile_name}' in {expirations_file}: {e}",
                profile=str(profile_name),
            )
    return expirations


def format_expirations(entries):
    table = {e.profile_name: format_timestamp(e.expires_at) for e in entries if e.expires_at}
    return yaml.safe_dump(table, default_flow_style=False, sort_keys=False)


def _ensure_parent_dir(path):
    parent = os.path.dirname(path)
    missing = []
    while parent and not os.path.isdir(parent):
        missing.append(parent)
        parent = os.path.dirname(parent)
    for directory in reversed(missing):
        # each level gets 0700; makedirs would only apply it to the last one
        os.mkdir(directory, 0o700)


def _atomic_write(path, content):
    """
    Replace path with content, readable and writable by the owner only.

    The content goes to a temporary file in the same directory which is then
    renamed over the target, so readers see either the old or the new file.
    A symlinked path is followed and the file it points to is replaced.
    """
    path = os.path.realpath(path)
    _ensure_parent_dir(path)
    # mkstemp creates the file with mode 0600
    fd, tmp_path = tempfile.mkstemp(
        dir=os.path.dirname(path) or ".", prefix=f".{os.path.basename(path)}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class CredentialStore:
    """
    Credentials cache: one CredentialEntry per profile, in file order.

    Open with CredentialStore.load(), change with put(), and write back once
    with persist(). Concurrent invocations are not coordinated; the last one
    to persist wins.
    """

    def __init__(self, path, entries=None):
        self.path = path
        self._entries = []
        for entry in entries or []:
            self.put(entry)

    @property
    def expirations_path(self):
        return expirations_path_for(self.path)

    @classmethod
    def load(cls, path=None, now=None):
        """
        Read the credentials file and its expiration table.

        Entries that have expired, and entries with a session token but no
        recorded expiration, are left out.

        Args:
            path: Credentials file (defaults to get_aws_credentials_path())
            now: Current time, for tests

        Returns:
            CredentialStore

        Raises:
            StoreParseError: If either file cannot be read or parsed
        """
        path = path or get_aws_credentials_path()
        now = now or datetime.now(timezone.utc)
        store = cls(path)

        if not os.path.exists(path):
            logger.debug("Credentials file %s does not exist, starting empty", path)
            return store

        try:
            with open(path, "r") as f:
                text = f.read()
        except OSError as e:
            raise StoreParseError(f"cannot read credentials file {path}: {e}")

        expirations = read_expirations(store.expirations_path)
        for profile_name, props in parse_credentials(text, source=path):
            expires_at = expirations.get(profile_name)
            if expires_at is not None and expires_at <= now:
                logger.debug("Dropping expired credentials for %s", profile_name)
                continue
            if props.get(SESSION_TOKEN) and expires_at is None:
                logger.debug("Dropping %s: session token without expiration", profile_name)
                continue
            store._entries.append(entry_from_properties(profile_name, props, expires_at, source=path))

        logger.debug("Loaded %d credential entries from %s", len(store._entries), path)
        return store

    def get(self, profile_name):
        for entry in self._entries:
            if entry.profile_name == profile_name:
                return entry
        return None

    def put(self, entry):
        """Insert entry, replacing any existing entry for the same profile in place."""
        for i, existing in enumerate(self._entries):
            if existing.profile_name == entry.profile_name:
                self._entries[i] = entry
                return entry
        self._entries.append(entry)
        return entry

    def entries(self):
        return list(self._entries)

    def restore(self, entries):
        """Replace all entries with a list previously returned by entries()."""
        self._entries = list(entries)

    def profile_names(self):
        return [e.profile_name for e in self._entries]

    def persist(self):
        """
        Write the credentials file and then the expiration table.

        Raises:
            StoreWriteError: If either file cannot be written
        """
        try:
            _atomic_write(self.path, format_credentials(self._entries))
            _atomic_write(self.expirations_path, format_expirations(self._entries))
        except OSError as e:
            raise StoreWriteError(f"cannot write credentials to {self.path}: {e}")
        logger.debug("Persisted %d credential entries to %s", len(self._entries), self.path)


class InMemoryCredentialStore(CredentialStore):
    """CredentialStore that never touches the filesystem; counts persist() calls."""

    def __init__(self, entries=None):
        super().__init__("<memory>", entries)
        self.persist_count = 0

    def persist(self):
        self.persist_count += 1
