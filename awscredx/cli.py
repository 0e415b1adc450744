"""
Command-line interface for awscredx.
"""

import argparse
import logging
import os
import sys
from datetime import datetime, timezone

from . import __version__
from .config import get_config_path, read_config, write_config_template
from .credentials import CredentialStore
from .errors import AwsCredxError, ConfigError, StoreError
from .graph import ProfileGraph
from .resolver import assume
from .rotation import rotate_if_needed

logger = logging.getLogger(__name__)

PROFILE_ENV_VAR = "AWS_PROFILE"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_STORE_ERROR = 3


def exit_code_for(error):
    if isinstance(error, ConfigError):
        return EXIT_CONFIG_ERROR
    if isinstance(error, StoreError):
        return EXIT_STORE_ERROR
    return EXIT_FAILURE


def current_shell():
    shell = os.environ.get("SHELL")
    if not shell:
        return "bash"
    return os.path.basename(shell)


def export_statement(profile_name, shell=None):
    """Shell statement that makes profile_name the active AWS profile."""
    shell = shell or current_shell()
    if shell == "fish":
        return f'set -x {PROFILE_ENV_VAR} "{profile_name}"'
    return f'export {PROFILE_ENV_VAR}="{profile_name}"'


def format_remaining(remaining):
    total_minutes = max(int(remaining.total_seconds() // 60), 0)
    return f"{total_minutes // 60}:{total_minutes % 60:02d}"


def cmd_assume(args):
    config = read_config(args.config)
    store = CredentialStore.load(args.credentials_file)
    rotate_if_needed(config, store)
    entry = assume(args.profile, config, store)
    if entry.expires_at:
        local_time = entry.expires_at.astimezone()
        print(
            f"✓ Credentials for '{args.profile}' valid until {local_time.strftime('%H:%M')}",
            file=sys.stderr,
        )
    print(export_statement(args.profile))
    return EXIT_OK


def cmd_list_profiles(args):
    config = read_config(args.config)
    graph = ProfileGraph(config)
    names = [config.main_profile, config.mfa_profile] + list(config.profiles)
    width = max(len(name) for name in names) + 2

    print(f"{config.main_profile:{width}}Main profile")
    print(f"{config.mfa_profile:{width}}Main profile MFA session")
    for name, profile in config.profiles.items():
        line = f"{name:{width}}{profile.role_arn}"
        if graph.parent_of(name) != config.mfa_profile:
            line += f" (via {' -> '.join(graph.chain_to(name)[:-1])})"
        print(line)
    return EXIT_OK


def cmd_list_credentials(args):
    store = CredentialStore.load(args.credentials_file)
    entries = store.entries()
    if not entries:
        print("No cached credentials", file=sys.stderr)
        return EXIT_OK

    now = datetime.now(timezone.utc)
    width = max(len(e.profile_name) for e in entries) + 2
    for entry in entries:
        if entry.expires_at is None:
            print(f"{entry.profile_name:{width}}expires never")
        else:
            local_time = entry.expires_at.astimezone()
            print(
                f"{entry.profile_name:{width}}expires at {local_time.strftime('%H:%M')} "
                f"in {format_remaining(entry.remaining(now))}"
            )
    return EXIT_OK


def cmd_init(args):
    config_file = args.config or get_config_path()
    try:
        created = write_config_template(config_file)
    except OSError as e:
        raise ConfigError(f"cannot create configuration file {config_file}: {e}")

    if created:
        print(f"✓ Created configuration file {config_file}", file=sys.stderr)
    else:
        print(f"Configuration file {config_file} already exists", file=sys.stderr)
    print(
        "\nFill in main_profile, mfa_serial_number and your role profiles, then run:\n"
        "  eval $(awscredx assume <profile>)",
        file=sys.stderr,
    )
    return EXIT_OK


def build_parser():
    parser = argparse.ArgumentParser(
        prog="awscredx",
        description="AWS credentials management: role assumption chains with MFA and caching",
        epilog="Examples:\n"
        "  awscredx init                    # Create ~/.config/awscredx/config.yaml\n"
        "  eval $(awscredx assume dev)      # Assume role profile 'dev'\n"
        "  awscredx list-credentials        # Show cached credentials and expirations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        default=None,
        help="Configuration file (default: $AWSCREDX_CONFIG or ~/.config/awscredx/config.yaml)",
    )
    parser.add_argument(
        "--credentials-file",
        default=None,
        help="AWS credentials file (default: $AWS_SHARED_CREDENTIALS_FILE or ~/.aws/credentials)",
    )
    parser.add_argument("--debug", action="store_true", help="Log resolution steps to stderr")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    p = subparsers.add_parser(
        "assume", help="Print shell commands to assume the role of a given profile"
    )
    p.add_argument("profile", help="Profile name which role to assume")
    p.set_defaults(func=cmd_assume)

    p = subparsers.add_parser("list-profiles", help="List configured profiles with their role ARNs")
    p.set_defaults(func=cmd_list_profiles)

    p = subparsers.add_parser(
        "list-credentials", help="List cached credentials with their expiration times"
    )
    p.set_defaults(func=cmd_list_credentials)

    p = subparsers.add_parser("init", help="Create the configuration file from a template")
    p.set_defaults(func=cmd_init)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(levelname)s %(name)s: %(message)s",
        )

    try:
        code = args.func(args)
    except AwsCredxError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        code = exit_code_for(e)
    except KeyboardInterrupt:
        print("\nCancelled", file=sys.stderr)
        code = EXIT_FAILURE
    sys.exit(code)


if __name__ == "__main__":
    main()
