"""
MFA one-time code providers.

A code comes either from a configured command (for example a password
manager CLI) or from an interactive prompt. Both must yield exactly six
ASCII digits.
"""

import logging
import re
import subprocess
import sys

from .errors import InvalidMfaCode

logger = logging.getLogger(__name__)

MFA_TOKEN_LENGTH = 6
MFA_CODE_PATTERN = re.compile(r"[0-9]{%d}" % MFA_TOKEN_LENGTH)


def validate_mfa_code(code):
    """
    Trim and validate an MFA code.

    Args:
        code: Raw code as typed or printed by a command

    Returns:
        str: The six-digit code

    Raises:
        InvalidMfaCode: If the trimmed code is not exactly six ASCII digits
    """
    if code is None:
        raise InvalidMfaCode("no MFA code provided")
    trimmed = code.strip()
    if not MFA_CODE_PATTERN.fullmatch(trimmed):
        raise InvalidMfaCode(
            f"MFA code must be exactly {MFA_TOKEN_LENGTH} digits, got {len(trimmed)} characters"
        )
    return trimmed


class CommandCodeProvider:
    """Run a shell command and use its standard output as the MFA code."""

    def __init__(self, command):
        self.command = command

    def get_code(self):
        logger.debug("Running MFA command: %s", self.command)
        try:
            result = subprocess.run(
                self.command,
                shell=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            raise InvalidMfaCode(f"cannot run MFA command '{self.command}': {e}")

        if result.returncode != 0:
            details = result.stderr.strip()
            message = f"MFA command '{self.command}' exited with status {result.returncode}"
            if details:
                message += f": {details}"
            raise InvalidMfaCode(message)

        output = result.stdout.strip()
        if not output:
            raise InvalidMfaCode(f"MFA command '{self.command}' printed nothing")
        return validate_mfa_code(output)


def _read_line_from_stdin(prompt):
    # stdout is usually captured by the calling shell, so prompt on stderr
    sys.stderr.write(prompt)
    sys.stderr.flush()
    line = sys.stdin.readline()
    if not line:
        raise InvalidMfaCode("no MFA code entered (end of input)")
    return line


class PromptCodeProvider:
    """Ask the user to type the MFA code."""

    def __init__(self, prompt="Enter MFA code: ", input_func=None):
        self.prompt = prompt
        self.input_func = input_func or _read_line_from_stdin

    def get_code(self):
        return validate_mfa_code(self.input_func(self.prompt))


def code_provider_for(config):
    """Pick the command provider when mfa_command is configured, else prompt."""
    if config.mfa_command:
        return CommandCodeProvider(config.mfa_command)
    return PromptCodeProvider(prompt=f"Enter MFA code for {config.mfa_serial_number}: ")
