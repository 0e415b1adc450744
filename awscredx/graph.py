"""
Profile graph: who each profile is assumed from, and how.

The main profile is the root of the graph. The MFA profile hangs directly off
it, and every role profile hangs off its configured parent_profile (the MFA
profile when unset).
"""

import logging
from dataclasses import dataclass

from .errors import ProfileNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleSubject:
    role_arn: str
    session_name: str
    duration_sec: int = None


@dataclass(frozen=True)
class MfaSessionSubject:
    serial_number: str
    token_code: str


@dataclass(frozen=True)
class RootNode:
    name: str


@dataclass(frozen=True)
class DerivedNode:
    name: str
    parent: str


class ProfileGraph:
    """
    Read-only view of the configured profiles.

    Args:
        config: Config snapshot for this invocation
        code_provider: Object with get_code() returning a fresh MFA code.
            Only consulted when the MFA profile's subject is requested.
    """

    def __init__(self, config, code_provider=None):
        self.config = config
        self.code_provider = code_provider

    def _check_known(self, profile):
        if not self.config.is_known(profile):
            raise ProfileNotFound(profile)

    def parent_of(self, profile):
        self._check_known(profile)
        if profile in (self.config.main_profile, self.config.mfa_profile):
            return self.config.main_profile
        return self.config.profiles[profile].parent_profile or self.config.mfa_profile

    def node_for(self, profile):
        """Return RootNode for the main profile and DerivedNode for everything else."""
        self._check_known(profile)
        if profile == self.config.main_profile:
            return RootNode(profile)
        return DerivedNode(profile, self.parent_of(profile))

    def assume_subject_for(self, profile):
        """
        Build the assumption request needed to become a profile.

        A new MFA code is requested on every call for the MFA profile;
        codes are single use and are never kept.

        Returns:
            RoleSubject, MfaSessionSubject, or None for the main profile
        """
        if profile == self.config.mfa_profile:
            if self.code_provider is None:
                raise ValueError("no MFA code provider configured")
            logger.debug("Requesting MFA code for %s", self.config.mfa_serial_number)
            return MfaSessionSubject(
                serial_number=self.config.mfa_serial_number,
                token_code=self.code_provider.get_code(),
            )

        role = self.config.profiles.get(profile)
        if role is not None:
            return RoleSubject(
                role_arn=role.role_arn,
                session_name=self.config.session_name,
                duration_sec=role.duration_sec,
            )
        return None

    def chain_to(self, profile):
        """
        List profile names from the main profile down to profile.

        Example: ["me", "me-mfa", "dev", "prod"]
        """
        chain = [profile]
        node = self.node_for(profile)
        while isinstance(node, DerivedNode):
            chain.append(node.parent)
            node = self.node_for(node.parent)
        chain.reverse()
        return chain
