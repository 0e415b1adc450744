"""
Credential chain resolution.

Resolving a profile finds the nearest usable cached credential on the path
from the profile up to the main profile, then performs one STS call per stale
profile below it, top down.
"""

import logging
from datetime import datetime, timezone

from .errors import (
    AwsCredxError,
    MissingRootCredentials,
    RemoteAssumptionError,
    UnknownAssumeSubject,
)
from .graph import ProfileGraph, RootNode
from .mfa import code_provider_for
from .sts import StsAssumptionClient

logger = logging.getLogger(__name__)


def default_client_factory(region):
    """Return a factory building a StsAssumptionClient for a parent credential."""

    def factory(parent):
        return StsAssumptionClient(parent, region)

    return factory


class ChainResolver:
    """
    Resolve profiles against a credential store.

    Args:
        config: Config snapshot
        store: CredentialStore (or InMemoryCredentialStore); mutated in memory only
        client_factory: Callable taking the parent CredentialEntry and returning
            an object with assume(profile_name, subject). Defaults to STS.
        code_provider: MFA code provider (defaults to code_provider_for(config))
        clock: Callable returning the current aware datetime
    """

    def __init__(self, config, store, client_factory=None, code_provider=None, clock=None):
        self.config = config
        self.store = store
        self.graph = ProfileGraph(config, code_provider or code_provider_for(config))
        self.client_factory = client_factory or default_client_factory(config.region)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def resolve(self, profile):
        """
        Return a usable credential for profile, refreshing stale links as needed.

        Args:
            profile: Profile name

        Returns:
            CredentialEntry

        Raises:
            AwsCredxError: Any failure along the chain; nothing is retried
        """
        cached = self.store.get(profile)
        if cached is not None and cached.is_fresh(self.config.freshness_margin, self.clock()):
            logger.debug("Using cached credentials for %s", profile)
            return cached

        node = self.graph.node_for(profile)
        if isinstance(node, RootNode):
            if cached is None:
                raise MissingRootCredentials(profile)
            raise MissingRootCredentials(
                profile, reason=f"stored credentials expire at {cached.expires_at.isoformat()}"
            )

        if cached is None:
            logger.debug("No cached credentials for %s, assuming from %s", profile, node.parent)
        else:
            logger.debug("Credentials for %s are stale, refreshing from %s", profile, node.parent)

        parent_entry = self.resolve(node.parent)

        subject = self.graph.assume_subject_for(profile)
        if subject is None:
            raise UnknownAssumeSubject(profile)

        try:
            client = self.client_factory(parent_entry)
            new_entry = client.assume(profile, subject)
        except AwsCredxError:
            raise
        except Exception as e:
            raise RemoteAssumptionError(
                f"unable to get credentials for profile '{profile}': {e}",
                profile=profile,
                parent_profile=parent_entry.profile_name,
                parent_access_key_id=parent_entry.access_key_id,
            ) from e

        self.store.put(new_entry)
        logger.debug("Got credentials for %s valid until %s", profile, new_entry.expires_at)
        return new_entry


def assume(profile, config, store, client_factory=None, code_provider=None, clock=None):
    """
    Resolve profile and persist the store once the whole chain succeeded.

    If anything fails the store is not written and its in-memory entries are
    rolled back, so neither the files on disk nor the store handle keep
    credentials from the failed pass.

    Returns:
        CredentialEntry for profile
    """
    resolver = ChainResolver(
        config,
        store,
        client_factory=client_factory,
        code_provider=code_provider,
        clock=clock,
    )
    snapshot = store.entries()
    try:
        entry = resolver.resolve(profile)
    except Exception:
        store.restore(snapshot)
        raise
    store.persist()
    return entry
