"""
casbridge Realm Module

Host-facing authentication realm backed by the CAS REST ticket API.

Components:
- authenticator: CasAuthenticatingRealm and the per-call attempt state machine
- authorization: Assertion attribute to role/permission mapping
- config: Immutable configuration snapshot and configuration sources
"""

from casbridge.realm.authenticator import (
    ROLE,
    AuthenticationAttemptMachine,
    CasAuthenticatingRealm,
    RealmSnapshot,
    create_cas_realm,
    new_attempt,
)
from casbridge.realm.authorization import (
    authorization_from_attributes,
    split_attribute_values,
)
from casbridge.realm.config import (
    CasConfiguration,
    ConfigurationSource,
    FileConfigurationSource,
    StaticConfigurationSource,
    load_configuration_file,
)

__all__ = [
    # Realm
    "ROLE",
    "AuthenticationAttemptMachine",
    "CasAuthenticatingRealm",
    "RealmSnapshot",
    "create_cas_realm",
    "new_attempt",
    # Authorization
    "authorization_from_attributes",
    "split_attribute_values",
    # Configuration
    "CasConfiguration",
    "ConfigurationSource",
    "FileConfigurationSource",
    "StaticConfigurationSource",
    "load_configuration_file",
]
