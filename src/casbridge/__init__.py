"""
casbridge - CAS REST Authentication Realm

Checks username/password credentials against a CAS server through its REST
ticket API and turns the validated assertion into principals and roles.

Flow:
- Create a ticket-granting ticket (TGT) from the credentials
- Grant a service ticket (ST) for the configured service
- Validate the ST (CAS 1.0, 2.0, 2.0 proxy, 3.0 or SAML 1.1)
- Destroy the TGT, always

Example Usage:
    from casbridge import CasConfiguration, UsernamePasswordCredentials, create_cas_realm

    realm = create_cas_realm(CasConfiguration(
        cas_server_url_prefix="https://cas.example.com/cas",
        cas_service_url="https://repo.example.com/",
        role_attribute_names={"roles"},
    ))

    info = realm.authenticate(UsernamePasswordCredentials("jdoe", "secret"))
    if info is not None:
        print(f"Authenticated as {info.principal_name}")
        print(f"Roles: {realm.authorize(info.principals).roles}")
"""

from casbridge.core.types import (
    AuthenticationInfo,
    AuthorizationInfo,
    PrincipalCollection,
    UsernamePasswordCredentials,
    ValidationProtocol,
)
from casbridge.core.exceptions import AuthenticationError, CasBridgeError, ConfigurationError
from casbridge.realm.authenticator import CasAuthenticatingRealm, create_cas_realm
from casbridge.realm.config import CasConfiguration

__version__ = "0.1.0"

__all__ = [
    # Main API
    "CasAuthenticatingRealm",
    "CasConfiguration",
    "create_cas_realm",
    # Types
    "AuthenticationInfo",
    "AuthorizationInfo",
    "PrincipalCollection",
    "UsernamePasswordCredentials",
    "ValidationProtocol",
    # Errors
    "AuthenticationError",
    "CasBridgeError",
    "ConfigurationError",
    # Metadata
    "__version__",
]
