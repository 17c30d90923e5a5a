#!/usr/bin/env python3
"""
CAS REST Realm Example

Demonstrates how to use casbridge's CasAuthenticatingRealm to check a
username/password pair against a CAS server and derive roles from the
released attributes.

Features:
1. Configuration from CASBRIDGE_* environment variables
2. Authentication through the CAS REST ticket API
3. Role mapping from assertion attributes
4. Attempt trace export

Usage:
    export CASBRIDGE_CAS_SERVER_URL_PREFIX=https://cas.example.com/cas
    export CASBRIDGE_CAS_SERVICE_URL=https://repo.example.com/
    export CASBRIDGE_ROLE_ATTRIBUTE_NAMES=roles,groups
    python cas_realm_example.py jdoe
"""

import getpass
import sys

from casbridge import (
    AuthenticationError,
    CasConfiguration,
    ConfigurationError,
    UsernamePasswordCredentials,
    create_cas_realm,
)
from casbridge.observability import configure_logging


def main() -> int:
    """Authenticate one user against the configured CAS server."""

    print("=" * 70)
    print("casbridge - CAS REST Authentication Realm")
    print("=" * 70)
    print()

    configure_logging(level="DEBUG")

    # ==========================================================================
    # STEP 1: Load configuration
    # ==========================================================================
    print("1. Load Configuration")
    print("-" * 40)

    try:
        config = CasConfiguration.from_environ()
    except ConfigurationError as e:
        print(f"   Configuration error: {e}")
        return 2

    print(f"   CAS Server: {config.cas_server_url_prefix}")
    print(f"   Service: {config.cas_service_url}")
    print(f"   Protocol: {config.validation_protocol.name}")
    print(f"   Role Attributes: {', '.join(sorted(config.role_attribute_names)) or '(none)'}")
    print()

    realm = create_cas_realm(config)

    # ==========================================================================
    # STEP 2: Authenticate
    # ==========================================================================
    print("2. Authenticate")
    print("-" * 40)

    username = sys.argv[1] if len(sys.argv) > 1 else input("   Username: ")
    password = getpass.getpass("   Password: ")

    try:
        info = realm.authenticate(UsernamePasswordCredentials(username, password))
    except AuthenticationError as e:
        print(f"   Authentication failed: {e}")
        print(f"   Cause: {type(e.__cause__).__name__}: {e.__cause__}")
        info = None

    if info is not None:
        print(f"   Principal: {info.principal_name}")
        for name, value in sorted(info.attributes.items()):
            print(f"   Attribute {name}: {value}")
        print()

        # ======================================================================
        # STEP 3: Authorize
        # ======================================================================
        print("3. Authorize")
        print("-" * 40)

        authz = realm.authorize(info.principals)
        print(f"   Roles: {sorted(authz.roles)}")
        print(f"   Permissions: {sorted(authz.permissions)}")
    print()

    # ==========================================================================
    # STEP 4: Attempt trace
    # ==========================================================================
    print("4. Attempt Trace")
    print("-" * 40)
    state = realm.last_attempt_state()
    print(f"   Final State: {state.name if state is not None else 'no attempt made'}")
    print(realm.export_last_attempt_trace_json())

    return 0 if info is not None else 1


if __name__ == "__main__":
    sys.exit(main())
