"""
casbridge Realm Configuration

Immutable configuration snapshot for the CAS authenticating realm, and the
sources it can be loaded from.

Sources:
- Mappings (snake_case keys, or the plugin's camelCase keys)
- Environment variables (CASBRIDGE_ prefix)
- The plugin's XML configuration file

Example:
    <casConfiguration>
      <casServerUrl>https://cas.example.com/cas</casServerUrl>
      <casService>https://repo.example.com/</casService>
      <validationProtocol>CAS</validationProtocol>
      <roleAttributeNames>roles,groups</roleAttributeNames>
    </casConfiguration>
"""

from __future__ import annotations

import os
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit

import attrs
import structlog
from attrs import field

from casbridge.core.exceptions import ConfigurationError
from casbridge.core.types import ValidationProtocol

logger = structlog.get_logger()


# =============================================================================
# CONVERTERS
# =============================================================================


def _to_name_set(value: Any) -> FrozenSet[str]:
    """Comma-separated string or iterable -> frozenset of trimmed names."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    else:
        items = value
    return frozenset(str(item).strip() for item in items if str(item).strip())


def _to_proxy_chains(value: Any) -> FrozenSet[Tuple[str, ...]]:
    """
    Parse allowed proxy chains.

    A chain is a whitespace-separated string or a sequence of URLs; a
    multi-line string holds one chain per line.
    """
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = [line for line in value.splitlines() if line.strip()]
    chains = set()
    for chain in value:
        if isinstance(chain, str):
            chain = chain.split()
        chain = tuple(str(url).strip() for url in chain if str(url).strip())
        if chain:
            chains.add(chain)
    return frozenset(chains)


def _to_protocol(value: Any) -> ValidationProtocol:
    try:
        return ValidationProtocol.parse(value)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off", ""):
            return False
        raise ConfigurationError(f"Invalid boolean value: {value!r}")
    return bool(value)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid number: {value!r}") from e


def _is_absolute_url(value: Optional[str]) -> bool:
    if not isinstance(value, str) or not value:
        return False
    parts = urlsplit(value)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


# =============================================================================
# CONFIGURATION
# =============================================================================


@attrs.define(frozen=True)
class CasConfiguration:
    """
    CAS realm configuration.

    Attributes:
        cas_server_url_prefix: CAS server base URL (e.g. https://cas.example.com/cas)
        cas_service_url: Service URL service tickets are granted for
        validation_protocol: Service ticket validation protocol
        role_attribute_names: Assertion attributes whose values are roles
        cas_rest_ticket_url: REST ticket endpoint (default <prefix>/v1/tickets)
        default_roles: Roles granted to every authenticated principal
        permission_attribute_names: Assertion attributes whose values are permissions
        default_permissions: Permissions granted to every authenticated principal
        request_timeout: Timeout in seconds for each remote call
        verify_tls: Verify the CAS server certificate
        accept_any_proxy: CAS2_PROXY - accept tickets from any proxy chain
        allowed_proxy_chains: CAS2_PROXY - accepted proxy chains
        saml_tolerance: SAML11 - clock skew tolerance in seconds
    """

    cas_server_url_prefix: str
    cas_service_url: str
    validation_protocol: ValidationProtocol = field(
        default=ValidationProtocol.CAS2, converter=_to_protocol
    )
    role_attribute_names: FrozenSet[str] = field(factory=frozenset, converter=_to_name_set)
    cas_rest_ticket_url: str = field()
    default_roles: FrozenSet[str] = field(factory=frozenset, converter=_to_name_set)
    permission_attribute_names: FrozenSet[str] = field(factory=frozenset, converter=_to_name_set)
    default_permissions: FrozenSet[str] = field(factory=frozenset, converter=_to_name_set)
    request_timeout: float = field(default=10.0, converter=_to_float)
    verify_tls: bool = field(default=True, converter=_to_bool)
    accept_any_proxy: bool = field(default=False, converter=_to_bool)
    allowed_proxy_chains: FrozenSet[Tuple[str, ...]] = field(
        factory=frozenset, converter=_to_proxy_chains
    )
    saml_tolerance: float = field(default=1.0, converter=_to_float)

    @cas_rest_ticket_url.default
    def _default_rest_ticket_url(self) -> str:
        return f"{str(self.cas_server_url_prefix).rstrip('/')}/v1/tickets"

    def __attrs_post_init__(self) -> None:
        for name in ("cas_server_url_prefix", "cas_service_url", "cas_rest_ticket_url"):
            if not _is_absolute_url(getattr(self, name)):
                raise ConfigurationError(
                    f"{name} must be an absolute http(s) URL, got {getattr(self, name)!r}"
                )
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if self.saml_tolerance < 0:
            raise ConfigurationError("saml_tolerance must not be negative")

    @property
    def cas_server_url(self) -> str:
        """Alias matching the plugin configuration name."""
        return self.cas_server_url_prefix

    # Plugin (camelCase) names -> field names
    KEY_ALIASES = {
        "casServerUrl": "cas_server_url_prefix",
        "casServerUrlPrefix": "cas_server_url_prefix",
        "cas_server_url": "cas_server_url_prefix",
        "casService": "cas_service_url",
        "casServiceUrl": "cas_service_url",
        "cas_service": "cas_service_url",
        "validationProtocol": "validation_protocol",
        "roleAttributeNames": "role_attribute_names",
        "casRestTicketUrl": "cas_rest_ticket_url",
        "defaultRoles": "default_roles",
        "permissionAttributeNames": "permission_attribute_names",
        "defaultPermissions": "default_permissions",
        "requestTimeout": "request_timeout",
        "verifyTls": "verify_tls",
        "acceptAnyProxy": "accept_any_proxy",
        "allowedProxyChains": "allowed_proxy_chains",
        "samlTolerance": "saml_tolerance",
    }

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> CasConfiguration:
        """
        Build a configuration from a mapping.

        Empty values are treated as absent so defaults apply. Unknown keys
        are ignored.

        Raises:
            ConfigurationError: required values missing or invalid
        """
        field_names = {a.name for a in attrs.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in mapping.items():
            name = cls.KEY_ALIASES.get(key, key)
            if name not in field_names:
                logger.debug("config_key_ignored", key=key)
                continue
            if value is None or (isinstance(value, str) and not value.strip()):
                continue
            kwargs[name] = value.strip() if isinstance(value, str) else value

        missing = [
            name for name in ("cas_server_url_prefix", "cas_service_url") if name not in kwargs
        ]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

        try:
            return cls(**kwargs)
        except ConfigurationError:
            raise
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_environ(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = "CASBRIDGE_",
    ) -> CasConfiguration:
        """
        Build a configuration from environment variables.

        CASBRIDGE_CAS_SERVER_URL_PREFIX -> cas_server_url_prefix, etc.
        """
        environ = os.environ if environ is None else environ
        mapping = {
            key[len(prefix):].lower(): value
            for key, value in environ.items()
            if key.startswith(prefix)
        }
        return cls.from_mapping(mapping)


def load_configuration_file(path: Union[str, Path]) -> CasConfiguration:
    """
    Load the plugin's XML configuration file.

    Each child element of the root maps to a configuration value by its
    (camelCase or snake_case) name.

    Raises:
        ConfigurationError: file unreadable, malformed or invalid
    """
    path = Path(path)
    try:
        root = ET.parse(path).getroot()
    except (OSError, ET.ParseError) as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

    mapping: Dict[str, Any] = {}
    for element in root:
        key = element.tag.rsplit("}", 1)[-1]
        children = list(element)
        if children:
            mapping[key] = [(child.text or "").strip() for child in children]
        else:
            mapping[key] = (element.text or "").strip()

    logger.debug("config_file_loaded", path=str(path), keys=sorted(mapping))
    return CasConfiguration.from_mapping(mapping)


# =============================================================================
# CONFIGURATION SOURCES
# =============================================================================


class ConfigurationSource(ABC):
    """Supplies the realm configuration (None when not configured)."""

    @abstractmethod
    def get_configuration(self) -> Optional[CasConfiguration]:
        ...


@attrs.define(frozen=True)
class StaticConfigurationSource(ConfigurationSource):
    """Configuration supplied directly by the host."""

    configuration: Optional[CasConfiguration] = None

    def get_configuration(self) -> Optional[CasConfiguration]:
        return self.configuration


@attrs.define(frozen=True)
class FileConfigurationSource(ConfigurationSource):
    """
    Configuration read from the plugin XML file on each call.

    A missing file means "not configured" rather than an error.
    """

    path: Path = field(converter=Path)

    def get_configuration(self) -> Optional[CasConfiguration]:
        if not self.path.exists():
            logger.info("config_file_missing", path=str(self.path))
            return None
        return load_configuration_file(self.path)
