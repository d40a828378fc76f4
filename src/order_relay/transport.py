"""
Kafka connection properties for the publish and consume roles.

TransportConfigBuilder assembles an immutable TransportConfig per role from
KafkaSettings, fixed delivery knobs and the resolved trust material. Property
names follow the Kafka client conventions (ssl.truststore.location,
sasl.jaas.config, ...). TransportConfig.client_config() translates the few of
those librdkafka does not understand when a connection is actually opened.
"""

import logging
import re
import threading
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Union

from cryptography.hazmat.primitives.serialization import Encoding

from order_relay.common.exceptions import ConfigurationError, TrustMaterialError
from order_relay.common.logging import log_exception, log_with_context
from order_relay.config import KafkaSettings
from order_relay.security.truststore import (
    PEM_SUFFIXES,
    TrustMaterial,
    TrustMaterialResolver,
    load_trust_certificates,
)

logger = logging.getLogger(__name__)

BOOTSTRAP_SERVERS = "bootstrap.servers"
GROUP_ID = "group.id"
SECURITY_PROTOCOL = "security.protocol"
SASL_MECHANISM = "sasl.mechanism"
SASL_JAAS_CONFIG = "sasl.jaas.config"
SSL_ENDPOINT_IDENTIFICATION_ALGORITHM = "ssl.endpoint.identification.algorithm"
SSL_TRUSTSTORE_LOCATION = "ssl.truststore.location"
SSL_TRUSTSTORE_PASSWORD = "ssl.truststore.password"

# Consume loop settings, not passed to the client
MAX_POLL_RECORDS = "max.poll.records"
POLL_TIMEOUT_MS = "poll.timeout.ms"

PUBLISH_SETTINGS: Dict[str, Any] = {
    "acks": "all",
    "retries": 3,
    "enable.idempotence": True,
    "linger.ms": 5,
    "delivery.timeout.ms": 120000,
}

CONSUME_SETTINGS: Dict[str, Any] = {
    "enable.auto.commit": False,
    "auto.offset.reset": "earliest",
    "session.timeout.ms": 10000,
    # Must stay below a third of session.timeout.ms
    "heartbeat.interval.ms": 2000,
    MAX_POLL_RECORDS: 10,
    POLL_TIMEOUT_MS: 500,
}

SECRET_KEYS = frozenset({SSL_TRUSTSTORE_PASSWORD, SASL_JAAS_CONFIG, "sasl.password"})

_JAAS_OPTION = re.compile(r'(\w+)\s*=\s*"((?:[^"\\]|\\.)*)"')


class Role(str, Enum):
    """Which side of the log a connection serves."""

    PUBLISH = "publish"
    CONSUME = "consume"


def parse_jaas_options(jaas_config: str) -> Dict[str, str]:
    """
    Extract the quoted options from a JAAS login module string.

    >>> parse_jaas_options('...PlainLoginModule required username="u" password="p";')
    {'username': 'u', 'password': 'p'}
    """
    return {
        name: re.sub(r"\\(.)", r"\1", value)
        for name, value in _JAAS_OPTION.findall(jaas_config)
    }


class TransportConfig(Mapping[str, Any]):
    """
    Read-only Kafka properties for one role.

    Behaves as a mapping over the Kafka-style property names. Use
    client_config() to get the dict handed to confluent_kafka.
    """

    def __init__(self, role: Role, properties: Mapping[str, Any]):
        self.role = role
        self._properties = MappingProxyType(dict(properties))

    def __getitem__(self, key: str) -> Any:
        return self._properties[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._properties)

    def __len__(self) -> int:
        return len(self._properties)

    def __repr__(self) -> str:
        shown = {
            k: ("***" if k in SECRET_KEYS and v else v)
            for k, v in self._properties.items()
        }
        return f"TransportConfig(role={self.role.value!r}, {shown!r})"

    @property
    def max_poll_records(self) -> int:
        return int(self._properties.get(MAX_POLL_RECORDS, CONSUME_SETTINGS[MAX_POLL_RECORDS]))

    @property
    def poll_timeout_s(self) -> float:
        return self._properties.get(POLL_TIMEOUT_MS, CONSUME_SETTINGS[POLL_TIMEOUT_MS]) / 1000.0

    def client_config(self) -> Dict[str, Any]:
        """
        Translate to librdkafka configuration.

        - trust store -> ssl.ca.pem (ssl.ca.location for PEM files)
        - empty endpoint identification algorithm -> "none"
        - JAAS credential string -> sasl.username / sasl.password
        - consume loop settings dropped

        Raises:
            ConfigurationError: If bootstrap.servers (or group.id for the
                consume role) is missing, or the JAAS string holds no username
        """
        props = dict(self._properties)

        if not props.get(BOOTSTRAP_SERVERS):
            raise ConfigurationError(
                "Kafka bootstrap servers are not configured",
                context={"role": self.role.value},
            )
        if self.role is Role.CONSUME and not props.get(GROUP_ID):
            raise ConfigurationError(
                "Kafka consumer group id is not configured",
                context={"role": self.role.value},
            )

        props.pop(MAX_POLL_RECORDS, None)
        props.pop(POLL_TIMEOUT_MS, None)

        if SSL_ENDPOINT_IDENTIFICATION_ALGORITHM in props:
            algorithm = props[SSL_ENDPOINT_IDENTIFICATION_ALGORITHM]
            props[SSL_ENDPOINT_IDENTIFICATION_ALGORITHM] = algorithm or "none"

        location = props.pop(SSL_TRUSTSTORE_LOCATION, None)
        secret = props.pop(SSL_TRUSTSTORE_PASSWORD, None)
        if location:
            props.update(_trust_properties(location, secret))

        jaas_config = props.pop(SASL_JAAS_CONFIG, None)
        if jaas_config:
            options = parse_jaas_options(jaas_config)
            if "username" not in options:
                raise ConfigurationError(
                    "sasl.jaas.config does not contain a username",
                    context={"role": self.role.value},
                )
            props["sasl.username"] = options["username"]
            props["sasl.password"] = options.get("password", "")

        return props


def _trust_properties(location: str, secret: Optional[str]) -> Dict[str, str]:
    if location.lower().endswith(PEM_SUFFIXES):
        return {"ssl.ca.location": location}

    try:
        certificates = load_trust_certificates(location, secret)
    except TrustMaterialError as e:
        log_exception(
            logger,
            e,
            "Could not read trust store, using default trust store",
            level=logging.WARNING,
            truststore_location=location,
        )
        return {}

    return {
        "ssl.ca.pem": "".join(
            cert.public_bytes(Encoding.PEM).decode("ascii") for cert in certificates
        )
    }


class TransportConfigBuilder:
    """
    Builds TransportConfig instances from loaded settings.

    Trust material is resolved at most once per builder and shared by every
    config it produces. build() never raises; incomplete settings are reported
    by TransportConfig.client_config() when a connection is opened.

    Usage:
        >>> builder = TransportConfigBuilder(KafkaSettings.from_env())
        >>> producer_config = builder.build(Role.PUBLISH)
        >>> consumer_config = builder.build(Role.CONSUME)
    """

    def __init__(
        self,
        settings: KafkaSettings,
        resolver: Optional[TrustMaterialResolver] = None,
    ):
        self.settings = settings
        self._resolver = resolver
        self._trust_material: Optional[TrustMaterial] = None
        self._trust_resolved = False
        self._lock = threading.Lock()

    @property
    def trust_material(self) -> Optional[TrustMaterial]:
        """Trust material for SSL protocols, resolved on first access."""
        with self._lock:
            if not self._trust_resolved:
                resolver = self._resolver or TrustMaterialResolver()
                self._trust_material = resolver.resolve(
                    self.settings.ssl_truststore_location,
                    self.settings.ssl_truststore_password,
                )
                self._trust_resolved = True
            return self._trust_material

    def build(self, role: Union[Role, str]) -> TransportConfig:
        role = Role(role)
        props: Dict[str, Any] = {BOOTSTRAP_SERVERS: self.settings.bootstrap_servers}

        if role is Role.PUBLISH:
            props.update(PUBLISH_SETTINGS)
        else:
            props[GROUP_ID] = self.settings.group_id
            props.update(CONSUME_SETTINGS)

        props.update(self._security_properties())

        log_with_context(
            logger,
            logging.DEBUG,
            "Built transport config",
            role=role.value,
            bootstrap_servers=self.settings.bootstrap_servers,
            security_protocol=self.settings.security_protocol,
        )
        return TransportConfig(role, props)

    def publish_config(self) -> TransportConfig:
        return self.build(Role.PUBLISH)

    def consume_config(self) -> TransportConfig:
        return self.build(Role.CONSUME)

    def _security_properties(self) -> Dict[str, Any]:
        settings = self.settings
        props: Dict[str, Any] = {SECURITY_PROTOCOL: settings.security_protocol}

        if settings.uses_ssl:
            material = self.trust_material
            if material is not None:
                props[SSL_TRUSTSTORE_LOCATION] = material.keystore_path
                props[SSL_TRUSTSTORE_PASSWORD] = material.unlock_secret
            props[SSL_ENDPOINT_IDENTIFICATION_ALGORITHM] = (
                settings.ssl_endpoint_identification_algorithm or ""
            )

        if settings.uses_sasl:
            if settings.sasl_mechanism:
                props[SASL_MECHANISM] = settings.sasl_mechanism
            if settings.sasl_jaas_config:
                props[SASL_JAAS_CONFIG] = settings.sasl_jaas_config

        return props


__all__ = [
    "Role",
    "TransportConfig",
    "TransportConfigBuilder",
    "parse_jaas_options",
    "PUBLISH_SETTINGS",
    "CONSUME_SETTINGS",
]
