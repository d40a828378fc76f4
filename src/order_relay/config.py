"""Relay configuration from a YAML file and environment variables."""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from order_relay.common.exceptions import ConfigurationError

# Default config path: config.yaml in src/ directory
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

SECURITY_PROTOCOLS = ("PLAINTEXT", "SSL", "SASL_PLAINTEXT", "SASL_SSL")

# Environment variable -> KafkaSettings field
ENV_VARS = {
    "KAFKA_BOOTSTRAP_SERVERS": "bootstrap_servers",
    "KAFKA_CONSUMER_GROUP_ID": "group_id",
    "KAFKA_SECURITY_PROTOCOL": "security_protocol",
    "KAFKA_SASL_MECHANISM": "sasl_mechanism",
    "KAFKA_SASL_JAAS_CONFIG": "sasl_jaas_config",
    "KAFKA_SSL_ENDPOINT_IDENTIFICATION_ALGORITHM": "ssl_endpoint_identification_algorithm",
    "KAFKA_SSL_TRUSTSTORE_LOCATION": "ssl_truststore_location",
    "KAFKA_SSL_TRUSTSTORE_PASSWORD": "ssl_truststore_password",
    "KAFKA_ORDERS_TOPIC": "orders_topic",
}


@dataclass
class KafkaSettings:
    """Kafka connection settings.

    Only bootstrap_servers and group_id are required, and neither is checked
    here: a missing value is reported when a connection is first opened.
    None means "not configured", which matters for the SSL options
    (an unset endpoint identification algorithm disables hostname
    verification; an unset trust store enables the bundled CA fallback).
    """

    bootstrap_servers: str = ""
    group_id: str = ""
    security_protocol: str = "PLAINTEXT"

    # SASL
    sasl_mechanism: Optional[str] = None
    sasl_jaas_config: Optional[str] = None

    # SSL
    ssl_endpoint_identification_algorithm: Optional[str] = None
    ssl_truststore_location: Optional[str] = None
    ssl_truststore_password: Optional[str] = None

    orders_topic: str = "orders"

    def __post_init__(self) -> None:
        # YAML may list brokers
        if isinstance(self.bootstrap_servers, (list, tuple)):
            self.bootstrap_servers = ",".join(self.bootstrap_servers)
        self.security_protocol = (self.security_protocol or "PLAINTEXT").upper()
        if self.security_protocol not in SECURITY_PROTOCOLS:
            raise ConfigurationError(
                f"Unsupported security protocol {self.security_protocol!r}",
                context={"allowed": list(SECURITY_PROTOCOLS)},
            )

    @property
    def uses_ssl(self) -> bool:
        return "SSL" in self.security_protocol

    @property
    def uses_sasl(self) -> bool:
        return self.security_protocol.startswith("SASL")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KafkaSettings":
        """Build settings from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls) -> "KafkaSettings":
        """Load configuration from environment variables.

        Environment variables:
            KAFKA_BOOTSTRAP_SERVERS: Kafka broker addresses
            KAFKA_CONSUMER_GROUP_ID: Consumer group for the order consumer
            KAFKA_SECURITY_PROTOCOL: PLAINTEXT (default), SSL, SASL_PLAINTEXT, SASL_SSL
            KAFKA_SASL_MECHANISM: e.g. PLAIN, SCRAM-SHA-256
            KAFKA_SASL_JAAS_CONFIG: credential string, passed through verbatim
            KAFKA_SSL_ENDPOINT_IDENTIFICATION_ALGORITHM: "https" to verify
                hostnames (unset or empty disables verification)
            KAFKA_SSL_TRUSTSTORE_LOCATION: trust store path or resource:<name>
            KAFKA_SSL_TRUSTSTORE_PASSWORD: trust store password
            KAFKA_ORDERS_TOPIC: orders (default)

        Raises:
            ConfigurationError: If the security protocol is not recognized
        """
        return cls.from_dict(_env_overrides())


def _env_overrides() -> Dict[str, Any]:
    return {
        field_name: os.environ[env_name]
        for env_name, field_name in ENV_VARS.items()
        if env_name in os.environ
    }


def load_config(config_path: Optional[Path] = None) -> KafkaSettings:
    """Load settings from the `kafka:` section of a YAML file plus environment.

    Environment variables take precedence over file values. A missing file is
    not an error; the environment alone is used.

    Args:
        config_path: YAML file path (default: src/config.yaml)

    Raises:
        ConfigurationError: If the file cannot be parsed or holds invalid values
    """
    config_path = config_path or DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Could not parse config file {config_path}", cause=e
            ) from e
        kafka_section = loaded.get("kafka") or {}
        if not isinstance(kafka_section, dict):
            raise ConfigurationError(
                f"'kafka' section in {config_path} must be a mapping"
            )
        data.update(kafka_section)

    data.update(_env_overrides())
    return KafkaSettings.from_dict(data)
