"""
Trust material resolution for TLS connections to the broker.

A configured trust-store reference may be:
    - empty: synthesize a PKCS#12 trust store from the bundled CA certificate
      (kafka-ca.crt) if one ships with the package
    - "resource:<name>": a trust store bundled in order_relay.resources,
      extracted to a private temp file
    - anything else: a filesystem path, used as-is

Resolution never raises. Any failure is logged as a warning and yields None,
in which case the Kafka client falls back to the system trust chain.
"""

import logging
import threading
from dataclasses import dataclass, field
from importlib.resources import files
from importlib.resources.abc import Traversable
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from order_relay.common.exceptions import TrustMaterialError
from order_relay.common.logging import log_exception, log_with_context
from order_relay.security.tempfiles import TempFileArena, default_arena

logger = logging.getLogger(__name__)

RESOURCE_PACKAGE = "order_relay.resources"
RESOURCE_PREFIX = "resource:"

# Bundled CA certificate used when no trust store is configured
FALLBACK_CERTIFICATE = "kafka-ca.crt"
FALLBACK_SECRET = "changeit"
FALLBACK_ALIAS = b"kafka-ca"

TRUSTSTORE_PREFIX = "kafka-truststore-"
PEM_SUFFIXES = (".pem", ".crt", ".cer")
# Java keystores; librdkafka reads PKCS#12 and PEM only
JKS_SUFFIX = ".jks"


@dataclass(frozen=True)
class TrustMaterial:
    """A trust store on disk and the secret that unlocks it."""

    keystore_path: str
    unlock_secret: str = field(repr=False)


def build_truststore(certificate_pem: bytes, secret: str) -> bytes:
    """
    Build a PKCS#12 trust store holding a single CA certificate.

    Args:
        certificate_pem: PEM-encoded X.509 certificate
        secret: Password protecting the store

    Returns:
        Serialized PKCS#12 bytes

    Raises:
        TrustMaterialError: If the certificate cannot be parsed
    """
    try:
        certificate = x509.load_pem_x509_certificate(certificate_pem)
    except ValueError as e:
        raise TrustMaterialError("Malformed CA certificate", cause=e) from e

    return pkcs12.serialize_key_and_certificates(
        name=FALLBACK_ALIAS,
        key=None,
        cert=None,
        cas=[certificate],
        encryption_algorithm=serialization.BestAvailableEncryption(secret.encode("utf-8")),
    )


def load_trust_certificates(path: str, secret: Optional[str]) -> List[x509.Certificate]:
    """
    Read the CA certificates out of a trust store.

    PEM bundles (.pem/.crt/.cer) are read directly; anything else is treated
    as PKCS#12 unlocked with `secret`.

    Raises:
        TrustMaterialError: If the file is missing, locked with another
            secret, or holds no certificates
    """
    store = Path(path)
    try:
        data = store.read_bytes()
    except OSError as e:
        raise TrustMaterialError(f"Cannot read trust store {path}", cause=e) from e

    try:
        if store.suffix.lower() in PEM_SUFFIXES:
            certificates = x509.load_pem_x509_certificates(data)
        else:
            password = secret.encode("utf-8") if secret else None
            _, certificate, additional = pkcs12.load_key_and_certificates(data, password)
            certificates = ([certificate] if certificate else []) + list(additional)
    except ValueError as e:
        raise TrustMaterialError(f"Cannot load trust store {path}", cause=e) from e

    if not certificates:
        raise TrustMaterialError(f"Trust store {path} holds no certificates")
    return certificates


class TrustMaterialResolver:
    """
    Turns a (location, password) pair into TrustMaterial, once per pair.

    Results are cached for the life of the resolver, so repeated builds of
    producer and consumer configs share one synthesized file. Different
    references never share a file.

    Usage:
        >>> resolver = TrustMaterialResolver()
        >>> material = resolver.resolve(None, None)
        >>> if material:
        ...     print(material.keystore_path)
    """

    def __init__(
        self,
        resources: Optional[Traversable] = None,
        arena: Optional[TempFileArena] = None,
    ):
        """
        Args:
            resources: Root of bundled resources (default: order_relay.resources)
            arena: Owner of synthesized temp files (default: process-wide arena)
        """
        self._resources = resources if resources is not None else files(RESOURCE_PACKAGE)
        self._arena = arena or default_arena()
        self._cache: Dict[Tuple[Optional[str], Optional[str]], Optional[TrustMaterial]] = {}
        self._lock = threading.Lock()

    def resolve(
        self, location: Optional[str], password: Optional[str]
    ) -> Optional[TrustMaterial]:
        """
        Resolve a configured trust-store reference.

        Args:
            location: Filesystem path, "resource:<name>", or empty/None
            password: Configured trust-store password, or empty/None

        Returns:
            TrustMaterial, or None to use the system trust chain
        """
        key = (location or None, password or None)
        with self._lock:
            if key not in self._cache:
                self._cache[key] = self._resolve(location, password)
            return self._cache[key]

    def _resolve(
        self, location: Optional[str], password: Optional[str]
    ) -> Optional[TrustMaterial]:
        if not location:
            if password:
                # An explicit password without a location is left alone rather
                # than silently replaced by the bundled CA.
                logger.info(
                    "Trust store password set without a location, using default trust store"
                )
                return None
            return self._synthesize_from_bundled_certificate()

        if location.lower().endswith(JKS_SUFFIX):
            log_with_context(
                logger,
                logging.WARNING,
                "JKS trust store cannot be read by the Kafka client, system trust will be used. "
                "Convert it to PKCS#12 (.p12) or PEM",
                truststore_location=location,
            )

        if location.startswith(RESOURCE_PREFIX):
            return self._extract_resource(location[len(RESOURCE_PREFIX):], password)

        return TrustMaterial(keystore_path=location, unlock_secret=password or "")

    def _resource(self, name: str) -> Traversable:
        node = self._resources
        for part in PurePosixPath(name.strip("/")).parts:
            node = node.joinpath(part)
        return node

    def _synthesize_from_bundled_certificate(self) -> Optional[TrustMaterial]:
        certificate = self._resource(FALLBACK_CERTIFICATE)
        try:
            if not certificate.is_file():
                logger.debug("No bundled CA certificate, using default trust store")
                return None

            truststore = build_truststore(certificate.read_bytes(), FALLBACK_SECRET)
            path = self._arena.write(truststore, prefix=TRUSTSTORE_PREFIX, suffix=".p12")
        except Exception as e:
            log_exception(
                logger,
                e,
                "Could not build trust store from bundled CA certificate, using default trust store",
                level=logging.WARNING,
                resource=FALLBACK_CERTIFICATE,
            )
            return None

        log_with_context(
            logger,
            logging.INFO,
            "Built trust store from bundled CA certificate",
            resource=FALLBACK_CERTIFICATE,
            keystore_path=str(path),
        )
        return TrustMaterial(keystore_path=str(path), unlock_secret=FALLBACK_SECRET)

    def _extract_resource(
        self, name: str, password: Optional[str]
    ) -> Optional[TrustMaterial]:
        resource = self._resource(name)
        try:
            if not resource.is_file():
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Trust store resource not found",
                    resource=name,
                )
                return None

            suffix = PurePosixPath(name).suffix or ".p12"
            path = self._arena.write(
                resource.read_bytes(), prefix=TRUSTSTORE_PREFIX, suffix=suffix
            )
        except Exception as e:
            log_exception(
                logger,
                e,
                "Could not load trust store from bundled resources",
                level=logging.WARNING,
                resource=name,
            )
            return None

        log_with_context(
            logger,
            logging.INFO,
            "Extracted bundled trust store",
            resource=name,
            keystore_path=str(path),
        )
        return TrustMaterial(keystore_path=str(path), unlock_secret=password or "")


__all__ = [
    "TrustMaterial",
    "TrustMaterialResolver",
    "build_truststore",
    "load_trust_certificates",
    "FALLBACK_SECRET",
    "RESOURCE_PREFIX",
]
