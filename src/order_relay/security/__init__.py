"""TLS trust material and private temp files for broker connections."""

from order_relay.security.tempfiles import TempFileArena, default_arena
from order_relay.security.truststore import (
    TrustMaterial,
    TrustMaterialResolver,
    build_truststore,
    load_trust_certificates,
)

__all__ = [
    "TempFileArena",
    "default_arena",
    "TrustMaterial",
    "TrustMaterialResolver",
    "build_truststore",
    "load_trust_certificates",
]
