from .base import DiscoveryError, DiscoverySource, Signer, StreamQueryResult
from .client import DiscoveryClient, make_query_auth_canonical_json
from .signing import CommandSigner

__all__ = [
    "CommandSigner",
    "DiscoveryClient",
    "DiscoveryError",
    "DiscoverySource",
    "Signer",
    "StreamQueryResult",
    "make_query_auth_canonical_json",
]
