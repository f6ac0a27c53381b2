"""
chains/ - Blockchain interaction layer.

Modules:
- endpoints: Per-chain RPC endpoint pool with backoff
- providers: CometBFT RPC client adapter
- signing: Validator signing determination strategies
"""

from chains.endpoints import EndpointPool, RpcEndpoint
from chains.providers import CometRPCClient, NodeStatus, parse_status
from chains.signing import (
    AutoSigningSource,
    CommitSignatureSource,
    SigningSource,
    ValidatorSetSource,
    build_signing_source,
)

__all__ = [
    "AutoSigningSource",
    "CometRPCClient",
    "CommitSignatureSource",
    "EndpointPool",
    "NodeStatus",
    "RpcEndpoint",
    "SigningSource",
    "ValidatorSetSource",
    "build_signing_source",
    "parse_status",
]
