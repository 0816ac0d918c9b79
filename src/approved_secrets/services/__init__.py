"""
Services package - Workflow components of the approved-secrets backend.

Control flow: RoleRegistry -> RequestLedger -> ApprovalEngine ->
IssuanceEngine -> LeaseRevoker. The TokenRenewer keeps the backend's service
token alive in the background.
"""

from .approval_engine import ApprovalEngine
from .downstream import DownstreamSecretSource, VaultDownstreamSource
from .issuance_engine import IssuanceEngine
from .request_ledger import RequestLedger
from .revocation import LeaseRevoker
from .role_registry import RoleRegistry
from .token_renewer import TokenRenewer

__all__ = [
    "ApprovalEngine",
    "DownstreamSecretSource",
    "IssuanceEngine",
    "LeaseRevoker",
    "RequestLedger",
    "RoleRegistry",
    "TokenRenewer",
    "VaultDownstreamSource",
]
