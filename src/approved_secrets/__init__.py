"""
Approved Secrets - a multi-party approval gate in front of a secrets host.

This package releases high-privilege secrets only after enough distinct,
authorized approvers have signed off on a request:
- Named approval policies (roles) with bound requesters and approvers
- Nonce-addressed requests with sliding expiry
- One-shot issuance against a downstream Vault path
- Lease revocation hooks that reverse the downstream grant
"""

__version__ = "0.1.0"
