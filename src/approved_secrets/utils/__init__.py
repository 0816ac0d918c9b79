"""
Utils package - Utility modules for approved-secrets functionality.

Contains helper modules for:
- Vault API interactions and circuit breaking
- Caller identity resolution
- Identity template rendering of secret data
- Slack notifications
"""

from approved_secrets.utils.identity import IdentityResolver, VaultIdentityResolver
from approved_secrets.utils.slack import SlackNotifier
from approved_secrets.utils.vault_client import VaultClient

__all__ = [
    "IdentityResolver",
    "SlackNotifier",
    "VaultClient",
    "VaultIdentityResolver",
]
