"""
GitHub integration.

Provides:
- REST client authenticated as the app or an installation
- GitHub App registration, connection and installation diagnostics
- Webhook event handling and the smee.io webhook proxy
- OAuth login for the dashboard
"""

from .app import (
    GitHubApp,
    GitHubAppError,
    GitHubAppNotConfiguredError,
    Installation,
    InstallationNotFoundError,
    get_github_app,
    github_app,
)
from .client import (
    GitHubAPIError,
    GitHubClient,
    InstallationTokenCache,
    InvalidPrivateKeyError,
    create_app_jwt,
)
from .smee import WebhookProxy, get_webhook_proxy, webhook_proxy
from .webhooks import WebhookHandler

__all__ = [
    "GitHubApp",
    "GitHubAppError",
    "GitHubAppNotConfiguredError",
    "Installation",
    "InstallationNotFoundError",
    "get_github_app",
    "github_app",
    "GitHubAPIError",
    "GitHubClient",
    "InstallationTokenCache",
    "InvalidPrivateKeyError",
    "create_app_jwt",
    "WebhookProxy",
    "get_webhook_proxy",
    "webhook_proxy",
    "WebhookHandler",
]
