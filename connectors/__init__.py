"""
connectors — OAuth integration module for external services.

Provides a generic connector framework that handles:
  • OAuth2 auth-URL generation with single-use CSRF state
  • Callback handling (code → token exchange)
  • Capability-gated token refresh and best-effort revocation
  • AES-256-GCM encryption of tokens at rest
  • Per-provider activity fetch adapters

Each provider (GitHub, Notion, Slack, Google Calendar) is a subclass of
BaseConnector.
"""
