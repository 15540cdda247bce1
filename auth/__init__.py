"""
auth — Request authentication.

Provides:
  • Signed bearer token creation & verification for end users
  • ``get_current_user_id`` FastAPI dependency
  • ``require_cron_secret`` dependency for scheduler-only endpoints
"""
