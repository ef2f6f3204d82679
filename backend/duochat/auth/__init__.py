"""Authentication module.

Provides:
    - TokenService: Issue and validate JWT access tokens.
    - current_participant: FastAPI dependency for bearer authentication.
"""
