"""Merchant bearer tokens."""

from .jwt import JWTService, oauth2_scheme

__all__ = ["JWTService", "oauth2_scheme"]
