"""Credential protection."""

from manus_relay.security.vault import CredentialVault, build_vault

__all__ = ["CredentialVault", "build_vault"]
