"""Signed JWT assertions for the service-account (JWT-bearer) grant."""

import logging
import time
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from google.auth import crypt, jwt

from drive_upload.errors import KeyImportError, SigningError

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"

# Google rejects assertions valid for longer than one hour
ASSERTION_LIFETIME_SECONDS = 3600


def load_signer(private_key_pem: str) -> crypt.Signer:
    """
    Import a PEM-encoded PKCS8 RSA private key.

    Raises:
        KeyImportError: If the key is malformed or not an RSA key
    """
    try:
        key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
    except (ValueError, TypeError) as e:
        raise KeyImportError(f"Invalid service account private key: {e}", cause=e) from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyImportError(
            f"Service account private key must be RSA, got {type(key).__name__}"
        )

    try:
        return crypt.RSASigner.from_string(private_key_pem)
    except ValueError as e:
        raise KeyImportError(f"Invalid service account private key: {e}", cause=e) from e


def build_assertion(
    service_account_email: str,
    private_key_pem: str,
    scope: str = DRIVE_SCOPE,
    audience: str = TOKEN_URI,
    now: Optional[int] = None,
) -> str:
    """
    Build and sign a JWT-bearer assertion.

    Args:
        service_account_email: Issuer (iss claim)
        private_key_pem: PKCS8 RSA private key
        scope: Space-separated OAuth scopes
        audience: Token endpoint the assertion is exchanged at
        now: Issued-at time in epoch seconds (wall clock if None)

    Returns:
        Compact JWT "header.payload.signature"

    Raises:
        KeyImportError: If the key cannot be imported
        SigningError: If the sign operation fails
    """
    signer = load_signer(private_key_pem)

    issued_at = int(time.time()) if now is None else int(now)
    payload = {
        "iss": service_account_email,
        "scope": scope,
        "aud": audience,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
    }

    try:
        assertion = jwt.encode(signer, payload)
    except Exception as e:
        raise SigningError(f"Failed to sign assertion: {e}", cause=e) from e

    logger.debug(f"Signed assertion for {service_account_email}")

    return assertion.decode("ascii")


def decode_header(assertion: str) -> Dict[str, Any]:
    return jwt.decode_header(assertion)


def decode_claims(assertion: str) -> Dict[str, Any]:
    """Claims of an assertion, without verifying its signature."""
    return jwt.decode(assertion, verify=False)
