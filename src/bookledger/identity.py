"""Caller identity: Ed25519 JWT verification into an opaque identity string."""

from __future__ import annotations

import jwt
from cryptography.hazmat.primitives.serialization import load_pem_public_key


def normalize_public_key(raw: str) -> str:
    """Accept a bare base64 key string or full PEM and return valid PEM.

    Hosts can configure the identity provider's key as just the base64
    body (e.g. ``MCowBQYDK2VwAyEA...``) without PEM headers.
    """
    stripped = raw.strip()
    if stripped.startswith("-----"):
        return stripped
    return f"-----BEGIN PUBLIC KEY-----\n{stripped}\n-----END PUBLIC KEY-----"


def key_fingerprint(raw: str) -> str:
    """Return last 8 chars of the base64 key body for display."""
    stripped = raw.strip()
    if stripped.startswith("-----"):
        lines = [ln for ln in stripped.splitlines() if not ln.startswith("-----")]
        b64 = "".join(lines).strip()
    else:
        b64 = stripped
    return b64[-8:] if len(b64) >= 8 else b64


class IdentityError(Exception):
    """Raised when an identity token fails verification."""


def verify_identity_token(
    token: str,
    public_key_pem: str,
    *,
    audience: str | None = None,
) -> str:
    """Verify an identity token and return the caller identity it names.

    Args:
        token: EdDSA-signed JWT issued by the authentication provider.
        public_key_pem: The provider's Ed25519 public key, bare base64 or PEM.
        audience: When set, the token's ``aud`` claim must match.

    Returns:
        The ``sub`` claim. The ledger treats it as an opaque token and only
        compares it for equality.

    Raises:
        IdentityError: On a missing, invalid, expired or tampered token.
    """
    if not token:
        raise IdentityError("An identity token is required.")

    pem = normalize_public_key(public_key_pem)
    try:
        public_key = load_pem_public_key(pem.encode())
    except (ValueError, TypeError) as e:
        raise IdentityError(f"Invalid identity public key: {e}") from e

    options = {"require": ["sub", "exp"]}
    try:
        claims = jwt.decode(
            token,
            public_key,
            algorithms=["EdDSA"],
            audience=audience,
            options=options,
        )
    except jwt.ExpiredSignatureError as e:
        raise IdentityError("Identity token has expired.") from e
    except jwt.InvalidSignatureError as e:
        raise IdentityError("Identity token signature is invalid; possible tampering.") from e
    except jwt.InvalidAudienceError as e:
        raise IdentityError("Identity token was issued for a different audience.") from e
    except jwt.MissingRequiredClaimError as e:
        raise IdentityError(f"Identity token missing {e.claim} claim.") from e
    except jwt.DecodeError as e:
        raise IdentityError(f"Identity token could not be decoded: {e}") from e
    except jwt.InvalidTokenError as e:
        raise IdentityError(f"Invalid identity token: {e}") from e

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise IdentityError("Identity token has an empty sub claim.")
    return subject
