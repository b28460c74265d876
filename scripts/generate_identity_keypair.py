#!/usr/bin/env python3
"""Generate an Ed25519 keypair for book ledger caller identity.

Outputs the public key (base64 body and PEM) and the private key (PEM).
The public key is what the ledger host configures as
``identity_public_key``; the private key stays with the identity provider.

With ``--subject``, also prints a development identity token for that
subject, valid for ``--ttl`` seconds.
"""

from __future__ import annotations

import argparse
import time
import uuid

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--subject", help="caller identity to mint a dev token for")
    parser.add_argument("--audience", help="aud claim for the dev token")
    parser.add_argument("--ttl", type=int, default=3600, help="token lifetime in seconds")
    args = parser.parse_args()

    private_key = Ed25519PrivateKey.generate()
    public_pem = private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    private_pem = private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_b64 = "".join(
        ln for ln in public_pem.splitlines() if not ln.startswith("-----")
    )

    print("=== Ed25519 Keypair (Book Ledger Identity) ===")
    print()
    print("identity_public_key (share freely):")
    print(f"  {public_b64}")
    print()
    print(public_pem)
    print("private key (keep with the identity provider, never commit to git):")
    print(private_pem)

    if args.subject:
        now = int(time.time())
        claims = {
            "sub": args.subject,
            "iat": now,
            "exp": now + args.ttl,
            "jti": uuid.uuid4().hex,
        }
        if args.audience:
            claims["aud"] = args.audience
        token = jwt.encode(claims, private_key, algorithm="EdDSA")
        print(f"dev identity token for {args.subject!r} (expires in {args.ttl}s):")
        print(f"  {token}")


if __name__ == "__main__":
    main()
