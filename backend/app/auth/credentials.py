"""
API Key Credentials

Issues ``exp_<prefix>_<secret>`` tokens, hashes their secrets with bcrypt and
verifies presented secrets. The prefix is a public lookup handle; only the
bcrypt hash of the secret is ever stored.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from typing import Iterable, Optional

import bcrypt

from app.schemas.account_models import ApiScope

TOKEN_PREFIX = "exp"
PREFIX_LENGTH = 8
SECRET_LENGTH = 32
DEFAULT_ROUNDS = 12

_PREFIX_ALPHABET = string.ascii_lowercase + string.digits
_SECRET_ALPHABET = string.ascii_letters + string.digits


@dataclass(frozen=True)
class IssuedKey:
    token: str
    prefix: str
    secret: str
    hashed_secret: str


@dataclass(frozen=True)
class ParsedToken:
    prefix: str
    secret: str


def _random_string(alphabet: str, length: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def hash_secret(secret: str, rounds: int = DEFAULT_ROUNDS) -> str:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def issue(rounds: int = DEFAULT_ROUNDS) -> IssuedKey:
    """Generate a new token together with its lookup prefix and hashed secret."""
    prefix = _random_string(_PREFIX_ALPHABET, PREFIX_LENGTH)
    secret = _random_string(_SECRET_ALPHABET, SECRET_LENGTH)
    return IssuedKey(
        token=f"{TOKEN_PREFIX}_{prefix}_{secret}",
        prefix=prefix,
        secret=secret,
        hashed_secret=hash_secret(secret, rounds),
    )


def parse_token(token: Optional[str]) -> Optional[ParsedToken]:
    """Split a presented token; anything not shaped like ``exp_<prefix>_<secret>`` is None."""
    if not token:
        return None
    parts = token.strip().split("_", 2)
    if len(parts) != 3 or parts[0] != TOKEN_PREFIX:
        return None
    prefix, secret = parts[1], parts[2]
    if not prefix or not secret:
        return None
    return ParsedToken(prefix=prefix, secret=secret)


def verify(secret: str, hashed_secret: str) -> bool:
    """Check a secret against its stored hash.

    bcrypt recomputes the full hash and compares digests in constant time, so
    the runtime does not depend on where a mismatch occurs.
    """
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), hashed_secret.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def normalize_scopes(scopes: Iterable[str]) -> list[ApiScope]:
    """Map wire or storage scope strings onto known scopes, dropping the rest."""
    known = {scope.value: scope for scope in ApiScope}
    normalized: list[ApiScope] = []
    for raw in scopes:
        scope = known.get(str(raw).strip().replace(":", "_"))
        if scope is not None and scope not in normalized:
            normalized.append(scope)
    return normalized


def scopes_to_strings(scopes: Iterable[str]) -> list[str]:
    """Render stored scopes in wire form (``expenses:read``)."""
    return [scope.wire for scope in normalize_scopes(scopes)]
