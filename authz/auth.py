"""
authz.auth
~~~~~~~~~~
Caller identity from the bearer credential AppSync hands the authorizer.

The web client sends ``Token: <cognito id token>``.  Only the claims are
read, with ``jose.jwt.get_unverified_claims``: the signature was already checked by Cognito when the token was
issued and the credential reaches us over AppSync, so nothing here
re-validates it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from jose import JWTError, jwt

_SCHEMES = ("token:", "bearer ")


class CredentialDecodeError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class Claims:
    cognito_username: Optional[str] = None
    username: Optional[str] = None
    sub: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Claims":
        return cls(
            cognito_username=_text(payload.get("cognito:username")),
            username=_text(payload.get("username")),
            sub=_text(payload.get("sub")),
        )

    @property
    def user_id(self) -> Optional[str]:
        """First usable identifier: cognito username, username, then sub."""
        return self.cognito_username or self.username or self.sub


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _strip_scheme(credential: str) -> str:
    raw = credential.strip()
    for scheme in _SCHEMES:
        if raw.lower().startswith(scheme):
            return raw[len(scheme):].strip()
    return raw


def decode_claims(credential: str | None) -> Claims:
    if not credential or not isinstance(credential, str):
        raise CredentialDecodeError("Missing credential")

    # jose rejects a malformed header, a claims segment that is not JSON,
    # and claims that are not an object
    try:
        payload = jwt.get_unverified_claims(_strip_scheme(credential))
    except JWTError as e:
        raise CredentialDecodeError(str(e)) from e
    return Claims.from_payload(payload)


def extract_identity(credential: str | None) -> Optional[str]:
    try:
        return decode_claims(credential).user_id
    except CredentialDecodeError:
        return None
