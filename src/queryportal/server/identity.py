"""Identity providers: resolve a bearer credential to an identity and roles."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Protocol, Union, runtime_checkable

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from queryportal.common.errors import AuthenticationError
from queryportal.domain.models import UserRole, role_value
from queryportal.settings import Settings


@dataclass(frozen=True)
class Identity:
    user_id: str
    roles: frozenset[str]
    claims: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, user_id: str, roles: Iterable[Union[UserRole, str]], **claims: Any) -> "Identity":
        return cls(user_id=user_id, roles=frozenset(role_value(r) for r in roles), claims=claims)

    @property
    def is_anonymous(self) -> bool:
        return self.roles == {UserRole.PUBLIC.value}


ANONYMOUS = Identity(user_id="anonymous", roles=frozenset({UserRole.PUBLIC.value}))


@runtime_checkable
class IdentityProvider(Protocol):
    """Return the identity for a token, or None when unauthenticated.

    Providers may raise AuthenticationError / PermissionDeniedError for
    credentials that are present but unusable.
    """

    def resolve(self, token: Optional[str]) -> Optional[Identity]: ...


class StaticIdentityProvider:
    """Token -> identity map; for tests and local development."""

    def __init__(self, identities: Optional[Mapping[str, Identity]] = None):
        self._identities = dict(identities or {})

    def add(self, token: str, identity: Identity) -> None:
        self._identities[token] = identity

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        return self._identities.get(token)


class JwtIdentityProvider:
    """Verifies HS*-signed bearer tokens with python-jose.

    ``sub`` becomes the user id and the ``roles`` claim the role set.
    """

    def __init__(self, secret: str, algorithm: str = "HS256"):
        self._secret = secret
        self._algorithm = algorithm

    @classmethod
    def from_settings(cls, settings: Settings) -> "JwtIdentityProvider":
        return cls(settings.jwt_secret.get_secret_value(), settings.jwt_algorithm)

    def issue_token(
        self,
        user_id: str,
        roles: Iterable[Union[UserRole, str]],
        expires_in: float = 3600.0,
        **claims: Any,
    ) -> str:
        now = int(time.time())
        payload = {
            **claims,
            "sub": user_id,
            "roles": [role_value(r) for r in roles],
            "iat": now,
            "exp": now + int(expires_in),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise AuthenticationError("Token expired") from exc
        except JWTError as exc:
            raise AuthenticationError("Invalid token") from exc

        user_id = claims.get("sub")
        if not user_id:
            raise AuthenticationError("Token has no subject")
        roles = claims.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        return Identity(user_id=str(user_id), roles=frozenset(str(r) for r in roles), claims=claims)


def bearer_token(headers: Mapping[str, str]) -> Optional[str]:
    auth = ""
    for key, value in headers.items():
        if key.lower() == "authorization":
            auth = value or ""
            break
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip() or None
