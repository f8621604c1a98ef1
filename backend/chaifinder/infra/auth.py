"""Identity helpers: the current-user contract and the FastAPI dependency.

Bearer JWTs are always accepted; the ``X-User-Id`` header is honoured only in
development so local tools can act as any user.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chaifinder.infra import jwt as jwt_helper
from chaifinder.settings import settings


class NotAuthenticated(Exception):
	"""Raised when an operation needs a signed-in user and there is none."""

	reason = "not_authenticated"


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	display_name: Optional[str] = None
	email: Optional[str] = None
	photo_url: Optional[str] = None


class IdentityProvider(Protocol):
	def current_user_id(self) -> Optional[str]: ...


@dataclass(slots=True)
class StaticIdentity:
	"""Identity provider bound to a fixed (possibly absent) user."""

	user_id: Optional[str] = None

	def current_user_id(self) -> Optional[str]:
		return self.user_id


def require_user_id(identity: IdentityProvider) -> str:
	user_id = identity.current_user_id()
	if not user_id:
		raise NotAuthenticated()
	return user_id


_bearer_scheme = HTTPBearer(auto_error=False)


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		# Normalise all decode failures to invalid_token for the API surface
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	name = payload.get("name") or payload.get("display_name")
	email = payload.get("email")
	picture = payload.get("picture")
	return AuthenticatedUser(
		id=str(payload["sub"]).strip(),
		display_name=str(name) if name is not None else None,
		email=str(email) if email is not None else None,
		photo_url=str(picture) if picture is not None else None,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow a simple header. In all other environments a valid
	Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)
	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id)
	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


async def get_optional_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> Optional[AuthenticatedUser]:
	"""Like get_current_user, but anonymous callers resolve to None."""
	if not credentials and not (settings.is_dev() and x_user_id):
		return None
	return await get_current_user(x_user_id=x_user_id, credentials=credentials)
