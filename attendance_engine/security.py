from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from attendance_engine.errors import ApiError
from attendance_engine.models import EmployeeRole
from attendance_engine.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class Identity:
    user_id: int
    role: EmployeeRole
    branch_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == EmployeeRole.ADMIN


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc
    return payload


def identity_from_claims(claims: dict[str, Any]) -> Identity:
    try:
        user_id = int(claims.get("sub"))
    except (TypeError, ValueError) as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.") from exc

    raw_role = str(claims.get("role") or EmployeeRole.EMPLOYEE.value).upper()
    try:
        role = EmployeeRole(raw_role)
    except ValueError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token role is invalid.") from exc

    branch_raw = claims.get("branch_id")
    branch_id = int(branch_raw) if isinstance(branch_raw, (int, str)) and str(branch_raw).isdigit() else None
    return Identity(user_id=user_id, role=role, branch_id=branch_id)


def get_optional_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Identity | None:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    identity = identity_from_claims(decode_token(credentials.credentials))
    request.state.actor_id = identity.user_id
    return identity


def require_identity(identity: Identity | None = Depends(get_optional_identity)) -> Identity:
    if identity is None:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")
    return identity


def require_roles(*roles: EmployeeRole) -> Callable[..., Identity]:
    if not roles:
        raise ValueError("At least one role is required.")
    allowed = frozenset(roles)

    def _dependency(identity: Identity = Depends(require_identity)) -> Identity:
        if identity.role not in allowed:
            raise ApiError(status_code=403, code="INSUFFICIENT_ROLE", message="Insufficient permissions.")
        return identity

    return _dependency


require_manager = require_roles(EmployeeRole.ADMIN, EmployeeRole.BRANCH_MANAGER)
require_admin = require_roles(EmployeeRole.ADMIN)
