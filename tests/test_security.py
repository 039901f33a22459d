from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from jose import jwt

from attendance_engine.errors import ApiError
from attendance_engine.models import EmployeeRole
from attendance_engine.security import decode_token, identity_from_claims
from attendance_engine.settings import Settings

TEST_SETTINGS = Settings(jwt_secret="test-secret")


def make_token(
    sub: str = "42",
    role: str = "ADMIN",
    branch_id: int | None = None,
    *,
    secret: str = "test-secret",
    expires_in: timedelta = timedelta(minutes=5),
) -> str:
    claims: dict[str, object] = {
        "sub": sub,
        "role": role,
        "iss": TEST_SETTINGS.jwt_issuer,
        "aud": TEST_SETTINGS.jwt_audience,
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    if branch_id is not None:
        claims["branch_id"] = branch_id
    return jwt.encode(claims, secret, algorithm="HS256")


@patch("attendance_engine.security.get_settings", return_value=TEST_SETTINGS)
class TokenDecodeTests(unittest.TestCase):
    def test_valid_token_yields_identity(self, _settings) -> None:  # type: ignore[no-untyped-def]
        identity = identity_from_claims(decode_token(make_token(role="branch_manager", branch_id=3)))
        self.assertEqual(identity.user_id, 42)
        self.assertEqual(identity.role, EmployeeRole.BRANCH_MANAGER)
        self.assertEqual(identity.branch_id, 3)
        self.assertFalse(identity.is_admin)

    def test_wrong_secret_is_rejected(self, _settings) -> None:  # type: ignore[no-untyped-def]
        with self.assertRaises(ApiError) as ctx:
            decode_token(make_token(secret="other-secret"))
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")

    def test_expired_token_is_rejected(self, _settings) -> None:  # type: ignore[no-untyped-def]
        with self.assertRaises(ApiError):
            decode_token(make_token(expires_in=timedelta(minutes=-1)))

    def test_unknown_role_is_rejected(self, _settings) -> None:  # type: ignore[no-untyped-def]
        with self.assertRaises(ApiError):
            identity_from_claims(decode_token(make_token(role="ROOT")))

    def test_non_numeric_subject_is_rejected(self, _settings) -> None:  # type: ignore[no-untyped-def]
        with self.assertRaises(ApiError):
            identity_from_claims(decode_token(make_token(sub="abc")))

    def test_missing_role_defaults_to_employee(self, _settings) -> None:  # type: ignore[no-untyped-def]
        identity = identity_from_claims({"sub": "7"})
        self.assertEqual(identity.role, EmployeeRole.EMPLOYEE)
        self.assertIsNone(identity.branch_id)


if __name__ == "__main__":
    unittest.main()
