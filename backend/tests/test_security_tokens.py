from datetime import timedelta

from jose import jwt

from app.config import settings
from app.core.security import create_access_token, decode_access_token


def test_access_token_round_trip():
    token = create_access_token({"sub": "7", "role": "Admin"})
    payload = decode_access_token(token)
    assert payload is not None
    assert payload["sub"] == "7"
    assert payload["role"] == "Admin"
    assert payload["typ"] == "access"


def test_access_token_rejects_other_typ():
    token = jwt.encode({"sub": "1", "typ": "refresh"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    assert decode_access_token(token) is None


def test_access_token_rejects_foreign_signature():
    token = jwt.encode({"sub": "1", "role": "Admin"}, "some-other-key", algorithm=settings.ALGORITHM)
    assert decode_access_token(token) is None


def test_expired_access_token_is_rejected():
    token = create_access_token({"sub": "3"}, expires_delta=timedelta(seconds=-10))
    assert decode_access_token(token) is None
