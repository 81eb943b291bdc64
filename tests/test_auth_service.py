from datetime import timedelta

from peercall.services.auth_service import create_access_token, decode_token, username_from_claims
from tests.helpers import ALICE


def test_token_round_trip():
    token = create_access_token(ALICE, username="Alice")
    claims = decode_token(token)

    assert claims["sub"] == ALICE
    assert username_from_claims(claims) == "Alice"


def test_username_defaults_to_local_part():
    claims = decode_token(create_access_token(ALICE))
    assert username_from_claims(claims) == "alice"


def test_expired_token():
    token = create_access_token(ALICE, expires_delta=timedelta(seconds=-5))
    assert decode_token(token) is None


def test_garbage_token():
    assert decode_token("not-a-jwt") is None
