"""
Unit tests for the token issuer.
"""

from datetime import timedelta

import pytest
from jose import jwt

from backoffice.app.core.config import settings
from backoffice.app.core.exceptions import InvalidToken
from backoffice.app.core.jwt import ACCESS, REFRESH, TokenIssuer


@pytest.fixture
def issuer():
    return TokenIssuer()


def test_access_token_round_trip(issuer):
    token = issuer.create_token(42, ACCESS)
    claims = issuer.verify(token, ACCESS)
    assert claims["user_id"] == 42
    assert claims["sub"] == "42"
    assert claims["type"] == ACCESS


def test_access_token_rejected_as_refresh(issuer):
    pair = issuer.create_pair(7)
    with pytest.raises(InvalidToken):
        issuer.verify(pair.access_token, REFRESH)


def test_refresh_token_rejected_as_access(issuer):
    pair = issuer.create_pair(7)
    with pytest.raises(InvalidToken):
        issuer.verify(pair.refresh_token, ACCESS)


def test_wrong_type_claim_with_right_secret_is_rejected(issuer):
    # Signed with the access secret but claiming to be a refresh token
    forged = jwt.encode(
        {"sub": "7", "user_id": 7, "type": REFRESH},
        settings.secret_key,
        algorithm=settings.algorithm,
    )
    with pytest.raises(InvalidToken):
        issuer.verify(forged, ACCESS)


def test_expired_token_is_rejected(issuer):
    token = issuer.create_token(1, ACCESS, expires_delta=timedelta(seconds=-1))
    with pytest.raises(InvalidToken):
        issuer.verify(token, ACCESS)


def test_tampered_token_is_rejected(issuer):
    header, _, signature = issuer.create_token(1, ACCESS).split(".")
    _, other_payload, _ = issuer.create_token(2, ACCESS).split(".")
    tampered = ".".join([header, other_payload, signature])
    with pytest.raises(InvalidToken):
        issuer.verify(tampered, ACCESS)


def test_tokens_minted_in_the_same_second_differ(issuer):
    first = issuer.create_pair(5)
    second = issuer.create_pair(5)
    assert first.access_token != second.access_token
    assert first.refresh_token != second.refresh_token

    jtis = {issuer.verify(first.access_token, ACCESS)["jti"], issuer.verify(second.access_token, ACCESS)["jti"]}
    assert len(jtis) == 2


def test_default_lifetimes(issuer):
    access = issuer.verify(issuer.create_token(3, ACCESS), ACCESS)
    refresh = issuer.verify(issuer.create_token(3, REFRESH), REFRESH)
    assert access["exp"] - access["iat"] == settings.access_token_expire_hours * 3600
    assert refresh["exp"] - refresh["iat"] == settings.refresh_token_expire_days * 86400


def test_non_integer_user_id_is_rejected(issuer):
    token = jwt.encode(
        {"sub": "x", "user_id": "x", "type": ACCESS},
        settings.secret_key,
        algorithm=settings.algorithm,
    )
    with pytest.raises(InvalidToken):
        issuer.verify(token, ACCESS)
