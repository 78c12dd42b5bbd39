import time

import jwt
import pytest
from pydantic import SecretStr

from mw_fileannotations.config import settings

TEST_MW_TO_FA_SECRET = "test-secret-mw-to-fa-must-be-long-enough-32chars"
TEST_FA_TO_MW_SECRET = "test-secret-fa-to-mw-must-be-long-enough-32chars"

settings.jwt_mw_to_fa_secret = SecretStr(TEST_MW_TO_FA_SECRET)
settings.jwt_fa_to_mw_secret = SecretStr(TEST_FA_TO_MW_SECRET)
settings.jwt_algo = "HS256"


def create_viewer_token(
    user="TestUser",
    scopes=None,
    roles=None,
    lang=None,
    issuer="FileAnnotations",
    audience="mw-fileannotations",
    expired=False,
    secret=TEST_MW_TO_FA_SECRET,
):
    if scopes is None:
        scopes = ["annotations_edit"]
    if roles is None:
        roles = ["user"]

    now = int(time.time())
    iat = now - 3600 if expired else now
    exp = iat - 10 if expired else now + 30

    payload = {
        "iss": issuer,
        "aud": audience,
        "iat": iat,
        "exp": exp,
        "user": user,
        "roles": roles,
        "scope": scopes,
    }
    if lang is not None:
        payload["lang"] = lang
    return jwt.encode(payload, secret, algorithm="HS256")


class FakeClock:
    """Manually advanced UNIX clock."""

    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
