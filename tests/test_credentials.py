import json

import pytest

from c8y_fastapi.credentials import (
    Credentials,
    basic_auth_header,
    derive_key_discriminator,
    credentials_from_request,
    extract_credentials,
    forwarded_headers,
)
from c8y_fastapi.errors import UnauthorizedError

from conftest import basic, make_request


def test_basic_auth_is_split_into_tenant_user_and_password():
    creds = extract_credentials(basic("t12345/alice:secret"))

    assert creds == Credentials(tenant="t12345", user="alice", password="secret")


def test_basic_auth_splits_tenant_at_first_slash():
    creds = extract_credentials(basic("t1/u1/u2:pw"))

    assert creds.tenant == "t1"
    assert creds.user == "u1/u2"
    assert creds.password == "pw"


def test_basic_auth_password_keeps_everything_after_first_colon():
    creds = extract_credentials(basic("t1/alice:pa:ss"))

    assert creds.password == "pa:ss"


def test_bearer_token():
    assert extract_credentials("Bearer abc") == Credentials(token="abc")


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "Bearer ",
        "Basic ",
        "Digest abc",
        basic("t1alice:secret"),
        basic("t1/alice"),
        "Basic not-base64!!",
    ],
)
def test_invalid_headers_are_unauthorized(header):
    with pytest.raises(UnauthorizedError) as exc:
        extract_credentials(header)
    assert exc.value.status_code == 401


def test_discriminator_is_stable_and_ignores_unset_fields():
    creds = Credentials(tenant="t1", user="alice", password="secret")
    same = Credentials(password="secret", user="alice", tenant="t1")

    assert derive_key_discriminator(creds) == derive_key_discriminator(same)
    assert json.loads(derive_key_discriminator(creds)) == {
        "password": "secret",
        "tenant": "t1",
        "user": "alice",
    }


def test_discriminator_differs_for_different_credentials():
    first = derive_key_discriminator(Credentials(tenant="t1", user="alice", password="a"))
    second = derive_key_discriminator(Credentials(tenant="t1", user="alice", password="b"))
    token = derive_key_discriminator(Credentials(token="abc"))

    assert len({first, second, token}) == 3


def test_basic_auth_header_round_trips_through_extraction():
    creds = Credentials(tenant="t1", user="alice", password="secret")

    assert extract_credentials(basic_auth_header(creds)) == creds
    assert basic_auth_header(Credentials(token="abc")) == "Bearer abc"


def test_session_cookie_takes_precedence_over_header():
    request = make_request(basic("t1/alice:secret"), cookie="authorization=eyJabc; XSRF-TOKEN=xyz")

    assert credentials_from_request(request) == Credentials(token="eyJabc")
    assert forwarded_headers(request) == {"X-XSRF-TOKEN": "xyz"}


def test_header_is_used_without_session_cookie():
    request = make_request(basic("t1/alice:secret"), cookie="theme=dark")

    assert credentials_from_request(request).user == "alice"
    assert forwarded_headers(request) == {}


def test_request_without_header_or_cookie_is_unauthorized():
    with pytest.raises(UnauthorizedError):
        credentials_from_request(make_request())
