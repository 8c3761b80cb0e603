"""Tests for rate-limit bucket selection."""

from starlette.requests import Request

from debtdesk.auth.jwt import create_access_token
from debtdesk.middleware.rate_limit import bucket_key


def _request(authorization: str | None = None, client=("10.0.0.7", 5000)) -> Request:
    headers = []
    if authorization is not None:
        headers.append((b"authorization", authorization.encode()))
    return Request({
        "type": "http", "method": "GET", "path": "/api/delegations",
        "headers": headers, "client": client, "query_string": b"",
    })


def test_bearer_token_buckets_by_employee():
    token = create_access_token("E001", "employee")
    assert bucket_key(_request(f"Bearer {token}")) == "debtdesk:ratelimit:emp:E001"


def test_anonymous_buckets_by_ip():
    assert bucket_key(_request()) == "debtdesk:ratelimit:ip:10.0.0.7"


def test_garbage_token_falls_back_to_ip():
    assert bucket_key(_request("Bearer not-a-jwt")) == "debtdesk:ratelimit:ip:10.0.0.7"


def test_no_client_address():
    assert bucket_key(_request(client=None)) == "debtdesk:ratelimit:ip:unknown"
