import os

from starlette.requests import Request

os.environ.setdefault("SKIP_MIGRATIONS", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from app.core.config import settings  # noqa: E402
from app.core.request_meta import extract_client_ip  # noqa: E402


def _make_request(headers=None, client_host="203.0.113.10"):
    raw_headers = []
    if headers:
        raw_headers = [
            (k.lower().encode("ascii"), v.encode("ascii")) for k, v in headers.items()
        ]
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/track/redirect",
        "headers": raw_headers,
        "client": (client_host, 12345),
        "server": ("testserver", 80),
        "scheme": "http",
        "query_string": b"",
        "root_path": "",
    }
    return Request(scope)


def test_extract_client_ip_direct_connection(monkeypatch):
    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", False)
    req = _make_request(headers={"X-Forwarded-For": "1.1.1.1"}, client_host="203.0.113.10")
    assert extract_client_ip(req) == "203.0.113.10"


def test_extract_client_ip_prefers_first_public_forwarded_address(monkeypatch):
    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", True)
    monkeypatch.setattr(settings, "TRUSTED_IP_HEADERS", ["X-Forwarded-For"])
    req = _make_request(
        headers={"X-Forwarded-For": "10.0.0.7, 8.8.8.8, 10.0.0.5"},
        client_host="10.0.0.5",
    )
    assert extract_client_ip(req) == "8.8.8.8"


def test_extract_client_ip_uses_header_order(monkeypatch):
    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", True)
    monkeypatch.setattr(settings, "TRUSTED_IP_HEADERS", ["CF-Connecting-IP", "X-Real-IP"])
    req = _make_request(headers={"X-Real-IP": "9.9.9.9", "CF-Connecting-IP": "1.0.0.1"})
    assert extract_client_ip(req) == "1.0.0.1"


def test_extract_client_ip_falls_back_on_garbage(monkeypatch):
    monkeypatch.setattr(settings, "TRUST_PROXY_HEADERS", True)
    monkeypatch.setattr(settings, "TRUSTED_IP_HEADERS", ["X-Real-IP"])
    req = _make_request(headers={"X-Real-IP": "not-an-ip"}, client_host="198.51.100.4")
    assert extract_client_ip(req) == "198.51.100.4"
