from __future__ import annotations

import pytest

from bizdash import serve


def test_defaults_bind_plain_http():
    options = serve.server_options({})

    assert options == {
        "host": "0.0.0.0",
        "port": 8000,
        "reload": False,
        "log_level": "info",
        "proxy_headers": True,
    }


def test_environment_overrides_and_bad_values_fall_back():
    options = serve.server_options(
        {"HOST": "127.0.0.1", "PORT": "not-a-port", "RELOAD": "yes", "LOG_LEVEL": "LOUD"}
    )

    assert options["host"] == "127.0.0.1"
    assert options["port"] == 8000
    assert options["reload"] is True
    assert options["log_level"] == "info"


def test_tls_needs_both_certificate_and_key():
    options = serve.server_options({"SSL_CERTFILE": "/tls/cert.pem", "SSL_KEYFILE": "/tls/key.pem"})
    assert options["ssl_certfile"] == "/tls/cert.pem"
    assert options["ssl_keyfile"] == "/tls/key.pem"

    with pytest.raises(RuntimeError):
        serve.server_options({"SSL_CERTFILE": "/tls/cert.pem"})
