# backend/bizdash/serve.py
"""
Process entry point (`bizdash-serve`).

Reads HOST, PORT, RELOAD, LOG_LEVEL and the optional SSL_CERTFILE /
SSL_KEYFILE pair from the environment and runs the app under uvicorn.
"""

import logging
import os
from typing import Any, Dict, Mapping, Optional

import uvicorn

_LOG_LEVELS = {"critical", "error", "warning", "info", "debug"}
_TRUTHY = {"1", "true", "yes", "on"}


def server_options(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Build the uvicorn keyword arguments from the environment."""
    env = os.environ if environ is None else environ

    try:
        port = int(env.get("PORT", "8000"))
    except ValueError:
        port = 8000

    log_level = env.get("LOG_LEVEL", "info").lower()
    if log_level not in _LOG_LEVELS:
        log_level = "info"

    options: Dict[str, Any] = {
        "host": env.get("HOST", "0.0.0.0"),
        "port": port,
        "reload": env.get("RELOAD", "false").lower() in _TRUTHY,
        "log_level": log_level,
        "proxy_headers": True,
    }

    certfile = env.get("SSL_CERTFILE")
    keyfile = env.get("SSL_KEYFILE")
    if bool(certfile) != bool(keyfile):
        raise RuntimeError("SSL_CERTFILE and SSL_KEYFILE must be set together.")
    if certfile:
        options["ssl_certfile"] = certfile
        options["ssl_keyfile"] = keyfile
    return options


def main() -> None:
    options = server_options()
    logging.basicConfig(
        level=options["log_level"].upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("bizdash.main:app", **options)


if __name__ == "__main__":
    main()
