#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Launcher for the Research Vault API.
Applies ProxyFix when running behind a reverse proxy and starts the
background maintenance task.
"""

import os
import sys
from werkzeug.middleware.proxy_fix import ProxyFix

from vault_be import app, DB_PATH, HOST, PORT, STORAGE_BACKEND, start_maintenance_thread

try:
    from config import USE_PROXY_FIX
except ImportError:
    USE_PROXY_FIX = True

DEBUG = os.environ.get("VAULT_DEBUG", "false").lower() == "true"
USE_PROXY_FIX = os.environ.get("VAULT_USE_PROXY_FIX", str(USE_PROXY_FIX)).lower() == "true"


def apply_proxy_fix(flask_app):
    """Trust one layer of X-Forwarded-* headers (nginx in front of the API)."""
    flask_app.wsgi_app = ProxyFix(
        flask_app.wsgi_app,
        x_for=1,
        x_proto=1,
        x_host=1,
        x_prefix=1
    )
    return flask_app


def main():
    print("=" * 60)
    print("Research Vault")
    print("=" * 60)
    print(f"Database: {DB_PATH}")
    print(f"Storage backend: {STORAGE_BACKEND}")
    print(f"Debug Mode: {DEBUG}")
    print(f"Reverse Proxy Mode: {USE_PROXY_FIX}")
    print("=" * 60)

    if USE_PROXY_FIX:
        apply_proxy_fix(app)

    start_maintenance_thread()

    try:
        app.run(
            host=HOST,
            port=PORT,
            debug=DEBUG,
            use_reloader=False,
            threaded=True
        )
    except KeyboardInterrupt:
        print("\nShutting down...")
        sys.exit(0)


if __name__ == "__main__":
    main()
