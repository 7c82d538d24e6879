#!/usr/bin/env python3
"""Production entry point: gevent WSGI server with WebSocket support.

Listens on ``PIFACE_BIND``:``PIFACE_PORT`` (default 0.0.0.0:8088). Remote
sessions and running transfers are closed on SIGTERM / SIGINT.
"""

from gevent import monkey

monkey.patch_all()

import os  # noqa: E402
import signal  # noqa: E402

from gevent import pywsgi  # noqa: E402
from geventwebsocket.handler import WebSocketHandler  # noqa: E402

from app import create_app  # noqa: E402
from services.logging_setup import core_log  # noqa: E402


def _listen_address() -> tuple:
    host = (os.environ.get("PIFACE_BIND") or "0.0.0.0").strip() or "0.0.0.0"
    try:
        port = int((os.environ.get("PIFACE_PORT") or "8088").strip())
    except ValueError:
        port = 8088
    return host, port


def main() -> None:
    app = create_app()
    fm = app.extensions["file_manager"]
    address = _listen_address()
    server = pywsgi.WSGIServer(address, app, handler_class=WebSocketHandler)

    def _shutdown(signum, _frame) -> None:
        core_log("info", "server.stop", signal=signum)
        server.stop(timeout=5)

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    core_log("info", "server.start", host=address[0], port=address[1])
    try:
        server.serve_forever()
    finally:
        fm.shutdown()


if __name__ == "__main__":
    main()
