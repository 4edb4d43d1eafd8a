"""Sample Marble: an HTTP server greeting with its command-line arguments."""

from __future__ import annotations

import sys
from collections.abc import Sequence
from wsgiref.simple_server import make_server

_PORT = 8080


def _greeting(args: Sequence[str]) -> bytes:
    return f"Hello world!\nCommandline arguments: [{' '.join(args)}]\n".encode()


def _make_app(args: Sequence[str] | None):
    def app(environ, start_response):
        body = _greeting(sys.argv if args is None else args)
        start_response(
            "200 OK",
            [("Content-Type", "text/plain; charset=utf-8"), ("Content-Length", str(len(body)))],
        )
        return [body]

    return app


def hello_app(environ, start_response):
    """WSGI application answering every request with a greeting and ``sys.argv``."""
    return _make_app(None)(environ, start_response)


def main(argv: Sequence[str] | None = None) -> None:
    """Serve the greeting on port 8080; ``argv`` replaces ``sys.argv`` in the reply."""
    app = hello_app if argv is None else _make_app(list(argv))
    print("listening ...")
    try:
        with make_server("", _PORT, app) as server:
            server.serve_forever()
    except OSError as err:
        print(err)


if __name__ == "__main__":
    main()