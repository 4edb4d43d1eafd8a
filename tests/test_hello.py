import sys
from unittest import mock
from wsgiref.util import setup_testing_defaults

from marblerun import hello


def _environ():
    environ = {}
    setup_testing_defaults(environ)
    return environ


def _recorder():
    captured = {}

    def start_response(status, headers):
        captured["status"] = status
        captured["headers"] = dict(headers)

    return captured, start_response


def test_hello_app_reports_argv(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["./marble", "serve"])
    captured, start_response = _recorder()
    body = b"".join(hello.hello_app(_environ(), start_response))
    assert captured["status"] == "200 OK"
    assert body == b"Hello world!\nCommandline arguments: [./marble serve]\n"
    assert captured["headers"]["Content-Length"] == str(len(body))


def test_hello_app_follows_argv_changes(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["arg0"])
    _, start_response = _recorder()
    first = b"".join(hello.hello_app(_environ(), start_response))
    monkeypatch.setattr(sys, "argv", ["arg0", "arg1"])
    second = b"".join(hello.hello_app(_environ(), start_response))
    assert first.endswith(b"[arg0]\n")
    assert second.endswith(b"[arg0 arg1]\n")


def test_main_serves_on_port_8080(capsys):
    server = mock.MagicMock()
    server.__enter__.return_value = server
    server.serve_forever.side_effect = OSError("address already in use")
    with mock.patch.object(hello, "make_server", return_value=server) as make:
        hello.main(["a", "b"])
    host, port, app = make.call_args.args
    assert (host, port) == ("", 8080)
    _, start_response = _recorder()
    body = b"".join(app(_environ(), start_response))
    assert body.endswith(b"[a b]\n")
    assert capsys.readouterr().out == "listening ...\naddress already in use\n"