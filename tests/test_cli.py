import pytest

from slowpipe import Settings
from slowpipe.__main__ import build_parser, main


@pytest.fixture
def uvicorn_run(monkeypatch):
    calls = []

    def fake_run(app, **kwargs):
        calls.append((app, kwargs))

    monkeypatch.setattr("slowpipe.__main__.uvicorn.run", fake_run)
    return calls


def test_serve_is_the_default_command(uvicorn_run, caplog):
    caplog.set_level("INFO", logger="slowpipe")

    assert main(["--port", "9090", "--delay", "0.5"]) == 0

    [(app, kwargs)] = uvicorn_run
    assert kwargs["port"] == 9090
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["timeout_keep_alive"] == 600
    assert app.state.settings.delay == 0.5
    assert app.state.settings.payload_size == Settings().payload_size
    assert "server is running!" in caplog.text


def test_serve_reads_environment(uvicorn_run, monkeypatch):
    monkeypatch.setenv("SLOWPIPE_DELAY", "3")
    monkeypatch.setenv("SLOWPIPE_PORT", "7000")

    main(["serve", "--port", "8080"])

    [(app, kwargs)] = uvicorn_run
    assert kwargs["port"] == 8080
    assert app.state.settings.delay == 3


def test_serve_without_arguments(uvicorn_run):
    main([])
    [(app, kwargs)] = uvicorn_run
    assert kwargs["port"] == 8080


def test_write_timeout_can_be_disabled(uvicorn_run):
    main(["serve", "--write-timeout", "none"])
    [(app, kwargs)] = uvicorn_run
    assert app.state.settings.write_timeout is None


def test_send_timeout_can_be_set_and_disabled(uvicorn_run):
    main(["serve", "--send-timeout", "2.5"])
    main(["serve", "--send-timeout", "none"])

    (first, _), (second, _) = uvicorn_run
    assert first.state.settings.send_timeout == 2.5
    assert second.state.settings.send_timeout is None


def test_disabling_flag_overrides_environment(uvicorn_run, monkeypatch):
    monkeypatch.setenv("SLOWPIPE_WRITE_TIMEOUT", "30")

    main(["serve", "--write-timeout", "none"])

    [(app, kwargs)] = uvicorn_run
    assert app.state.settings.write_timeout is None


def test_fractional_idle_timeout_rounds_up(uvicorn_run):
    main(["serve", "--idle-timeout", "0.5"])
    [(app, kwargs)] = uvicorn_run
    assert kwargs["timeout_keep_alive"] == 1


def test_proxy_command(uvicorn_run):
    main(
        [
            "proxy",
            "--host",
            "127.0.0.1",
            "--port",
            "8000",
            "--upstream",
            "127.0.0.1:8080",
        ]
    )

    [(app, kwargs)] = uvicorn_run
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 8000


def test_nginx_conf_command(capsys):
    main(["nginx-conf", "--read-timeout", "3", "--upstream", "app:9000"])

    out = capsys.readouterr().out
    assert "proxy_read_timeout 3s;" in out
    assert "server app:9000;" in out


def test_invalid_settings_exit_with_status_2(uvicorn_run, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["serve", "--delay", "-1"])

    assert exc_info.value.code == 2
    err = capsys.readouterr().err
    assert err.startswith("slowpipe: ")
    assert "delay" in err
    assert uvicorn_run == []


def test_invalid_environment_exits(monkeypatch, capsys):
    monkeypatch.setenv("SLOWPIPE_PROXY_UPSTREAM", "nowhere")
    with pytest.raises(SystemExit):
        main(["nginx-conf"])
    assert "upstream must be host:port" in capsys.readouterr().err


def test_parser_rejects_unknown_log_level():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["serve", "--log-level", "loud"])
