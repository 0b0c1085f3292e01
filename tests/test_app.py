import subprocess
import sys


def _help(*args):
    proc = subprocess.run(
        [sys.executable, "-m", "walkin_queue.app", *args, "-h"],
        capture_output=True,
        text=True,
        check=False,
    )
    return proc.returncode, proc.stdout + proc.stderr


def test_app_help_runs():
    code, out = _help()
    assert code == 0
    assert "main entrypoint" in out
    assert "serve" in out
    assert "customer" in out
    assert "staff" in out
    assert "board" in out


def test_customer_help_runs():
    code, out = _help("customer")
    assert code == 0
    assert "--service-id" in out
    assert "--watch" in out


def test_serve_help_runs():
    code, out = _help("serve")
    assert code == 0
    assert "--owner-id" in out
    assert "--max-wait-minutes" in out
    assert "--sweep-every" in out
    assert "--log-level" in out


def test_serve_forwards_sweep_and_log_level(monkeypatch):
    import walkin_queue.service as service
    from walkin_queue import app

    seen = []
    monkeypatch.setattr(service, "main", lambda: seen.append(sys.argv[1:]))
    monkeypatch.setattr(sys, "argv", ["walkin", "serve", "--sweep-every", "5", "--log-level", "DEBUG"])
    app.main()

    argv = seen[0]
    assert argv[argv.index("--sweep-every") + 1] == "5.0"
    assert argv[argv.index("--log-level") + 1] == "DEBUG"
    assert "--max-wait-minutes" not in argv
