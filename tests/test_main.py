"""
Brief: Tests for nsguard.main CLI entry.

Inputs:
  - None

Outputs:
  - None
"""

import logging

import pytest

import nsguard.main as main_mod
from conftest import FakeSession, answer_body
from nsguard.doh_client import DoHClient
from nsguard.main import main
from nsguard.service import DelegationGuard, GuardConfig

BODIES = {
    "a.com": answer_body("ns1.reg.com."),
    "cdn.a.com": answer_body("ns1.reg.com."),
    "t.a.com": answer_body("ns1.tracker.net."),
}


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(False)


@pytest.fixture
def fake_guard(monkeypatch):
    """
    Brief: Route DelegationGuard.from_config through a FakeSession-backed client.

    Inputs:
      - monkeypatch: pytest fixture

    Outputs:
      - dict capturing the cfg passed to from_config and the session used
    """
    seen = {}

    def _from_config(cfg=None, *, observer=None):
        session = FakeSession(BODIES)
        seen["cfg"] = cfg
        seen["session"] = session
        return DelegationGuard(
            DoHClient(session=session), GuardConfig(**(cfg or {})), observer=observer
        )

    monkeypatch.setattr(main_mod.DelegationGuard, "from_config", staticmethod(_from_config))
    return seen


def test_check_prints_verdicts(fake_guard, capsys):
    """
    Brief: `check` prints BLOCK/ALLOW per URL using each URL's root by default.

    Inputs:
      - two URLs under a.com

    Outputs:
      - None: Asserts exit code and output lines
    """
    rc = main(["check", "https://t.a.com/p.gif", "https://cdn.a.com/app.js"])
    out = capsys.readouterr().out.splitlines()
    assert rc == 0
    assert out == ["BLOCK https://t.a.com/p.gif", "ALLOW https://cdn.a.com/app.js"]
    assert fake_guard["session"].closed


def test_check_explain_and_invalid_url(fake_guard, capsys):
    rc = main(["check", "--explain", "https://t.a.com/", "nonsense"])
    out = capsys.readouterr().out.splitlines()
    assert rc == 0
    assert out == [
        "BLOCK https://t.a.com/ (disjoint_nameservers)",
        "ALLOW nonsense (invalid_url)",
    ]


def test_check_explain_reports_gate_scope_rule(fake_guard, capsys):
    """
    Brief: --explain names the gate rule and skips the lookup for allowed URLs.

    Inputs:
      - a URL under an inactive root, then a bare root URL

    Outputs:
      - None: Asserts rule names and that no DoH request was made
    """
    argv = ["check", "--root", "other.com", "--root", "a.com", "--explain"]
    rc = main(argv + ["https://x.b.org/", "https://a.com/"])
    assert rc == 0
    assert capsys.readouterr().out.splitlines() == [
        "ALLOW https://x.b.org/ (out_of_scope)",
        "ALLOW https://a.com/ (root_domain)",
    ]
    assert fake_guard["session"].calls == []


def test_check_with_unrelated_root_allows(fake_guard, capsys):
    rc = main(["check", "--root", "Other.ORG", "https://t.a.com/"])
    assert rc == 0
    assert capsys.readouterr().out.strip() == "ALLOW https://t.a.com/"
    assert fake_guard["session"].calls == []


def test_cli_vars_without_config(fake_guard, capsys):
    main(["-v", "TTL=60", "check", "https://a.com/"])
    assert fake_guard["cfg"] == {}
    assert capsys.readouterr().out.strip() == "ALLOW https://a.com/"


def test_config_file_is_loaded(tmp_path, fake_guard, capsys):
    """
    Brief: -c loads YAML, expands vars and passes the result to the guard.

    Inputs:
      - tmp_path: temporary config file

    Outputs:
      - None: Asserts the parsed resolver section reached from_config
    """
    path = tmp_path / "config.yaml"
    path.write_text(
        "vars:\n  T: 900\nlogging:\n  stderr: false\nresolver:\n  timeout_ms: ${T}\n",
        encoding="utf-8",
    )
    rc = main(["-c", str(path), "check", "https://cdn.a.com/"])
    assert rc == 0
    assert fake_guard["cfg"]["resolver"] == {"timeout_ms": 900}


def test_invalid_config_returns_1(tmp_path, capsys):
    path = tmp_path / "bad.yaml"
    path.write_text("resolver:\n  timeout_ms: 0\n", encoding="utf-8")
    assert main(["-c", str(path), "check", "https://a.com/"]) == 1
    assert "Invalid configuration" in capsys.readouterr().err


def test_missing_config_returns_1(tmp_path, capsys):
    assert main(["-c", str(tmp_path / "nope.yaml"), "check", "https://a.com/"]) == 1
    assert capsys.readouterr().err


def test_bad_cli_var_returns_1(capsys):
    assert main(["-v", "nope", "check", "https://a.com/"]) == 1
    assert "KEY=YAML" in capsys.readouterr().err


def test_command_required():
    with pytest.raises(SystemExit):
        main([])


def test_serve_stops_when_webserver_exits(monkeypatch, fake_guard):
    """
    Brief: `serve` forces the HTTP listener on and exits 1 if its thread dies.

    Inputs:
      - monkeypatched start_webserver returning a dead handle

    Outputs:
      - None: Asserts forced listener config and exit code
    """
    seen = {}

    class DeadHandle:
        def is_running(self):
            return False

        def stop(self, timeout=5.0):
            seen["stopped"] = True

    def _start(guard, cfg):
        seen["http"] = cfg["server"]["http"]
        return DeadHandle()

    monkeypatch.setattr(main_mod, "start_webserver", _start)
    monkeypatch.setattr(main_mod.signal, "signal", lambda *a, **kw: None)
    assert main(["serve"]) == 1
    assert seen["http"] == {"enabled": True}
