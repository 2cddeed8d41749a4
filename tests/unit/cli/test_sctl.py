import json
from pathlib import Path

import pytest
from conftest import KEY, FakeKms, FixedClock, RecordingLauncher

from scuttle.cli.sctl import COMMANDS, build_parser, main


def test_build_parser():
    p = build_parser()
    assert p.prog == "sctl"
    test = p.parse_args(["--debug", "--store", "s.json", "add", "--key", "K", "foo", "bar"])
    assert test.command == "add"
    assert test.debug is True
    assert test.store_path == Path("s.json")
    assert test.key_ref == "K"
    assert test.name == "foo"
    assert test.value == "bar"


def test_run_keeps_child_flags_as_arguments():
    args = build_parser().parse_args(["run", "--key", "K", "ls", "-la", "--key", "x"])
    assert args.target == "ls"
    assert args.args == ["-la", "--key", "x"]
    assert args.key_ref == "K"
    assert args.on_decrypt_error is None


def test_add_without_value_is_usage_error(capsys):
    with pytest.raises(SystemExit) as exc:
        build_parser().parse_args(["add", "ONLY_NAME"])
    assert exc.value.code == 2
    assert "VALUE" in capsys.readouterr().err


def test_add_value_starting_with_dash_after_separator():
    args = build_parser().parse_args(["add", "--key", "K", "FOO", "--", "-x"])
    assert args.name == "FOO"
    assert args.value == "-x"


def test_add_help_mentions_separator(capsys):
    with pytest.raises(SystemExit) as exc:
        build_parser().parse_args(["add", "-h"])
    assert exc.value.code == 0
    assert "NAME -- -value" in capsys.readouterr().out


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as exc:
        build_parser().parse_args(["--version"])
    assert exc.value.code == 0
    assert "0.1.4" in capsys.readouterr().out


def test_command_table_covers_every_subcommand():
    assert set(COMMANDS) == {"add", "rm", "list", "run"}


def _main(argv, store, *, kms=None, launcher=None, environ=None):
    return main(
        ["--store", str(store), *argv],
        environ=environ if environ is not None else {},
        gateway_factory=lambda: kms or FakeKms(),
        launcher=launcher or RecordingLauncher(),
        clock=FixedClock(),
    )


def test_add_uses_key_from_environment(store_path):
    kms = FakeKms()
    status = _main(["add", "foo", "bar"], store_path, kms=kms, environ={"SCTL_KEY": KEY})
    assert status == 0
    assert kms.calls == [("encrypt", KEY)]


def test_add_without_key_fails_before_side_effects(store_path, caplog):
    kms = FakeKms()
    status = _main(["add", "foo", "bar"], store_path, kms=kms)
    assert status == 1
    assert kms.calls == []
    assert not store_path.exists()
    assert "SCTL_KEY" in caplog.text


def test_list_prints_sorted_names(store_path, capsys):
    for name in ("b", "a"):
        assert _main(["add", "--key", KEY, name, "v"], store_path) == 0
    capsys.readouterr()

    assert _main(["list"], store_path) == 0
    assert capsys.readouterr().out == "A\nB\n"


def test_list_on_corrupt_store_exits_non_zero(store_path, capsys, caplog):
    store_path.write_text("{broken", encoding="utf-8")
    assert _main(["list"], store_path) == 1
    assert capsys.readouterr().out == ""
    assert "not valid JSON" in caplog.text


def test_run_forwards_child_status_and_policy(store_path):
    _main(["add", "--key", KEY, "foo", "bar"], store_path)
    launcher = RecordingLauncher(exit_status=42)

    status = _main(
        ["run", "--key", KEY, "--on-decrypt-error", "skip", "printenv", "FOO"],
        store_path,
        launcher=launcher,
        environ={"PATH": "/usr/bin"},
    )

    assert status == 42
    (launch,) = launcher.launches
    assert launch["command"] == "printenv"
    assert launch["args"] == ["FOO"]
    assert launch["base_env"] == {"PATH": "/usr/bin"}
    assert launch["secret_env"] == {"FOO": "bar"}


def test_run_without_key_is_fatal(store_path):
    launcher = RecordingLauncher()
    assert _main(["run", "env"], store_path, launcher=launcher) == 1
    assert launcher.launches == []


def test_audit_log_written_when_configured(store_path, tmp_path):
    audit = tmp_path / "audit.jsonl"
    _main(["--audit-log", str(audit), "add", "--key", KEY, "foo", "hunter2"], store_path)

    records = [json.loads(line) for line in audit.read_text().splitlines()]
    assert [r["event"] for r in records] == ["secret_added"]
    assert records[0]["command"] == "add"
    assert "hunter2" not in audit.read_text()


def test_add_stores_dash_prefixed_value(store_path):
    kms = FakeKms()
    status = _main(["add", "--key", KEY, "flag", "--", "-x"], store_path, kms=kms)
    assert status == 0
    assert json.loads(store_path.read_text())[0]["name"] == "FLAG"
