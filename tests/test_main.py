"""Tests for command-line handling (no mount is attempted)."""

import pytest

import main
from audit_logger import EventType
from decofs import MountMode


@pytest.fixture
def dirs(tmp_path):
    mnt = tmp_path / "mnt"
    src = tmp_path / "src"
    mnt.mkdir()
    src.mkdir()
    return mnt, src


class TestParseArgs:

    def test_positionals_are_mountpoint_then_source(self) -> None:
        args = main.parse_args(["/mnt/drain", "/srv/old"])
        assert args.mountpoint == "/mnt/drain"
        assert args.source == "/srv/old"

    def test_defaults(self) -> None:
        args = main.parse_args(["m", "s"])
        assert args.read_only is False
        assert args.attr_timeout == 1.0
        assert args.fsname == "decofs"
        assert args.allow_other is False

    def test_missing_positionals_exit(self) -> None:
        with pytest.raises(SystemExit):
            main.parse_args(["only-one"])


class TestValidateArgs:

    def test_valid(self, dirs) -> None:
        mnt, src = dirs
        assert main.validate_args(main.parse_args([str(mnt), str(src)]))

    def test_missing_source(self, dirs, tmp_path) -> None:
        mnt, _ = dirs
        args = main.parse_args([str(mnt), str(tmp_path / "nope")])
        assert not main.validate_args(args)

    def test_missing_mountpoint(self, dirs, tmp_path) -> None:
        _, src = dirs
        args = main.parse_args([str(tmp_path / "nope"), str(src)])
        assert not main.validate_args(args)

    def test_same_directory_rejected(self, dirs) -> None:
        _, src = dirs
        assert not main.validate_args(main.parse_args([str(src), str(src)]))

    def test_negative_timeout_rejected(self, dirs) -> None:
        mnt, src = dirs
        args = main.parse_args([str(mnt), str(src), "--attr-timeout", "-1"])
        assert not main.validate_args(args)


class TestCreateConfig:

    def test_read_delete_by_default(self) -> None:
        config = main.create_config(main.parse_args(["m", "s"]))
        assert config.mode is MountMode.READ_DELETE
        assert config.console_logging is True

    def test_flags_carry_over(self) -> None:
        args = main.parse_args([
            "m", "s", "--read-only", "--allow-other", "--fsname", "drain",
            "--attr-timeout", "2.5", "--no-console", "--log-file", "/tmp/a.log",
        ])
        config = main.create_config(args)
        assert config.mode is MountMode.READ_ONLY
        assert config.allow_other is True
        assert config.fsname == "drain"
        assert config.attr_timeout == 2.5
        assert config.console_logging is False
        assert config.log_file == "/tmp/a.log"

    def test_main_rejects_invalid_arguments(self, tmp_path) -> None:
        assert main.main([str(tmp_path / "a"), str(tmp_path / "b")]) == 1


class TestRunFailure:
    """A crash of the request loop reaches the audit log."""

    def test_loop_error_is_audited(self, dirs, monkeypatch) -> None:
        mnt, src = dirs
        created = []

        class RecordingDecoFS(main.DecoFS):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                created.append(self)

        def failing_run(fn):
            raise RuntimeError("session lost")

        monkeypatch.setattr(main, "DecoFS", RecordingDecoFS)
        monkeypatch.setattr(main.pyfuse3, "init", lambda fs, mountpoint, options: None)
        monkeypatch.setattr(main.pyfuse3, "close", lambda unmount=True: None)
        monkeypatch.setattr(main.trio, "run", failing_run)
        monkeypatch.setattr(main.signal, "signal", lambda signum, handler: None)

        assert main.main([str(mnt), str(src), "--no-console"]) == 1

        audit = created[0].audit
        errors = audit.get_recent_events(event_type=EventType.ERROR)
        assert len(errors) == 1
        assert errors[0].details["exception_message"] == "session lost"
        unmounted = audit.get_recent_events(event_type=EventType.FILESYSTEM_UNMOUNTED)
        assert len(unmounted) == 1
