import pytest

from sqlsprinkler import cli
from sqlsprinkler.client import DaemonError
from sqlsprinkler.config import Settings
from sqlsprinkler.context import build_context


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda **kw: None)


@pytest.fixture
def cli_settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'cli.db'}", mock_hardware=True)


@pytest.fixture
def cli_ctx(cli_settings, pin_backend, timer_factory, fake_sleep):
    context = build_context(cli_settings, pin_backend=pin_backend,
                            timer_factory=timer_factory, sleep=fake_sleep)
    context.store.create_zone({"name": "Front", "pin": 5, "run_duration": 600})
    context.store.create_zone({"name": "Back", "pin": 6, "run_duration": 300, "auto_off": False})
    yield context
    context.store.dispose()


def run(argv, settings, context=None):
    return cli.main(argv, settings=settings, context=context)


def test_version(capsys, cli_settings):
    assert run(["-V"], cli_settings) == 0
    assert capsys.readouterr().out.startswith("SQLSprinkler v")


def test_usage_error_exits_2(cli_settings):
    with pytest.raises(SystemExit) as exc:
        run(["zone", "1", "sideways"], cli_settings)
    assert exc.value.code == 2


def test_no_command_prints_help(capsys, cli_settings):
    assert run([], cli_settings) == 2
    assert "usage" in capsys.readouterr().out


def test_zone_status(capsys, cli_settings, cli_ctx):
    assert run(["zone", "1", "status"], cli_settings, cli_ctx) == 0
    assert capsys.readouterr().out.strip() == "The zone is off"


def test_zone_on_without_auto_off_stays_on(cli_settings, cli_ctx):
    assert run(["zone", "2", "on"], cli_settings, cli_ctx) == 0
    assert cli_ctx.pins.get(6).is_active()


def test_zone_on_waits_for_auto_off(cli_settings, cli_ctx, timers_made):
    assert run(["zone", "1", "on"], cli_settings, cli_ctx) == 0
    assert timers_made[0].interval == 600
    assert timers_made[0].started


def test_zone_by_order(cli_settings, cli_ctx):
    cli_ctx.store.reorder([1, 0])
    assert run(["zone", "0", "on", "--order"], cli_settings, cli_ctx) == 0
    assert cli_ctx.pins.get(6).is_active()


def test_zone_off(cli_settings, cli_ctx):
    cli_ctx.pins.get(5).set_active(True)
    assert run(["zone", "1", "off"], cli_settings, cli_ctx) == 0
    assert not cli_ctx.pins.get(5).is_active()


def test_unknown_zone_exits_1(capsys, cli_settings, cli_ctx):
    assert run(["zone", "9", "on"], cli_settings, cli_ctx) == 1
    assert "not found" in capsys.readouterr().err


def test_sys_on_off_status(capsys, cli_settings, cli_ctx):
    assert run(["sys", "off"], cli_settings, cli_ctx) == 0
    assert run(["sys", "status"], cli_settings, cli_ctx) == 0
    assert capsys.readouterr().out.strip() == "The system is disabled"

    assert run(["sys", "on"], cli_settings, cli_ctx) == 0
    assert cli_ctx.store.get_system_enabled() is True


def test_sys_run_when_disabled_is_refused_quietly(cli_settings, cli_ctx, sleeps, pin_log):
    cli_ctx.store.set_system_enabled(False)
    assert run(["sys", "run"], cli_settings, cli_ctx) == 0
    assert sleeps == []
    assert pin_log == []


def test_sys_run(cli_settings, cli_ctx, sleeps):
    assert run(["sys", "run"], cli_settings, cli_ctx) == 0
    assert sleeps == [600, 300]


def test_sys_winterize_and_test(cli_settings, cli_ctx, sleeps):
    assert run(["sys", "winterize"], cli_settings, cli_ctx) == 0
    assert sleeps == [60, 180, 60, 180]
    sleeps.clear()
    assert run(["sys", "test"], cli_settings, cli_ctx) == 0
    assert sleeps == [12, 12]


def test_init_db(capsys, cli_settings):
    assert run(["init-db"], cli_settings) == 0
    assert "Database ready" in capsys.readouterr().out


def test_missing_tables_exit_1(tmp_path):
    settings = Settings(database_url=f"sqlite:///{tmp_path / 'empty.db'}", mock_hardware=True)
    assert run(["sys", "status"], settings) == 1


class FakeDaemon:
    instances = []

    def __init__(self, url):
        self.url = url
        self.calls = []
        self.enabled = True
        FakeDaemon.instances.append(self)

    def get_system_enabled(self):
        return self.enabled

    def set_system_enabled(self, enabled):
        self.calls.append(("system", enabled))

    def start_run(self, operation):
        self.calls.append(("run", operation))

    def zones(self):
        return [{"id": 4}, {"id": 2}]

    def zone(self, zone_id):
        return {"id": zone_id, "state": True}

    def set_zone_state(self, zone_id, on):
        self.calls.append(("zone", zone_id, on))


@pytest.fixture
def daemon(monkeypatch):
    FakeDaemon.instances = []
    monkeypatch.setattr(cli, "DaemonClient", FakeDaemon)
    return FakeDaemon


def test_remote_zone_commands(capsys, cli_settings, daemon):
    assert run(["--remote", "http://pi:3030", "zone", "4", "on"], cli_settings) == 0
    assert run(["--remote", "http://pi:3030", "zone", "1", "off", "--order"], cli_settings) == 0
    assert run(["--remote", "http://pi:3030", "zone", "4", "status"], cli_settings) == 0

    assert daemon.instances[0].url == "http://pi:3030"
    assert daemon.instances[0].calls == [("zone", 4, True)]
    assert daemon.instances[1].calls == [("zone", 2, False)]
    assert capsys.readouterr().out.strip() == "The zone is on"


def test_remote_from_settings(cli_settings, daemon):
    settings = Settings(database_url=cli_settings.database_url, daemon_url="http://pi:3030")
    assert run(["sys", "winterize"], settings) == 0
    assert daemon.instances[0].calls == [("run", "winterize")]


def test_remote_run_refused_when_disabled(cli_settings, daemon, monkeypatch):
    monkeypatch.setattr(FakeDaemon, "get_system_enabled", lambda self: False)
    assert run(["--remote", "http://pi", "sys", "run"], cli_settings) == 0
    assert daemon.instances[0].calls == []


def test_remote_error_exits_1(capsys, cli_settings, monkeypatch, daemon):
    def unreachable(self, zone_id, on):
        raise DaemonError("Cannot connect to daemon at http://pi")
    monkeypatch.setattr(FakeDaemon, "set_zone_state", unreachable)

    assert run(["--remote", "http://pi", "zone", "1", "on"], cli_settings) == 1
    assert "Cannot connect" in capsys.readouterr().err


def test_daemon_mode_switches_everything_off_and_serves(cli_settings, cli_ctx, monkeypatch):
    served = {}

    def fake_run(self, **kwargs):
        served.update(kwargs)
    monkeypatch.setattr("flask.Flask.run", fake_run)
    monkeypatch.setattr("atexit.register", lambda *a, **kw: None)
    cli_ctx.pins.get(5).set_active(True)

    assert run(["-w"], cli_settings, cli_ctx) == 0

    assert not cli_ctx.pins.get(5).is_active()
    assert served["port"] == 3030
    assert served["threaded"] is True


def test_home_assistant_without_host_exits_1(cli_settings, cli_ctx):
    assert run(["-m"], cli_settings, cli_ctx) == 1
