"""Tests du point d'entrée : options, sortie sur une ligne, codes retour."""

import signal

import pytest

import check_huawei_health
from conftest import FakeFetcher
from huawei_health import (
    OID_CPU_USAGE,
    OID_SLOT_NAME,
    OID_SLOT_STATE,
    OID_TEMP_CURRENT,
    OID_TEMP_THRESHOLD,
    CheckConfig,
    FetchError,
    SnmpSessionError,
    UsageError,
)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def device(monkeypatch):
    """Équipement simulé : tables, erreurs de walk, erreur d'ouverture."""
    state = {"tables": {}, "errors": {}, "open_error": None, "sessions": []}

    class FakeSession:
        def __init__(self, cfg):
            self.cfg = cfg
            self.closed = False
            self.walk = FakeFetcher(state["tables"], state["errors"])
            state["sessions"].append(self)

        def open(self):
            if state["open_error"] is not None:
                raise state["open_error"]
            return self

        def close(self):
            self.closed = True

    monkeypatch.setattr(check_huawei_health, "SnmpSession", FakeSession)
    monkeypatch.setattr(check_huawei_health, "arm_timeout", lambda cfg: None)
    return state


def parse(argv):
    args = check_huawei_health.build_parser().parse_args(argv)
    return check_huawei_health.check_options(args)


# =============================================================================
# OPTIONS
# =============================================================================

class TestCheckOptions:

    def test_defaults(self):
        cfg = parse(["-H", "10.0.0.1", "-C", "public"])
        assert cfg == CheckConfig(host="10.0.0.1", community="public")
        assert cfg.mode == "env"
        assert cfg.categories == ("power", "fan", "temperature")
        assert cfg.timeout == 5
        assert cfg.version == "2c"

    def test_snmp_v1(self):
        assert parse(["-H", "h", "-C", "public", "-1"]).version == "1"

    def test_snmp_v3_protocols(self):
        cfg = parse(["-H", "h", "-l", "user", "-x", "authpass", "-X", "privpass", "-L", "md5,des"])
        assert cfg.version == "3"
        assert (cfg.authproto, cfg.privproto) == ("md5", "des")

    def test_snmp_v3_auth_only_protocol(self):
        cfg = parse(["-H", "h", "-l", "user", "-x", "authpass", "-L", "sha256"])
        assert (cfg.authproto, cfg.privproto) == ("sha256", "aes")
        assert cfg.privpass is None

    def test_thresholds_and_flags(self):
        cfg = parse(["-H", "h", "-C", "c", "-M", "all", "-w", "80", "-c", "90",
                     "-a", "50", "-e", "60", "-f", "-6", "-t", "10", "-P", "1161"])
        assert (cfg.cpu_warn, cfg.cpu_crit, cfg.temp_warn, cfg.temp_crit) == (80, 90, 50, 60)
        assert cfg.perfparse and cfg.ipv6
        assert (cfg.timeout, cfg.port) == (10, 1161)

    @pytest.mark.parametrize("argv, message", [
        (["-M", "bogus"], "Invalid check mode bogus for -M option!"),
        (["-M", "fan", "-a", "40"], "Invalid option -a for mode fan!"),
        (["-M", "cpu", "-a", "40", "-e", "50"], "Invalid option -a -e for mode cpu!"),
        (["-M", "env", "-w", "80"], "Invalid option -w for mode env!"),
        (["-M", "memory", "-c", "90"], "Invalid option -c for mode memory!"),
        (["-t", "1"], "Timeout must be >1 and <60 !"),
        (["-t", "61"], "Timeout must be >1 and <60 !"),
    ])
    def test_usage_errors(self, argv, message):
        with pytest.raises(UsageError) as exc:
            parse(["-H", "h", "-C", "public"] + argv)
        assert str(exc.value) == message

    @pytest.mark.parametrize("argv, message", [
        (["-H", "h"], "Put SNMP login info!"),
        (["-H", "h", "-l", "user"], "Put SNMP login info!"),
        (["-H", "h", "-l", "u", "-x", "p", "-C", "public"], "Can't mix SNMP v1,v2c,v3 protocols!"),
        (["-H", "h", "-l", "u", "-x", "p", "-2"], "Can't mix SNMP v1,v2c,v3 protocols!"),
        (["-H", "h", "-C", "public", "-L", "sha"], "Put SNMP V3 login info with protocols!"),
        (["-H", "h", "-l", "u", "-x", "p", "-L", "sha,aes"], "Put SNMP v3 priv login info with priv protocols!"),
        (["-H", "h", "-l", "u", "-x", "p", "-L", "sha,"], "Put SNMP v3 priv login info with priv protocols!"),
        (["-H", "h", "-l", "u", "-x", "p", "-X", "pp", "-L", "sha,"], "Unknown SNMP v3 protocol !"),
        (["-H", "h", "-l", "u", "-x", "p", "-L", "foo"], "Unknown SNMP v3 protocol foo!"),
    ])
    def test_login_errors(self, argv, message):
        with pytest.raises(UsageError) as exc:
            parse(argv)
        assert str(exc.value) == message

    def test_overrides_allowed_for_group_modes(self):
        assert parse(["-H", "h", "-C", "c", "-M", "env", "-a", "40"]).temp_warn == 40
        assert parse(["-H", "h", "-C", "c", "-M", "perf", "-w", "80"]).cpu_warn == 80


# =============================================================================
# EXÉCUTION
# =============================================================================

class TestRun:

    def test_power_critical(self, device, capsys):
        device["tables"].update({
            OID_SLOT_NAME: {".1": "Power Card 1", ".2": "Power Card 2"},
            OID_SLOT_STATE: {".1": 3, ".2": 2},
        })
        rc = check_huawei_health.run(["-H", "h", "-C", "public", "-M", "power"])
        assert rc == 2
        assert capsys.readouterr().out == "Power_Card_2: disabled: 1/2 power-supplies OK : CRITICAL\n"
        assert device["sessions"][0].closed

    def test_temperature_perfdata(self, device, capsys):
        device["tables"].update({
            OID_SLOT_NAME: {".16": "MPU Board 1"},
            OID_TEMP_CURRENT: {".16": 45},
            OID_TEMP_THRESHOLD: {".16": 55},
        })
        rc = check_huawei_health.run(["-H", "h", "-C", "public", "-M", "temperature", "-f"])
        assert rc == 0
        assert capsys.readouterr().out == "1 temperatures OK : OK | Temp_MPU_Board_1=45;55\n"

    def test_no_cpu_found(self, device, capsys):
        device["tables"][OID_CPU_USAGE] = {".1": 0}
        rc = check_huawei_health.run(["-H", "h", "-C", "public", "-M", "cpu"])
        assert rc == 3
        assert capsys.readouterr().out == "No CPU found: UNKNOWN\n"

    def test_fetch_error(self, device, capsys):
        device["errors"][OID_SLOT_NAME] = FetchError("No SNMP response received before timeout")
        rc = check_huawei_health.run(["-H", "h", "-C", "public"])
        assert rc == 3
        assert capsys.readouterr().out == "ERROR: No SNMP response received before timeout : UNKNOWN\n"
        assert device["sessions"][0].walk.calls == [OID_SLOT_NAME]

    def test_session_error(self, device, capsys):
        device["open_error"] = SnmpSessionError("Bad IPv4/UDP transport address nowhere@161")
        rc = check_huawei_health.run(["-H", "nowhere", "-C", "public"])
        assert rc == 3
        assert capsys.readouterr().out == "ERROR opening session: Bad IPv4/UDP transport address nowhere@161.\n"
        assert device["sessions"][0].closed

    def test_usage_error_before_network(self, device, capsys):
        rc = check_huawei_health.run(["-H", "h", "-C", "public", "-M", "fan", "-w", "80"])
        assert rc == 3
        out = capsys.readouterr().out
        assert out.startswith("Invalid option -w for mode fan!\n")
        assert "usage:" in out
        assert device["sessions"] == []

    def test_missing_host_prints_usage_only(self, device, capsys):
        rc = check_huawei_health.run(["-C", "public"])
        assert rc == 3
        assert capsys.readouterr().out.startswith("usage:")

    def test_bad_integer_exits_unknown(self, device):
        with pytest.raises(SystemExit) as exc:
            check_huawei_health.run(["-H", "h", "-C", "public", "-M", "cpu", "-w", "high"])
        assert exc.value.code == 3

    def test_version(self, device, capsys):
        assert check_huawei_health.run(["-V"]) == 3
        assert capsys.readouterr().out.startswith("check_huawei_health version: ")

    def test_help(self, device, capsys):
        assert check_huawei_health.run(["-h"]) == 3
        assert "temperature" in capsys.readouterr().out


# =============================================================================
# TIMEOUT GLOBAL
# =============================================================================

class TestTimeout:

    def test_alarm_adds_margin(self, monkeypatch):
        armed = {}
        monkeypatch.setattr(signal, "signal", lambda sig, handler: armed.update(handler=handler))
        monkeypatch.setattr(signal, "alarm", lambda seconds: armed.update(seconds=seconds))
        check_huawei_health.arm_timeout(CheckConfig(host="h", community="c", timeout=5))
        assert armed == {"handler": check_huawei_health.on_timeout, "seconds": 20}

    def test_handler_exits_unknown(self, capsys):
        with pytest.raises(SystemExit) as exc:
            check_huawei_health.on_timeout(signal.SIGALRM, None)
        assert exc.value.code == 3
        assert capsys.readouterr().out == "UNKNOWN: Script timed out\n"
