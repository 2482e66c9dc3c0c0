#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Nagios/Centreon plugin: check_huawei_health.py

Santé des équipements Huawei supportant HUAWEI-ENTITY-EXTENT-MIB :
alimentations, ventilateurs, températures, CPU et mémoire.
Le type de contrôle est choisi avec -M (défaut : env).

Supporte IPv6 avec -6, SNMP v1 / v2c / v3.

Dépendance : pysnmp
"""
import argparse
import signal
import sys

from huawei_health import (
    VERSION, MODES, CheckConfig, CheckError, HealthCheck, Severity, UsageError, dprint,
)
from huawei_snmp import AUTH_PROTO_MAP, PRIV_PROTO_MAP, SnmpSession

# marge ajoutée au timeout SNMP pour l'alarme globale
GLOBAL_TIMEOUT_MARGIN = 15

USAGE = (
    "%(prog)s [-v] -H <host> [-6] -C <snmp_community> [-2] | "
    "(-l login -x passwd [-X pass -L <authp>,<privp>]) [-p <port>] "
    "-M (cpu|memory|power|fan|temperature|env|perf|all) [-w <prct> -c <prct>] "
    "[-a <celcius> -e <celcius>] [-f] [-t <timeout>] [-V]"
)

EPILOG = """
Modes (-M):
  cpu          CPU usage (warning/critical thresholds optional with -w, -c)
  memory       Memory usage (warning threshold is hwEntityMemUsageThreshold)
  power        Power supplies state
  fan          FAN modules state
  temperature  Temperature values (warning/critical thresholds optional with -a, -e)
  env          (default) Environmental status: power, fan, temperature
  perf         Performance report: cpu, memory
  all          ALL checks

Examples:
  check_huawei_health.py -H 10.0.0.1 -C public -M env -f
  check_huawei_health.py -H 10.0.0.1 -l admin -x authpass -X privpass -L sha,aes -M cpu -w 80 -c 90
"""


class PluginArgumentParser(argparse.ArgumentParser):
    """argparse sort en 2 sur erreur ; un plugin doit sortir en UNKNOWN."""

    def error(self, message):
        self.print_usage(sys.stdout)
        print(f"{self.prog}: error: {message}")
        sys.exit(Severity.UNKNOWN)


def build_parser():
    parser = PluginArgumentParser(
        prog="check_huawei_health.py",
        usage=USAGE,
        description="Nagios compatible SNMP plugin for Huawei health checks",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Print extra debugging information to stderr")
    parser.add_argument("-h", "--help", action="store_true", help="Print this help message")
    parser.add_argument("-H", "--hostname", help="Hostname or IPv4/IPv6 address of host to check")
    parser.add_argument("-6", "--use-ipv6", dest="ipv6", action="store_true", help="Use IPv6 connection")
    parser.add_argument("-C", "--community", help="Community name for the host's SNMP agent")
    parser.add_argument("-1", "--v1", dest="v1", action="store_true", help="Use SNMPv1")
    parser.add_argument("-2", "--v2c", dest="v2c", action="store_true", help="Use SNMPv2c (default)")
    parser.add_argument("-l", "--login", help="Login for SNMPv3 authentication")
    parser.add_argument("-x", "--passwd", help="Auth password for SNMPv3 (no priv password implies AuthNoPriv)")
    parser.add_argument("-X", "--privpass", help="Priv password for SNMPv3 (AuthPriv protocol)")
    parser.add_argument("-L", "--protocols", help="<authproto>,<privproto> (md5|sha : default sha, des|aes : default aes)")
    parser.add_argument("-p", "-P", "--port", type=int, default=161, help="SNMP port (default 161)")
    parser.add_argument("-M", "--mode", default="env", help="cpu|memory|power|fan|temperature|env|perf|all (default env)")
    parser.add_argument("-w", "--cpu-warn", type=int, help="CPU usage warning threshold (default hwEntityCpuUsageThreshold)")
    parser.add_argument("-c", "--cpu-crit", type=int, help="CPU usage critical threshold (default none)")
    parser.add_argument("-a", "--temp-warn", type=int, help="Temperature warning threshold (default hwEntityTemperatureThreshold)")
    parser.add_argument("-e", "--temp-crit", type=int, help="Temperature critical threshold (default none)")
    parser.add_argument("-f", "--perfparse", action="store_true", help="Print performance data (cpu, memory, temperature)")
    parser.add_argument("-t", "--timeout", type=int, help="Timeout for SNMP in seconds (default 5)")
    parser.add_argument("-V", "--version", action="store_true", help="Print version number")
    return parser


def _invalid_flags(mode, category, *flags):
    given = [flag for flag, value in flags if value is not None]
    if given and category not in MODES[mode]:
        raise UsageError(f"Invalid option {' '.join(given)} for mode {mode}!")


def check_options(args):
    """Valide les options et construit la configuration (UsageError sinon)."""
    if args.mode not in MODES:
        raise UsageError(f"Invalid check mode {args.mode} for -M option!")

    _invalid_flags(args.mode, "temperature", ("-a", args.temp_warn), ("-e", args.temp_crit))
    _invalid_flags(args.mode, "cpu", ("-w", args.cpu_warn), ("-c", args.cpu_crit))

    timeout = 5 if args.timeout is None else args.timeout
    if not 2 <= timeout <= 60:
        raise UsageError("Timeout must be >1 and <60 !")

    if not args.hostname:
        raise UsageError("")

    if args.community is None and (args.login is None or args.passwd is None):
        raise UsageError("Put SNMP login info!")
    if (args.login is not None or args.passwd is not None) and (args.community is not None or args.v2c):
        raise UsageError("Can't mix SNMP v1,v2c,v3 protocols!")

    authproto, privproto = "sha", "aes"
    if args.protocols is not None:
        if args.login is None:
            raise UsageError("Put SNMP V3 login info with protocols!")
        protos = args.protocols.split(",")
        if protos[0]:
            authproto = protos[0]
        if len(protos) > 1:
            privproto = protos[1]
            if args.privpass is None:
                raise UsageError("Put SNMP v3 priv login info with priv protocols!")
    if authproto.upper() not in AUTH_PROTO_MAP:
        raise UsageError(f"Unknown SNMP v3 protocol {authproto}!")
    if privproto.upper() not in PRIV_PROTO_MAP:
        raise UsageError(f"Unknown SNMP v3 protocol {privproto}!")

    if args.login is not None:
        version = "3"
    elif args.v1 and not args.v2c:
        version = "1"
    else:
        version = "2c"

    return CheckConfig(
        host=args.hostname,
        port=args.port,
        community=args.community,
        version=version,
        login=args.login,
        passwd=args.passwd,
        privpass=args.privpass,
        authproto=authproto,
        privproto=privproto,
        ipv6=args.ipv6,
        mode=args.mode,
        cpu_warn=args.cpu_warn,
        cpu_crit=args.cpu_crit,
        temp_warn=args.temp_warn,
        temp_crit=args.temp_crit,
        perfparse=args.perfparse,
        timeout=timeout,
        verbose=args.verbose,
    )


def on_timeout(signum, frame):
    print("UNKNOWN: Script timed out")
    sys.exit(Severity.UNKNOWN)


def arm_timeout(cfg):
    """Alarme globale si SNMP reste bloqué."""
    deadline = cfg.timeout + GLOBAL_TIMEOUT_MARGIN
    dprint(cfg.verbose, f"Alarm at {GLOBAL_TIMEOUT_MARGIN} + {cfg.timeout}")
    signal.signal(signal.SIGALRM, on_timeout)
    signal.alarm(deadline)


def run(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.help:
        parser.print_help(sys.stdout)
        return Severity.UNKNOWN
    if args.version:
        print(f"check_huawei_health version: {VERSION}")
        return Severity.UNKNOWN

    try:
        cfg = check_options(args)
    except UsageError as e:
        if str(e):
            print(e)
        parser.print_usage(sys.stdout)
        return Severity.UNKNOWN

    arm_timeout(cfg)

    session = SnmpSession(cfg)
    try:
        session.open()
        report = HealthCheck(session.walk, cfg).run()
    except CheckError as e:
        print(e.output())
        return Severity.UNKNOWN
    finally:
        session.close()

    print(report.render(cfg.perfparse))
    return report.status


def main():
    sys.exit(run())


if __name__ == "__main__":
    main()
