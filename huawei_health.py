#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Moteur d'évaluation du plugin check_huawei_health.

Équipements supportés : Huawei (HUAWEI-ENTITY-EXTENT-MIB + ENTITY-MIB standard).

Contrôles pris en charge :
- Alimentations (hwEntityOperStatus des composants nommés "Power Card N" / "PWR N")
- Ventilateurs (hwEntityFanPresent / hwEntityFanState)
- Températures (seuils -a/-e ou hwEntityTemperatureThreshold)
- CPU (seuils -w/-c ou hwEntityCpuUsageThreshold)
- Mémoire (hwEntityMemUsageThreshold, warning uniquement)

Ce module ne parle pas SNMP : il reçoit une fonction fetch(oid_racine) qui
retourne {oid: valeur}, ou lève EmptyTableError / FetchError.
"""
import enum
import re
import sys
from dataclasses import dataclass
from typing import Optional

VERSION = "0.2"

# --- OIDs ---
# ENTITY-MIB::entPhysicalName (nom des composants)
OID_SLOT_NAME = "1.3.6.1.2.1.47.1.1.1.1.7"

# HUAWEI-ENTITY-EXTENT-MIB::hwEntityStateEntry
HW_ENTITY_STATE = "1.3.6.1.4.1.2011.5.25.31.1.1.1.1"
OID_SLOT_STATE = HW_ENTITY_STATE + ".2"            # notSupported(1), disabled(2), enabled(3), offline(4)
OID_CPU_USAGE = HW_ENTITY_STATE + ".5"
OID_CPU_THRESHOLD = HW_ENTITY_STATE + ".6"         # seuil warning si -w absent
OID_MEM_USAGE = HW_ENTITY_STATE + ".7"
OID_MEM_THRESHOLD = HW_ENTITY_STATE + ".8"
OID_TEMP_CURRENT = HW_ENTITY_STATE + ".11"
OID_TEMP_THRESHOLD = HW_ENTITY_STATE + ".12"       # seuil warning si -a absent

# HUAWEI-ENTITY-EXTENT-MIB::hwFanStatusEntry (index sur deux niveaux)
HW_FAN_STATUS = "1.3.6.1.4.1.2011.5.25.31.1.1.10.1"
OID_FAN_PRESENT = HW_FAN_STATUS + ".6"
OID_FAN_STATE = HW_FAN_STATUS + ".7"

# Au-delà, la sonde est considérée en défaut (slot vide, valeur aberrante)
TEMP_MAX_VALID = 1024

CATEGORIES = ("power", "fan", "temperature", "cpu", "memory")

MODES = {
    "cpu": ("cpu",),
    "memory": ("memory",),
    "power": ("power",),
    "fan": ("fan",),
    "temperature": ("temperature",),
    "env": ("power", "fan", "temperature"),
    "perf": ("cpu", "memory"),
    "all": CATEGORIES,
}

SUMMARY_LABELS = {
    "power": "power-supplies",
    "fan": "fans",
    "temperature": "temperatures",
    "cpu": "CPUs",
    "memory": "Memories",
}

NOT_FOUND_MESSAGES = {
    "power": "No Power-supplies found",
    "fan": "No Fans found",
    "temperature": "No Temperatures found",
    "cpu": "No CPU found",
    "memory": "No Memory found",
    "env": "No power-supplies/fans/temperature found",
    "perf": "No CPU/memory usage found",
    "all": "No power-supplies/fans/temperature/CPU/memory found",
}

POWER_SUPPLY_RE = re.compile(r"(power|pwr)( card)? [0-9]", re.IGNORECASE)
LEADING_INT_RE = re.compile(r"\s*-?[0-9]+")


def dprint(verbose, *a):
    if verbose:
        print("[DEBUG]", *a, file=sys.stderr)


# --- erreurs ---

class CheckError(Exception):
    """Erreur fatale : une seule ligne en sortie, statut UNKNOWN."""

    def output(self):
        return str(self)


class UsageError(CheckError):
    pass


class SnmpSessionError(CheckError):
    def output(self):
        return f"ERROR opening session: {self}."


class FetchError(CheckError):
    def output(self):
        return f"ERROR: {self} : UNKNOWN"


class EmptyTableError(FetchError):
    """Table vide ou non supportée par l'équipement : zéro ligne, pas une erreur."""


class NoComponentsError(CheckError):
    def output(self):
        return f"{self}: UNKNOWN"


# --- configuration ---

@dataclass(frozen=True)
class CheckConfig:
    host: str
    port: int = 161
    community: Optional[str] = None
    version: str = "2c"
    login: Optional[str] = None
    passwd: Optional[str] = None
    privpass: Optional[str] = None
    authproto: str = "sha"
    privproto: str = "aes"
    ipv6: bool = False
    mode: str = "env"
    cpu_warn: Optional[int] = None
    cpu_crit: Optional[int] = None
    temp_warn: Optional[int] = None
    temp_crit: Optional[int] = None
    perfparse: bool = False
    timeout: int = 5
    verbose: bool = False

    @property
    def categories(self):
        return MODES[self.mode]


# --- sévérités ---

class Severity(enum.IntEnum):
    OK = 0
    WARNING = 1
    CRITICAL = 2
    UNKNOWN = 3


def merge_status(new, current):
    """
    Applique une nouvelle sévérité au statut global.

    Ce n'est pas un max() : CRITICAL l'emporte toujours, UNKNOWN l'emporte
    sauf sur CRITICAL, WARNING ne remplace que OK, OK ne remplace rien.
    Ainsi [CRITICAL, UNKNOWN] donne CRITICAL mais [UNKNOWN, WARNING] donne UNKNOWN.
    """
    if new == Severity.CRITICAL:
        return new
    if new == Severity.UNKNOWN and current != Severity.CRITICAL:
        return new
    if new == Severity.WARNING and current == Severity.OK:
        return new
    return current


class SlotState(enum.IntEnum):
    NOT_SUPPORTED = 1
    DISABLED = 2
    ENABLED = 3
    OFFLINE = 4


SLOT_STATE_TEXT = {
    SlotState.NOT_SUPPORTED: "notSupported",
    SlotState.DISABLED: "disabled",
    SlotState.ENABLED: "enabled",
    SlotState.OFFLINE: "offline",
}

SLOT_SEVERITY = {
    SlotState.NOT_SUPPORTED: Severity.UNKNOWN,
    SlotState.DISABLED: Severity.CRITICAL,
    SlotState.ENABLED: Severity.OK,
    SlotState.OFFLINE: Severity.UNKNOWN,
}


class FanState(enum.IntEnum):
    ABSENT = 0
    NORMAL = 1
    ABNORMAL = 2


FAN_STATE_TEXT = {
    FanState.ABSENT: "Absent",
    FanState.NORMAL: "Normal",
    FanState.ABNORMAL: "Abnormal",
}

FAN_SEVERITY = {
    FanState.ABSENT: Severity.WARNING,
    FanState.NORMAL: Severity.OK,
    FanState.ABNORMAL: Severity.CRITICAL,
}

FAN_PRESENT = 1


def _to_int(v):
    """Entier ou None si la valeur est vide / non numérique."""
    if v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        # partie entière en tête : "4.5" -> 4, "45C" -> 45
        m = LEADING_INT_RE.match(str(v))
        if m is None:
            return None
        return int(m.group(0))


def classify_slot(code):
    """Retourne (sévérité, texte) pour un hwEntityOperStatus."""
    try:
        state = SlotState(_to_int(code))
    except ValueError:
        return Severity.UNKNOWN, f"unknown({code})"
    return SLOT_SEVERITY[state], SLOT_STATE_TEXT[state]


def classify_fan(presence, state):
    """
    Retourne (sévérité, texte) pour un ventilateur.

    Si le ventilateur n'est pas présent, le code de présence est lu comme un
    code hwEntityFanState : 0 donne "Absent" (WARNING).
    """
    code = state if _to_int(presence) == FAN_PRESENT else presence
    try:
        fan_state = FanState(_to_int(code))
    except ValueError:
        return Severity.UNKNOWN, f"unknown({code})"
    return FAN_SEVERITY[fan_state], FAN_STATE_TEXT[fan_state]


# --- index des tables ---

@dataclass(frozen=True)
class RowId:
    """Identifiant de ligne : racine de table + suffixe d'index (".1.2")."""
    root: str
    index: str

    @classmethod
    def parse(cls, oid, root):
        oid = str(oid).strip(".")
        if not oid.startswith(root + "."):
            return None
        index = oid[len(root):]
        if not all(part.isdigit() for part in index[1:].split(".")):
            return None
        return cls(root, index)

    @property
    def oid(self):
        return self.root + self.index

    @property
    def label(self):
        return self.index[1:]

    def sort_key(self):
        return tuple(int(part) for part in self.label.split("."))

    def at(self, root):
        """Même ligne dans une autre table indexée de la même façon."""
        return RowId(root, self.index)


class Table:
    def __init__(self, root, rows=None):
        self.root = root
        self._values = {str(oid).strip("."): value for oid, value in (rows or {}).items()}
        parsed = (RowId.parse(oid, root) for oid in self._values)
        self._rows = sorted((r for r in parsed if r is not None), key=RowId.sort_key)

    def __len__(self):
        return len(self._rows)

    def __iter__(self):
        for row in self._rows:
            yield row, self._values[row.oid]

    def get(self, row, default=None):
        return self._values.get(row.at(self.root).oid, default)


def display_name(name, row):
    if name is None or str(name).strip() == "":
        return row.label
    return re.sub(r"\s", "_", str(name))


# --- seuils ---

@dataclass(frozen=True)
class Threshold:
    warn: Optional[int] = None
    crit: Optional[int] = None

    def evaluate(self, value):
        """Retourne (sévérité, seuil dépassé ou None)."""
        if self.crit is not None and value > self.crit:
            return Severity.CRITICAL, self.crit
        if self.warn is not None and value > self.warn:
            return Severity.WARNING, self.warn
        return Severity.OK, None

    def perfdata(self):
        out = ";" + ("" if self.warn is None else str(self.warn))
        if self.crit is not None:
            out += f";{self.crit}"
        return out


def resolve_threshold(row, warn=None, crit=None, device_table=None):
    """
    Seuil effectif d'une ligne : le warning opérateur prime, sinon la valeur
    de la table de seuils de l'équipement pour le même index. Le critique
    n'existe que s'il est fourni par l'opérateur.
    """
    if warn is None and device_table is not None:
        warn = _to_int(device_table.get(row))
    return Threshold(warn, crit)


# --- rapport ---

@dataclass
class Tally:
    total: int = 0
    ok: int = 0

    def summary(self, label):
        if self.ok == self.total:
            return f"{self.total} {label} OK"
        return f"{self.ok}/{self.total} {label} OK"


class Report:
    def __init__(self, categories):
        self.status = Severity.OK
        self.tallies = {c: Tally() for c in CATEGORIES if c in categories}
        self.problems = []
        self.perfdata = []

    def record(self, category, severity, problem):
        tally = self.tallies[category]
        tally.total += 1
        self.status = merge_status(severity, self.status)
        if severity == Severity.OK:
            tally.ok += 1
        else:
            self.problems.append(problem)

    def add_perf(self, fragment):
        self.perfdata.append(fragment)

    @property
    def found(self):
        return sum(t.total for t in self.tallies.values())

    def render(self, perfparse=False):
        output = ", ".join(self.problems)
        if output:
            output += ": "
        output += ", ".join(
            tally.summary(SUMMARY_LABELS[c]) for c, tally in self.tallies.items() if tally.total
        )
        output += " : " + self.status.name
        if perfparse and self.perfdata:
            output += " | " + ", ".join(self.perfdata)
        return output


# --- contrôles ---

class HealthCheck:
    """Évalue les catégories du mode demandé, une table après l'autre."""

    def __init__(self, fetch, config):
        self.fetch = fetch
        self.config = config
        self.report = Report(config.categories)
        self.names = Table(OID_SLOT_NAME)

    def dprint(self, *a):
        dprint(self.config.verbose, *a)

    def table(self, root):
        self.dprint("WALK", root)
        try:
            rows = self.fetch(root)
        except EmptyTableError as e:
            self.dprint("EMPTY", root, e)
            rows = {}
        table = Table(root, rows)
        self.dprint("ROWS", root, len(table))
        return table

    def run(self):
        # seuls les ventilateurs se passent des noms de composants
        if self.config.mode != "fan":
            self.names = self.table(OID_SLOT_NAME)
        checks = {
            "power": self.check_power,
            "fan": self.check_fans,
            "temperature": self.check_temperature,
            "cpu": self.check_cpu,
            "memory": self.check_memory,
        }
        for category in self.config.categories:
            self.dprint("Checking", category)
            checks[category]()
        if not self.report.found:
            raise NoComponentsError(NOT_FOUND_MESSAGES[self.config.mode])
        return self.report

    def check_power(self):
        states = self.table(OID_SLOT_STATE)
        for row, name in self.names:
            if not POWER_SUPPLY_RE.search(str(name)):
                continue
            label = display_name(name, row)
            severity, text = classify_slot(states.get(row))
            self.dprint(f"Found PS, name: {label}, state: {text}")
            self.report.record("power", severity, f"{label}: {text}")

    def check_fans(self):
        present = self.table(OID_FAN_PRESENT)
        states = self.table(OID_FAN_STATE)
        for row, presence in present:
            number = row.label.replace(".", "-")
            severity, text = classify_fan(presence, states.get(row))
            self.dprint(f"FAN number: {number}, state: {text}")
            self.report.record("fan", severity, f"Fan {number}: {text}")

    def check_temperature(self):
        self._check_readings(
            "temperature", OID_TEMP_CURRENT, OID_TEMP_THRESHOLD,
            self.config.temp_warn, self.config.temp_crit,
            skip=lambda v: v == 0 or v > TEMP_MAX_VALID,
            problem="Temperature at {name}: {value}C (over {thresh}C)",
            perf_label="Temp",
        )

    def check_cpu(self):
        self._check_readings(
            "cpu", OID_CPU_USAGE, OID_CPU_THRESHOLD,
            self.config.cpu_warn, self.config.cpu_crit,
            skip=lambda v: v == 0,
            problem="CPU-usage {name}: {value}% (over {thresh}%)",
            perf_label="CPU",
        )

    def check_memory(self):
        # pas de seuil opérateur ni de niveau critique pour la mémoire
        self._check_readings(
            "memory", OID_MEM_USAGE, OID_MEM_THRESHOLD, None, None,
            skip=lambda v: v == 0,
            problem="mem-usage {name}: {value}% (over {thresh}%)",
            perf_label="mem",
        )

    def _check_readings(self, category, usage_root, threshold_root, warn, crit,
                        skip, problem, perf_label):
        readings = self.table(usage_root)
        device_thresholds = None
        if warn is None:
            device_thresholds = self.table(threshold_root)

        for row, raw in readings:
            value = _to_int(raw)
            if value is None or skip(value):
                self.dprint("SKIP", row.oid, raw)
                continue
            name = display_name(self.names.get(row), row)
            threshold = resolve_threshold(row, warn, crit, device_thresholds)
            severity, over = threshold.evaluate(value)
            self.dprint(f"{category} {name}: {value}, {threshold}, {severity.name}")
            self.report.record(category, severity, problem.format(name=name, value=value, thresh=over))
            self.report.add_perf(f"{perf_label}_{name}={value}{threshold.perfdata()}")
