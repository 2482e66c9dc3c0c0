"""Fixtures communes : faux fetcher de tables SNMP."""

import pytest

from huawei_health import CheckConfig, EmptyTableError


def rows(root, values):
    """{".1": v} -> {"<root>.1": v}"""
    return {root + index: value for index, value in values.items()}


class FakeFetcher:
    """Remplace SnmpSession.walk ; enregistre les racines demandées."""

    def __init__(self, tables=None, errors=None):
        self.tables = tables or {}
        self.errors = errors or {}
        self.calls = []

    def __call__(self, root):
        self.calls.append(root)
        if root in self.errors:
            raise self.errors[root]
        table = self.tables.get(root)
        if not table:
            raise EmptyTableError("table is empty or does not exist")
        return rows(root, table)


@pytest.fixture
def make_config():
    def _make(**kwargs):
        kwargs.setdefault("host", "10.0.0.1")
        kwargs.setdefault("community", "public")
        return CheckConfig(**kwargs)
    return _make
