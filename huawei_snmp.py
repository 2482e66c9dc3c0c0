#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Session SNMP du plugin check_huawei_health.

- v1 / v2c (communauté) ou v3 (authNoPriv / authPriv)
- transport UDP IPv4 ou IPv6
- walk d'une table complète -> {oid: valeur}

Dépendance : pysnmp
"""
import asyncio

from pyasn1.type import univ
from pysnmp.entity import config
from pysnmp.error import PySnmpError
from pysnmp.hlapi.v3arch.asyncio import (
    SnmpEngine, CommunityData, UsmUserData, UdpTransportTarget, Udp6TransportTarget,
    ContextData, ObjectType, ObjectIdentity, walk_cmd,
)

from huawei_health import EmptyTableError, FetchError, SnmpSessionError, dprint

SNMP_RETRIES = 1

# SNMPv1 : fin de table signalée par noSuchName
NO_SUCH_NAME = 2

AUTH_PROTO_MAP = {
    "MD5": config.USM_AUTH_HMAC96_MD5,
    "SHA": config.USM_AUTH_HMAC96_SHA,
    "SHA224": config.USM_AUTH_HMAC128_SHA224,
    "SHA256": config.USM_AUTH_HMAC192_SHA256,
    "SHA384": config.USM_AUTH_HMAC256_SHA384,
    "SHA512": config.USM_AUTH_HMAC384_SHA512,
}

PRIV_PROTO_MAP = {
    "DES": config.USM_PRIV_CBC56_DES,
    "3DES": config.USM_PRIV_CBC168_3DES,
    "AES": config.USM_PRIV_CFB128_AES,
    "AES128": config.USM_PRIV_CFB128_AES,
    "AES192": config.USM_PRIV_CFB192_AES,
    "AES256": config.USM_PRIV_CFB256_AES,
}


def build_auth(cfg):
    if cfg.version == "3":
        auth_proto = AUTH_PROTO_MAP[cfg.authproto.upper()]
        if cfg.privpass is None:
            return UsmUserData(cfg.login, authKey=cfg.passwd, authProtocol=auth_proto)
        priv_proto = PRIV_PROTO_MAP[cfg.privproto.upper()]
        return UsmUserData(cfg.login, authKey=cfg.passwd, authProtocol=auth_proto,
                           privKey=cfg.privpass, privProtocol=priv_proto)
    return CommunityData(cfg.community, mpModel=0 if cfg.version == "1" else 1)


def to_python(value):
    if isinstance(value, univ.Integer):
        return int(value)
    return value.prettyPrint()


class SnmpSession:
    """Une session par exécution ; walk() est synchrone."""

    def __init__(self, cfg):
        self.cfg = cfg
        self._loop = None
        self._engine = None
        self._auth = None
        self._target = None

    def open(self):
        cfg = self.cfg
        if cfg.version == "3":
            level = "AuthPriv" if cfg.privpass is not None else "AuthNoPriv"
            dprint(cfg.verbose, f"SNMPv3 {level} login : {cfg.login}, {cfg.authproto}, {cfg.privproto}")
        else:
            dprint(cfg.verbose, f"SNMP v{cfg.version} login")
        self._loop = asyncio.new_event_loop()
        try:
            self._loop.run_until_complete(self._open())
        except PySnmpError as e:
            self.close()
            raise SnmpSessionError(str(e)) from e
        return self

    async def _open(self):
        transport = Udp6TransportTarget if self.cfg.ipv6 else UdpTransportTarget
        self._engine = SnmpEngine()
        self._auth = build_auth(self.cfg)
        self._target = await transport.create(
            (self.cfg.host, self.cfg.port), timeout=self.cfg.timeout, retries=SNMP_RETRIES
        )

    def walk(self, root):
        return self._loop.run_until_complete(self._walk(root))

    async def _walk(self, root):
        rows = {}
        async for error_indication, error_status, error_index, var_binds in walk_cmd(
            self._engine, self._auth, self._target, ContextData(),
            ObjectType(ObjectIdentity(root)),
            lexicographicMode=False, lookupMib=False,
        ):
            if error_indication:
                raise FetchError(str(error_indication))
            if error_status:
                if int(error_status) == NO_SUCH_NAME:
                    break
                raise FetchError(f"{error_status.prettyPrint()} at index {error_index}")
            for name, value in var_binds:
                # noSuchObject / noSuchInstance / endOfMibView
                if isinstance(value, univ.Null):
                    continue
                dprint(self.cfg.verbose, "WALK-ROW", str(name), repr(value))
                rows[str(name)] = to_python(value)
        if not rows:
            raise EmptyTableError("table is empty or does not exist")
        return rows

    def close(self):
        if self._loop is not None:
            # walk interrompu par l'alarme globale
            pending = asyncio.all_tasks(self._loop)
            for task in pending:
                task.cancel()
            if pending:
                self._loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        if self._engine is not None:
            self._engine.close_dispatcher()
            self._engine = None
        if self._loop is not None:
            self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            self._loop.close()
            self._loop = None

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc):
        self.close()
