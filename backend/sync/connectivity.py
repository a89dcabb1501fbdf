from __future__ import annotations

import logging
import socket
from typing import Protocol

log = logging.getLogger(__name__)


class ConnectivityProbe(Protocol):
    def is_online(self) -> bool: ...


class StaticProbe:
    """Always answers the same; used for pinned offline field mode and in tests."""

    def __init__(self, online: bool):
        self.online = bool(online)
        self.calls = 0

    def is_online(self) -> bool:
        self.calls += 1
        return self.online


class ReachabilityProbe:
    """
    Lightweight reachability check: open (and immediately close) a TCP connection.

    One attempt per call, no retry; a single failure routes the caller to its offline path.
    """

    def __init__(self, host: str, port: int = 443, *, timeout_s: float = 1.5):
        self.host = host
        self.port = int(port)
        self.timeout_s = float(timeout_s)

    def is_online(self) -> bool:
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout_s):
                return True
        except OSError as e:
            log.info("Offline: %s:%d unreachable (%s)", self.host, self.port, e)
            return False


def probe_from_settings(reachability) -> ConnectivityProbe:
    mode = (reachability.mode or "auto").strip().lower()
    if mode in {"online", "on", "1"}:
        return StaticProbe(True)
    if mode in {"offline", "off", "0"}:
        return StaticProbe(False)
    return ReachabilityProbe(
        reachability.host, reachability.port, timeout_s=reachability.timeoutS
    )
