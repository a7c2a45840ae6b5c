from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import asdict
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

from .models import Toggles


TOGGLE_COMMANDS = {
    "toggle-bidding": "bidding",
    "toggle-harvest": "harvest",
    "toggle-sniper": "sniper",
    "toggle-volume": "volume",
}
SIGNAL_COMMANDS = ("stop", "cancel-offers")

Sink = Callable[[Dict[str, Any]], None]


def now_str() -> str:
    return datetime.now().strftime("%H:%M:%S")


def log(scope: str, message: str) -> None:
    print(f"[{now_str()}] [{scope}] {message}", flush=True)


class ControlPlane:
    """Operator commands, toggle state and the outbound broadcast.

    Commands are queued by :meth:`submit` and only applied when the engine
    calls :meth:`drain` at one of its checkpoints.
    """

    def __init__(self, toggles: Optional[Toggles] = None, log_history: int = 50) -> None:
        self.toggles = toggles or Toggles()
        self.stop_requested = False
        self._cancel_requested = False
        self._pending: Deque[Dict[str, Any]] = deque()
        self._sinks: List[Sink] = []
        self._wake: Optional[asyncio.Event] = None
        self.last_stats: Dict[str, Any] = {}
        self.recent_logs: Deque[Dict[str, Any]] = deque(maxlen=max(1, log_history))

    def _event(self) -> asyncio.Event:
        if self._wake is None:
            self._wake = asyncio.Event()
        return self._wake

    def submit(self, command: Dict[str, Any]) -> None:
        kind = str(command.get("type") or "").strip().lower()
        if kind not in TOGGLE_COMMANDS and kind not in SIGNAL_COMMANDS:
            raise ValueError(f"unknown command type: {kind!r}")
        item = {"type": kind}
        if kind in TOGGLE_COMMANDS:
            if "enabled" not in command:
                raise ValueError(f"{kind} requires 'enabled'")
            item["enabled"] = bool(command["enabled"])
        self._pending.append(item)
        if self._wake is not None:
            self._wake.set()

    def pending(self) -> int:
        return len(self._pending)

    def drain(self) -> int:
        applied = 0
        while self._pending:
            item = self._pending.popleft()
            kind = item["type"]
            applied += 1
            if kind == "stop":
                self.stop_requested = True
                self._emit_log("control", "Stop requested", "info")
            elif kind == "cancel-offers":
                self._cancel_requested = True
                self._emit_log("control", "Cancel request received", "info")
            else:
                name = TOGGLE_COMMANDS[kind]
                setattr(self.toggles, name, item["enabled"])
                state = "enabled" if item["enabled"] else "disabled"
                self._emit_log("control", f"{name} {state}", "info")
        return applied

    def take_cancel_request(self) -> bool:
        if self._cancel_requested:
            self._cancel_requested = False
            return True
        return False

    def add_sink(self, sink: Sink) -> None:
        self._sinks.append(sink)

    def broadcast(self, message: Dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == "stats":
            self.last_stats = dict(message)
        elif kind == "log":
            self.recent_logs.append({**message, "time": now_str()})
        for sink in list(self._sinks):
            try:
                sink(message)
            except Exception as exc:
                log("control", f"sink failed: {exc}")

    def _emit_log(self, scope: str, message: str, level: str) -> None:
        log(scope, message)
        self.broadcast({"type": "log", "message": message, "level": level})

    def snapshot(self) -> Dict[str, Any]:
        return {
            "toggles": asdict(self.toggles),
            "stats": dict(self.last_stats),
            "stop_requested": self.stop_requested,
            "cancel_requested": self._cancel_requested,
            "pending_commands": len(self._pending),
            "logs": list(self.recent_logs),
        }

    async def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns early when a command arrives."""
        event = self._event()
        if self._pending:
            event.clear()
            return True
        try:
            await asyncio.wait_for(event.wait(), timeout=max(0.0, timeout))
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            event.clear()


class Reporter:
    def __init__(self, scope: str, control: Optional[ControlPlane] = None) -> None:
        self.scope = scope
        self.control = control

    def _emit(self, message: str, level: str) -> None:
        log(self.scope, message)
        if self.control is not None:
            self.control.broadcast({"type": "log", "message": message, "level": level})

    def info(self, message: str) -> None:
        self._emit(message, "info")

    def success(self, message: str) -> None:
        self._emit(message, "success")

    def warn(self, message: str) -> None:
        self._emit(message, "warning")

    def error(self, message: str) -> None:
        self._emit(message, "error")
