from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from aiogram import Bot, Dispatcher, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message

from .control import ControlPlane
from .models import TelegramSettings
from .storage import TradeLedger


SWITCH_COMMANDS = {
    "bidding": "toggle-bidding",
    "harvest": "toggle-harvest",
    "sniper": "toggle-sniper",
    "volume": "toggle-volume",
}
FORWARD_LEVELS = ("success", "error")
_ON = ("on", "1", "true", "yes", "enable")
_OFF = ("off", "0", "false", "no", "disable")


def parse_switch(arg: Optional[str]) -> Optional[bool]:
    text = (arg or "").strip().lower()
    if text in _ON:
        return True
    if text in _OFF:
        return False
    return None


def _fmt_amount(value: Any) -> str:
    return f"{Decimal(str(value)).quantize(Decimal('0.0001'))}"


class TelegramSupervisor:
    def __init__(
        self,
        *,
        settings: TelegramSettings,
        control: ControlPlane,
        ledger: TradeLedger,
        collection_slug: str,
        logger: Callable[[str], None],
    ) -> None:
        self.settings = settings
        self.control = control
        self.ledger = ledger
        self.collection_slug = collection_slug
        self.log = logger

        self._enabled_runtime = False
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=2000)
        self._bot: Optional[Bot] = None
        self._dp: Optional[Dispatcher] = None
        self._polling_task: Optional[asyncio.Task[None]] = None
        self._sender_task: Optional[asyncio.Task[None]] = None

    @property
    def enabled(self) -> bool:
        return bool(self.settings.enabled and self.settings.token)

    def _on_task_done(self, task: asyncio.Task[None], name: str) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self._enabled_runtime = False
        self.log(f"[tg] {name} crashed: {exc}")

    def forward(self, message: Dict[str, Any]) -> None:
        if message.get("type") != "log" or message.get("level") not in FORWARD_LEVELS:
            return
        if not self._enabled_runtime:
            return
        try:
            self._queue.put_nowait(str(message.get("message", "")))
        except asyncio.QueueFull:
            self.log("[tg] queue full, dropping notification")

    def status_text(self) -> str:
        snap = self.control.snapshot()
        toggles = snap["toggles"]
        stats = snap["stats"]
        lines = [f"Collection: {self.collection_slug}"]
        lines.extend(f"{name}: {'on' if on else 'off'}" for name, on in toggles.items())
        if stats:
            lines.append(
                f"floor={stats.get('floor')} best={stats.get('bestOffer')} "
                f"ours={stats.get('yourOffer')} balance={stats.get('balance')}"
            )
        ledger = self.ledger.get_stats()
        lines.append(
            f"buys={ledger.buy_count} spent={_fmt_amount(ledger.total_buy)} "
            f"open={ledger.open_positions}"
        )
        if snap["stop_requested"]:
            lines.append("stop pending")
        return "\n".join(lines)

    def positions_text(self, limit: int = 10) -> str:
        rows = self.ledger.get_positions(self.collection_slug, limit=limit)
        if not rows:
            return "Open positions: none"
        lines = [f"Open positions (last {limit}):"]
        for row in rows:
            lines.append(f"#{row.token_id} | buy {_fmt_amount(row.buy_price)}")
        return "\n".join(lines)

    def logs_text(self, limit: int = 10) -> str:
        logs: List[Dict[str, Any]] = self.control.snapshot()["logs"][-limit:]
        if not logs:
            return "No logs yet"
        return "\n".join(f"{x.get('time', '')} {x.get('level')}: {x.get('message')}" for x in logs)

    def handle_command(self, name: str, arg: Optional[str] = None) -> str:
        """Maps one operator command onto the control plane; returns the reply."""
        if name == "stop":
            self.control.submit({"type": "stop"})
            return "Stop queued: offers will be cancelled, then the bot exits"
        if name == "cancel":
            self.control.submit({"type": "cancel-offers"})
            return "Cancel queued for tracked offers"
        if name in SWITCH_COMMANDS:
            enabled = parse_switch(arg)
            if enabled is None:
                return f"Usage: /{name} on|off"
            self.control.submit({"type": SWITCH_COMMANDS[name], "enabled": enabled})
            return f"{name} -> {'on' if enabled else 'off'} (applies at next checkpoint)"
        if name == "status":
            return self.status_text()
        if name == "positions":
            return self.positions_text()
        if name == "logs":
            return self.logs_text()
        return f"Unknown command: {name}"

    async def start(self) -> None:
        if not self.enabled:
            return

        allowed = set(self.settings.chat_ids)
        self._bot = Bot(self.settings.token)
        self._dp = Dispatcher()
        router = Router()
        try:
            me = await self._bot.get_me()
        except Exception as exc:
            self.log(f"[tg] bot auth failed: {exc}")
            await self._bot.session.close()
            self._bot = None
            self._dp = None
            return

        username = getattr(me, "username", "")
        if username:
            self.log(f"[tg] connected as @{username}")
        else:
            self.log(f"[tg] connected as id={me.id}")

        def _allowed(chat_id: int) -> bool:
            if not allowed:
                return True
            return chat_id in allowed

        @router.message(Command("start"))
        async def handle_start(message: Message) -> None:
            if not _allowed(message.chat.id):
                return
            await message.answer(
                "OpenSea market maker online.\n"
                "Commands: /status /positions /logs /stop /cancel\n"
                "/bidding /harvest /sniper /volume on|off",
            )

        @router.message(Command("stop", "cancel", "status", "positions", "logs", *SWITCH_COMMANDS))
        async def handle_control(message: Message, command: CommandObject) -> None:
            if not _allowed(message.chat.id):
                return
            await message.answer(self.handle_command(command.command, command.args))

        self._dp.include_router(router)
        self.control.add_sink(self.forward)
        self._sender_task = asyncio.create_task(self._sender_loop(), name="tg-sender")
        self._polling_task = asyncio.create_task(
            self._dp.start_polling(self._bot, handle_signals=False),
            name="tg-polling",
        )
        self._sender_task.add_done_callback(lambda task: self._on_task_done(task, "sender"))
        self._polling_task.add_done_callback(lambda task: self._on_task_done(task, "polling"))
        self._enabled_runtime = True
        self.log("[tg] bot started")

    async def _sender_loop(self) -> None:
        if self._bot is None:
            return
        while True:
            text = await self._queue.get()
            for chat_id in self.settings.chat_ids:
                try:
                    await self._bot.send_message(chat_id=chat_id, text=text)
                except Exception as exc:
                    self.log(f"[tg] send failed chat={chat_id}: {exc}")
            self._queue.task_done()

    async def stop(self) -> None:
        was_running = (
            self._enabled_runtime
            or self._polling_task is not None
            or self._sender_task is not None
        )
        self._enabled_runtime = False
        for name, task in (("polling", self._polling_task), ("sender", self._sender_task)):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                self.log(f"[tg] {name} stop error: {exc}")
        self._polling_task = None
        self._sender_task = None

        if self._bot is not None:
            try:
                await self._bot.session.close()
            except Exception as exc:
                self.log(f"[tg] session close error: {exc}")
        self._bot = None
        self._dp = None
        if was_running:
            self.log("[tg] bot stopped")
