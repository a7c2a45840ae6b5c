from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import TradeEvent, VolumePosition, token_key


@dataclass
class LedgerStats:
    buy_count: int
    total_buy: Decimal
    open_positions: int


class TradeLedger:
    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS positions (
                    token_address TEXT NOT NULL,
                    token_id TEXT NOT NULL,
                    buy_price TEXT NOT NULL,
                    purchase_time INTEGER NOT NULL,
                    collection_slug TEXT NOT NULL,
                    PRIMARY KEY(token_address, token_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    event_id TEXT NOT NULL PRIMARY KEY,
                    kind TEXT NOT NULL,
                    token_address TEXT NOT NULL,
                    token_id TEXT NOT NULL,
                    collection_slug TEXT NOT NULL,
                    price TEXT NOT NULL,
                    tx_hash TEXT NOT NULL DEFAULT '',
                    ts INTEGER NOT NULL
                )
                """
            )
            conn.commit()

    def _row_to_position(self, row: sqlite3.Row) -> VolumePosition:
        return VolumePosition(
            token_address=str(row["token_address"]),
            token_id=str(row["token_id"]),
            buy_price=Decimal(str(row["buy_price"])),
            purchase_time=int(row["purchase_time"]),
            collection_slug=str(row["collection_slug"]),
        )

    def upsert_position(self, position: VolumePosition) -> None:
        address, token_id = token_key(position.token_address, position.token_id)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO positions (
                    token_address, token_id, buy_price, purchase_time, collection_slug
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(token_address, token_id) DO UPDATE SET
                    buy_price = excluded.buy_price,
                    purchase_time = excluded.purchase_time,
                    collection_slug = excluded.collection_slug
                """,
                (
                    address,
                    token_id,
                    str(position.buy_price),
                    int(position.purchase_time),
                    position.collection_slug,
                ),
            )
            conn.commit()

    def get_position(self, token_address: str, token_id: str) -> Optional[VolumePosition]:
        address, tid = token_key(token_address, token_id)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM positions WHERE token_address = ? AND token_id = ?",
                (address, tid),
            ).fetchone()
            if row is None:
                return None
            return self._row_to_position(row)

    def remove_position(self, token_address: str, token_id: str) -> bool:
        address, tid = token_key(token_address, token_id)
        with self._lock, self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM positions WHERE token_address = ? AND token_id = ?",
                (address, tid),
            )
            conn.commit()
            return cur.rowcount > 0

    def get_positions(
        self, collection_slug: Optional[str] = None, limit: int = 500
    ) -> List[VolumePosition]:
        with self._lock, self._connect() as conn:
            if collection_slug:
                rows = conn.execute(
                    """
                    SELECT * FROM positions
                     WHERE collection_slug = ?
                     ORDER BY purchase_time DESC
                     LIMIT ?
                    """,
                    (collection_slug, max(1, limit)),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM positions ORDER BY purchase_time DESC LIMIT ?",
                    (max(1, limit),),
                ).fetchall()
            return [self._row_to_position(row) for row in rows]

    def record_event(self, event: TradeEvent) -> bool:
        address, tid = token_key(event.token_address, event.token_id)
        with self._lock, self._connect() as conn:
            exists = conn.execute(
                "SELECT 1 FROM events WHERE event_id = ?",
                (event.event_id,),
            ).fetchone()
            if exists:
                return False
            conn.execute(
                """
                INSERT INTO events (
                    event_id, kind, token_address, token_id, collection_slug, price, tx_hash, ts
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.event_id,
                    event.kind,
                    address,
                    tid,
                    event.collection_slug,
                    str(event.price),
                    event.tx_hash,
                    int(event.ts),
                ),
            )
            conn.commit()
            return True

    def get_recent_events(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT event_id, kind, token_address, token_id, collection_slug, price, tx_hash, ts
                  FROM events
                 ORDER BY ts DESC
                 LIMIT ?
                """,
                (max(1, limit),),
            ).fetchall()
            return [dict(row) for row in rows]

    def get_stats(self, since_ts: int = 0) -> LedgerStats:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                "SELECT price FROM events WHERE ts >= ?",
                (int(since_ts),),
            ).fetchall()
            total = Decimal("0")
            for row in rows:
                total += Decimal(str(row["price"]))
            open_count = conn.execute("SELECT COUNT(*) AS n FROM positions").fetchone()
            return LedgerStats(
                buy_count=len(rows),
                total_buy=total,
                open_positions=int(open_count["n"]),
            )
