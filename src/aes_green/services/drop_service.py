from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass
from typing import Any

from aes_green.errors import CommandError
from aes_green.services.economy_service import EconomyService
from aes_green.services.logger_service import LoggerService
from aes_green.storage import MessagePackStore

CODE_ALPHABET = string.ascii_letters + string.digits
CODE_LENGTH = 4
DROP_TTL_SEC = 60 * 60
MAX_DROP_AMOUNT = 1_000_000_000


@dataclass
class Drop:
    code: str
    amount: int
    channel_id: int
    created_by: int
    created_at: float


class DropService:
    def __init__(
        self,
        store: MessagePackStore,
        logger: LoggerService,
        economy: EconomyService,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.logger = logger
        self.economy = economy
        self.rng = rng or random.Random()

    def _drops(self, guild_id: int) -> dict[str, dict[str, Any]]:
        return self.store.guild_node("drops", guild_id)

    def _new_code(self, taken: dict[str, Any]) -> str:
        while True:
            code = "".join(self.rng.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
            if code.lower() not in taken:
                return code

    def create(self, guild_id: int, channel_id: int, created_by: int, amount: int, now: float | None = None) -> Drop:
        amount = int(amount)
        if not 1 <= amount <= MAX_DROP_AMOUNT:
            raise CommandError(f"Drop amount must be between 1 and {MAX_DROP_AMOUNT:,}.")
        now_ts = float(now if now is not None else time.time())
        self.expire(guild_id, now_ts)
        drops = self._drops(guild_id)
        code = self._new_code(drops)
        drops[code.lower()] = {
            "code": code,
            "amount": amount,
            "channel_id": int(channel_id),
            "created_by": int(created_by),
            "created_at": now_ts,
        }
        self.store.touch()
        self.logger.log("drop.create", guild_id=int(guild_id), channel_id=int(channel_id), amount=amount, code=code)
        return Drop(code=code, amount=amount, channel_id=int(channel_id), created_by=int(created_by), created_at=now_ts)

    def pick(self, guild_id: int, user_id: int, code: str, now: float | None = None) -> tuple[Drop, int]:
        now_ts = float(now if now is not None else time.time())
        self.expire(guild_id, now_ts)
        row = self._drops(guild_id).pop((code or "").strip().lower(), None)
        if row is None:
            raise CommandError("That code does not match any active drop.")
        self.store.touch()
        drop = Drop(
            code=str(row["code"]),
            amount=int(row["amount"]),
            channel_id=int(row.get("channel_id", 0)),
            created_by=int(row.get("created_by", 0)),
            created_at=float(row.get("created_at", now_ts)),
        )
        balance = self.economy.scoped(guild_id).add_balance(user_id, drop.amount)
        self.logger.log("drop.pick", guild_id=int(guild_id), user_id=int(user_id), amount=drop.amount, code=drop.code)
        return drop, balance

    def expire(self, guild_id: int, now: float | None = None) -> int:
        now_ts = float(now if now is not None else time.time())
        drops = self._drops(guild_id)
        stale = [key for key, row in drops.items() if now_ts - float(row.get("created_at", 0)) > DROP_TTL_SEC]
        for key in stale:
            drops.pop(key, None)
        if stale:
            self.store.touch()
        return len(stale)
