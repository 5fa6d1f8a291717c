from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from aes_green.errors import CommandError
from aes_green.services.cooldowns import CooldownBucket
from aes_green.services.logger_service import LoggerService
from aes_green.storage import MessagePackStore

MATCH_MODES = ("exact", "contains", "startswith")
MAX_TRIGGER_LEN = 200


@dataclass
class AutoresponderHit:
    trigger: str
    reply: str
    matchmode: str


def _trigger_key(trigger: str) -> str:
    return (trigger or "").strip().lower()


def trigger_matches(trigger: str, matchmode: str, content: str) -> bool:
    needle = _trigger_key(trigger)
    if not needle:
        return False
    text = (content or "").lower()
    if matchmode == "contains":
        return needle in text
    if matchmode == "startswith":
        return text.strip().startswith(needle)
    return text.strip() == needle


class AutoresponderService:
    def __init__(self, store: MessagePackStore, logger: LoggerService, *, cooldown_sec: float = 5) -> None:
        self.store = store
        self.logger = logger
        self.cooldown_sec = float(cooldown_sec)
        self.cooldowns = CooldownBucket(store, "autoresponders")

    def _triggers(self, guild_id: int) -> dict[str, dict[str, Any]]:
        return self.store.guild_node("autoresponders", guild_id)

    def get(self, guild_id: int, trigger: str) -> dict[str, Any] | None:
        return self._triggers(guild_id).get(_trigger_key(trigger))

    def require(self, guild_id: int, trigger: str) -> dict[str, Any]:
        row = self.get(guild_id, trigger)
        if row is None:
            raise CommandError(f"No autoresponder for `{trigger}`.")
        return row

    def list_all(self, guild_id: int) -> list[dict[str, Any]]:
        return sorted(self._triggers(guild_id).values(), key=lambda row: _trigger_key(row.get("trigger", "")))

    def add(self, guild_id: int, trigger: str, reply: str, matchmode: str = "exact") -> dict[str, Any]:
        trigger = (trigger or "").strip()
        if not trigger or len(trigger) > MAX_TRIGGER_LEN:
            raise CommandError(f"Trigger must be 1 to {MAX_TRIGGER_LEN} characters.")
        if not (reply or "").strip():
            raise CommandError("Reply cannot be empty.")
        matchmode = self._check_mode(matchmode)
        triggers = self._triggers(guild_id)
        if _trigger_key(trigger) in triggers:
            raise CommandError(f"An autoresponder for `{trigger}` already exists.")
        row = {"trigger": trigger, "reply": reply.strip(), "matchmode": matchmode}
        triggers[_trigger_key(trigger)] = row
        self.store.touch()
        self.logger.log("autoresponder.add", guild_id=int(guild_id), trigger=trigger, matchmode=matchmode)
        return row

    def edit_reply(self, guild_id: int, trigger: str, reply: str) -> dict[str, Any]:
        if not (reply or "").strip():
            raise CommandError("Reply cannot be empty.")
        row = self.require(guild_id, trigger)
        row["reply"] = reply.strip()
        self.store.touch()
        self.logger.log("autoresponder.edit_reply", guild_id=int(guild_id), trigger=row["trigger"])
        return row

    def edit_matchmode(self, guild_id: int, trigger: str, matchmode: str) -> dict[str, Any]:
        row = self.require(guild_id, trigger)
        row["matchmode"] = self._check_mode(matchmode)
        self.store.touch()
        self.logger.log("autoresponder.edit_matchmode", guild_id=int(guild_id), trigger=row["trigger"], matchmode=row["matchmode"])
        return row

    def remove(self, guild_id: int, trigger: str) -> bool:
        removed = self._triggers(guild_id).pop(_trigger_key(trigger), None)
        if removed is None:
            return False
        self.cooldowns.clear(f"{int(guild_id)}:{_trigger_key(trigger)}:")
        self.store.touch()
        self.logger.log("autoresponder.remove", guild_id=int(guild_id), trigger=removed["trigger"])
        return True

    def reset(self, guild_id: int) -> int:
        triggers = self._triggers(guild_id)
        count = len(triggers)
        triggers.clear()
        self.cooldowns.clear(f"{int(guild_id)}:")
        self.store.touch()
        self.logger.log("autoresponder.reset", guild_id=int(guild_id), triggers=count)
        return count

    def match(self, guild_id: int, user_id: int, content: str, now: float | None = None) -> list[AutoresponderHit]:
        hits: list[AutoresponderHit] = []
        self.cooldowns.prune(now)
        for key, row in self._triggers(guild_id).items():
            mode = str(row.get("matchmode", "exact"))
            if not trigger_matches(str(row.get("trigger", "")), mode, content):
                continue
            if not self.cooldowns.try_acquire(f"{int(guild_id)}:{key}:{int(user_id)}", self.cooldown_sec, now):
                continue
            hits.append(AutoresponderHit(trigger=str(row["trigger"]), reply=str(row.get("reply", "")), matchmode=mode))
        return hits

    def _check_mode(self, matchmode: str) -> str:
        mode = (matchmode or "exact").strip().lower()
        if mode not in MATCH_MODES:
            raise CommandError(f"Match mode must be one of: {', '.join(MATCH_MODES)}.")
        return mode
