from __future__ import annotations

import random
from dataclasses import dataclass

from aes_green.errors import CommandError
from aes_green.services.cooldowns import CooldownBucket
from aes_green.services.economy_service import EconomyService
from aes_green.services.guild_settings_service import ACTIVITY_NAMES, GuildSettingsService
from aes_green.services.logger_service import LoggerService
from aes_green.storage import MessagePackStore


@dataclass
class ActivityResult:
    name: str
    reward: int
    balance: int
    target_id: int | None = None


def format_wait(seconds: float) -> str:
    total = max(1, int(round(seconds)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class ActivityService:
    def __init__(
        self,
        store: MessagePackStore,
        logger: LoggerService,
        economy: EconomyService,
        guild_settings: GuildSettingsService,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.logger = logger
        self.economy = economy
        self.guild_settings = guild_settings
        self.rng = rng or random.Random()
        self.cooldowns = CooldownBucket(store, "activities")

    def perform(
        self,
        guild_id: int,
        user_id: int,
        name: str,
        *,
        target_id: int | None = None,
        now: float | None = None,
    ) -> ActivityResult:
        if name not in ACTIVITY_NAMES:
            raise CommandError(f"Unknown activity `{name}`.")
        if target_id is not None and int(target_id) == int(user_id):
            target_id = None
        config = self.guild_settings.activity(guild_id, name)
        key = f"{int(guild_id)}:{name}:{int(user_id)}"
        wait = self.cooldowns.remaining(key, now)
        if wait > 0:
            raise CommandError(f"You can {name} again in {format_wait(wait)}.")
        self.cooldowns.try_acquire(key, int(config["cooldown_min"]) * 60, now)
        low, high = int(config["min"]), int(config["max"])
        reward = self.rng.randint(min(low, high), max(low, high))
        balance = self.economy.scoped(guild_id).add_balance(user_id, reward)
        self.logger.log(
            "activity.reward",
            guild_id=int(guild_id),
            user_id=int(user_id),
            activity=name,
            reward=reward,
            target_id=int(target_id) if target_id else 0,
        )
        return ActivityResult(name=name, reward=reward, balance=balance, target_id=target_id)
