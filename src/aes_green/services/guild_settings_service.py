from __future__ import annotations

from typing import Any

from aes_green.config import HEX_COLOR_RE, Settings, parse_hex_color
from aes_green.errors import CommandError
from aes_green.services.logger_service import LoggerService
from aes_green.storage import MessagePackStore

ACTIVITY_NAMES = ("pet", "snuggle", "clickcake")
ONLEAVE_POLICIES = ("save", "delete")
MAX_PREFIX_LEN = 5

DEFAULT_ACTIVITIES: dict[str, dict[str, int]] = {
    "pet": {"cooldown_min": 60, "min": 10, "max": 50},
    "snuggle": {"cooldown_min": 60, "min": 10, "max": 50},
    "clickcake": {"cooldown_min": 30, "min": 25, "max": 25},
}
DEFAULT_TRANSFER: dict[str, int] = {"min": 1, "max": 0, "tax": 0}


class GuildSettingsService:
    def __init__(self, settings: Settings, store: MessagePackStore, logger: LoggerService) -> None:
        self.settings = settings
        self.store = store
        self.logger = logger

    def get(self, guild_id: int) -> dict[str, Any]:
        node = self.store.guild_node("servers", guild_id)
        changed = False
        defaults: dict[str, Any] = {
            "currency": self.settings.default_currency,
            "prefix": "",
            "start_balance": self.settings.default_balance,
            "onleave": "save",
            "embed_color": self.settings.embed_color,
            "confirm_buy": False,
            "activities": {},
            "transfer": dict(DEFAULT_TRANSFER),
        }
        for key, value in defaults.items():
            if key not in node:
                node[key] = value
                changed = True
        for name, config in DEFAULT_ACTIVITIES.items():
            if not isinstance(node["activities"].get(name), dict):
                node["activities"][name] = dict(config)
                changed = True
        if changed:
            self.store.touch()
        return node

    def currency(self, guild_id: int | None) -> str:
        if not guild_id:
            return self.settings.default_currency
        return str(self.get(guild_id)["currency"])

    def prefix(self, guild_id: int | None) -> str:
        if not guild_id:
            return ""
        return str(self.get(guild_id)["prefix"])

    def start_balance(self, guild_id: int | None) -> int:
        if not guild_id:
            return self.settings.default_balance
        return int(self.get(guild_id)["start_balance"])

    def embed_color(self, guild_id: int | None) -> int:
        if not guild_id:
            return self.settings.embed_color
        return int(self.get(guild_id)["embed_color"])

    def onleave(self, guild_id: int) -> str:
        return str(self.get(guild_id)["onleave"])

    def confirm_buy(self, guild_id: int) -> bool:
        return bool(self.get(guild_id)["confirm_buy"])

    def activity(self, guild_id: int, name: str) -> dict[str, int]:
        return dict(self.get(guild_id)["activities"][name])

    def transfer(self, guild_id: int) -> dict[str, int]:
        return dict(self.get(guild_id)["transfer"])

    def _update(self, guild_id: int, key: str, value: Any) -> None:
        self.get(guild_id)[key] = value
        self.store.touch()
        self.logger.log("settings.update", guild_id=int(guild_id), key=key, value=value)

    def set_currency(self, guild_id: int, symbol: str) -> str:
        symbol = (symbol or "").strip()
        if not symbol or len(symbol) > 64:
            raise CommandError("Currency symbol must be 1 to 64 characters.")
        self._update(guild_id, "currency", symbol)
        return symbol

    def set_start_balance(self, guild_id: int, amount: int) -> int:
        if int(amount) < 0:
            raise CommandError("Start balance cannot be negative.")
        self._update(guild_id, "start_balance", int(amount))
        return int(amount)

    def set_onleave(self, guild_id: int, policy: str) -> str:
        policy = (policy or "").strip().lower()
        if policy not in ONLEAVE_POLICIES:
            raise CommandError("On-leave policy must be `save` or `delete`.")
        self._update(guild_id, "onleave", policy)
        return policy

    def set_activity(self, guild_id: int, name: str, cooldown_min: int, low: int, high: int | None = None) -> dict[str, int]:
        if name not in ACTIVITY_NAMES:
            raise CommandError(f"Unknown activity `{name}`.")
        high = low if high is None else high
        if int(cooldown_min) < 0 or int(low) < 0 or int(high) < 0:
            raise CommandError("Cooldown and amounts cannot be negative.")
        if int(low) > int(high):
            low, high = high, low
        config = {"cooldown_min": int(cooldown_min), "min": int(low), "max": int(high)}
        activities = self.get(guild_id)["activities"]
        activities[name] = config
        self.store.touch()
        self.logger.log("settings.update", guild_id=int(guild_id), key=f"activities.{name}", value=config)
        return config

    def set_transfer(self, guild_id: int, minimum: int, maximum: int, tax: int) -> dict[str, int]:
        if int(minimum) < 1:
            raise CommandError("Minimum transfer must be at least 1.")
        if int(maximum) and int(maximum) < int(minimum):
            raise CommandError("Maximum transfer must be 0 (no limit) or at least the minimum.")
        if not 0 <= int(tax) <= 100:
            raise CommandError("Tax must be a percentage between 0 and 100.")
        config = {"min": int(minimum), "max": int(maximum), "tax": int(tax)}
        self._update(guild_id, "transfer", config)
        return config

    def set_prefix(self, guild_id: int, prefix: str) -> str:
        prefix = (prefix or "").strip()
        if len(prefix) > MAX_PREFIX_LEN or " " in prefix:
            raise CommandError(f"Prefix must be at most {MAX_PREFIX_LEN} characters without spaces.")
        self._update(guild_id, "prefix", prefix)
        return prefix

    def set_embed_color(self, guild_id: int, raw: str) -> int:
        if not HEX_COLOR_RE.match((raw or "").strip()):
            raise CommandError("Colour must be a hex value like `#2ecc71`.")
        color = parse_hex_color(raw, default=self.settings.embed_color)
        self._update(guild_id, "embed_color", color)
        return color

    def set_confirm_buy(self, guild_id: int, enabled: bool) -> bool:
        self._update(guild_id, "confirm_buy", bool(enabled))
        return bool(enabled)

    def summary(self, guild_id: int) -> list[tuple[str, str]]:
        node = self.get(guild_id)
        transfer = node["transfer"]
        rows = [
            ("Currency", str(node["currency"])),
            ("Prefix", str(node["prefix"]) or ", ".join(self.settings.command_prefixes)),
            ("Start balance", f"{int(node['start_balance']):,}"),
            ("On leave", str(node["onleave"])),
            ("Embed colour", f"#{int(node['embed_color']):06x}"),
            ("Confirm buy", "on" if node["confirm_buy"] else "off"),
            (
                "Transfer",
                f"min {transfer['min']:,} / max {transfer['max'] or 'none'} / tax {transfer['tax']}%",
            ),
        ]
        for name in ACTIVITY_NAMES:
            config = node["activities"][name]
            rows.append(
                (name.capitalize(), f"every {config['cooldown_min']} min, {config['min']:,}-{config['max']:,}")
            )
        return rows
