from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

HEX_COLOR_RE = re.compile(r"^(#|0x)?[0-9a-fA-F]{6}$")


@dataclass(frozen=True)
class Settings:
    discord_token: str
    guild_id: int
    command_prefixes: tuple[str, ...]
    store_path: Path
    default_balance: int
    default_currency: str
    date_timezone: str
    autoresponder_cooldown_sec: int
    embed_color: int

    @property
    def command_prefix(self) -> str:
        return self.command_prefixes[0] if self.command_prefixes else "!"

    @staticmethod
    def load(path: Path | None = None) -> "Settings":
        values = _parse_passwords_file(path or Path("passwords.txt"))

        def get(key: str, default: str = "") -> str:
            raw = values.get(key)
            if raw is None:
                raw = os.environ.get(key, default)
            return str(raw).strip()

        token = get("DISCORD_TOKEN")
        if not token:
            raise RuntimeError("DISCORD_TOKEN is required in passwords.txt or the environment.")
        return Settings(
            discord_token=token,
            guild_id=int(get("GUILD_ID", "0") or 0),
            command_prefixes=parse_prefixes(get("COMMAND_PREFIXES", "!,?")),
            store_path=Path(get("STORE_PATH", "data/aes_green.msgpack")),
            default_balance=int(get("DEFAULT_BALANCE", "500") or 500),
            default_currency=get("DEFAULT_CURRENCY", "\U0001f36a") or "\U0001f36a",
            date_timezone=get("DATE_TIMEZONE", "UTC") or "UTC",
            autoresponder_cooldown_sec=max(0, int(get("AUTORESPONDER_COOLDOWN_SEC", "5") or 5)),
            embed_color=parse_hex_color(get("EMBED_COLOR", "#2ecc71"), default=0x2ECC71),
        )


def parse_prefixes(raw: str) -> tuple[str, ...]:
    prefixes = tuple(part.strip() for part in raw.split(",") if part.strip())
    return prefixes or ("!", "?")


def parse_hex_color(raw: str, *, default: int) -> int:
    text = (raw or "").strip().lstrip("#")
    if text.lower().startswith("0x"):
        text = text[2:]
    if len(text) != 6:
        return default
    try:
        return int(text, 16)
    except ValueError:
        return default


def _parse_passwords_file(path: Path) -> dict[str, str]:
    if not path.exists():
        return {}
    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values
