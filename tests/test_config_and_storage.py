from __future__ import annotations

import asyncio
from pathlib import Path

import msgpack
import pytest

from aes_green.config import Settings, parse_hex_color, parse_prefixes
from aes_green.services.logger_service import MAX_LOG_ROWS, LoggerService
from aes_green.storage import MessagePackStore

ENV_KEYS = (
    "DISCORD_TOKEN",
    "GUILD_ID",
    "COMMAND_PREFIXES",
    "STORE_PATH",
    "DEFAULT_BALANCE",
    "DEFAULT_CURRENCY",
    "DATE_TIMEZONE",
    "AUTORESPONDER_COOLDOWN_SEC",
    "EMBED_COLOR",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_settings_load_reads_passwords_file(tmp_path: Path) -> None:
    path = tmp_path / "passwords.txt"
    path.write_text(
        "# bot credentials\n"
        "DISCORD_TOKEN = abc123\n"
        "GUILD_ID=42\n"
        "COMMAND_PREFIXES=!, ?, aes \n"
        "DEFAULT_BALANCE=250\n"
        "EMBED_COLOR=#ff8800\n"
        "not a setting line\n",
        encoding="utf-8",
    )
    settings = Settings.load(path)
    assert settings.discord_token == "abc123"
    assert settings.guild_id == 42
    assert settings.command_prefixes == ("!", "?", "aes")
    assert settings.command_prefix == "!"
    assert settings.default_balance == 250
    assert settings.embed_color == 0xFF8800
    assert settings.date_timezone == "UTC"
    assert settings.autoresponder_cooldown_sec == 5


def test_settings_fall_back_to_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DISCORD_TOKEN", "from-env")
    monkeypatch.setenv("DEFAULT_CURRENCY", "gems")
    settings = Settings.load(tmp_path / "missing.txt")
    assert settings.discord_token == "from-env"
    assert settings.default_currency == "gems"
    assert settings.guild_id == 0


def test_settings_require_a_token(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError):
        Settings.load(tmp_path / "missing.txt")


def test_parse_helpers() -> None:
    assert parse_prefixes(" , ") == ("!", "?")
    assert parse_hex_color("0x00ff00", default=1) == 0x00FF00
    assert parse_hex_color("#abc", default=7) == 7
    assert parse_hex_color("zzzzzz", default=7) == 7


def test_store_round_trip_and_schema_backfill(tmp_path: Path) -> None:
    path = tmp_path / "state.msgpack"
    path.write_bytes(msgpack.packb({"economy": {"1": {"10": {"balance": 5}}}}, use_bin_type=True))
    store = MessagePackStore(path)
    asyncio.run(store.load())
    assert store.data["economy"]["1"]["10"]["balance"] == 5
    assert store.data["cooldowns"] == {"autoresponders": {}, "activities": {}}
    assert store.dirty

    store.guild_node("shops", 1)["cake"] = {"name": "Cake", "price": 3}
    asyncio.run(store.save())
    assert not store.dirty

    reloaded = MessagePackStore(path)
    asyncio.run(reloaded.load())
    assert reloaded.data["shops"]["1"]["cake"]["price"] == 3


def test_missing_store_file_is_created(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "state.msgpack"
    store = MessagePackStore(path)
    asyncio.run(store.load())
    assert path.exists()
    assert store.data["meta"] == {"version": 1}


def test_logger_keeps_a_bounded_ring_and_isolates_listeners(tmp_path: Path) -> None:
    store = MessagePackStore(tmp_path / "state.msgpack")
    asyncio.run(store.load())
    logger = LoggerService(store, echo=False)
    seen: list[str] = []

    def broken(row: dict[str, object]) -> None:
        raise ValueError("listener failure")

    logger.subscribe(broken)
    logger.subscribe(lambda row: seen.append(str(row["event"])))
    for index in range(MAX_LOG_ROWS + 5):
        logger.log("tick", index=index)
    assert len(store.data["logs"]) == MAX_LOG_ROWS
    assert store.data["logs"][0]["data"] == {"index": 5}
    assert len(seen) == MAX_LOG_ROWS + 5

    row = logger.diagnostic("malformed_argument", token="range")
    assert row["event"] == "template.malformed_argument"
    assert logger.recent("template.")[-1]["data"] == {"kind": "malformed_argument", "token": "range"}
