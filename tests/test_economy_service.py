from __future__ import annotations

import asyncio
import random
from pathlib import Path
from types import SimpleNamespace

import pytest

from aes_green.config import Settings
from aes_green.errors import CommandError
from aes_green.services.activity_service import ActivityService, format_wait
from aes_green.services.drop_service import DROP_TTL_SEC, DropService
from aes_green.services.economy_service import EconomyService
from aes_green.services.embed_service import EmbedService
from aes_green.services.guild_settings_service import GuildSettingsService
from aes_green.services.logger_service import LoggerService
from aes_green.services.shop_service import UNLIMITED_STOCK, ShopService
from aes_green.storage import MessagePackStore

GUILD = 1


def _make_settings(tmp_path: Path) -> Settings:
    return Settings(
        discord_token="token",
        guild_id=0,
        command_prefixes=("!",),
        store_path=tmp_path / "state.msgpack",
        default_balance=500,
        default_currency="\U0001f36a",
        date_timezone="UTC",
        autoresponder_cooldown_sec=5,
        embed_color=0x2ECC71,
    )


def _make_services(tmp_path: Path, seed: int = 1) -> SimpleNamespace:
    settings = _make_settings(tmp_path)
    store = MessagePackStore(settings.store_path)
    asyncio.run(store.load())
    logger = LoggerService(store, echo=False)
    guild_settings = GuildSettingsService(settings, store, logger)
    economy = EconomyService(store, logger, start_balance=guild_settings.start_balance)
    return SimpleNamespace(
        store=store,
        logger=logger,
        guild_settings=guild_settings,
        economy=economy,
        shop=ShopService(store, logger, economy),
        embeds=EmbedService(store, logger),
        activities=ActivityService(store, logger, economy, guild_settings, rng=random.Random(seed)),
        drops=DropService(store, logger, economy, rng=random.Random(seed)),
    )


def test_new_members_start_with_the_guild_start_balance(tmp_path: Path) -> None:
    services = _make_services(tmp_path)
    assert services.economy.scoped(GUILD).balance(10) == 500
    services.guild_settings.set_start_balance(GUILD, 25)
    assert services.economy.scoped(GUILD).balance(11) == 25
    assert services.economy.scoped(GUILD).balance(10) == 500
    assert services.economy.scoped(2).balance(10) == 500


def test_balances_are_scoped_per_guild(tmp_path: Path) -> None:
    services = _make_services(tmp_path)
    services.economy.scoped(1).add_balance(10, 100)
    assert services.economy.scoped(1).balance(10) == 600
    assert services.economy.scoped(2).balance(10) == 500


def test_transfer_applies_limits_and_tax(tmp_path: Path) -> None:
    services = _make_services(tmp_path)
    economy = services.economy
    received, tax = economy.transfer(GUILD, 10, 11, 100, minimum=10, maximum=200, tax_percent=10)
    assert (received, tax) == (90, 10)
    assert economy.scoped(GUILD).balance(10) == 400
    assert economy.scoped(GUILD).balance(11) == 590
    with pytest.raises(CommandError):
        economy.transfer(GUILD, 10, 10, 5)
    with pytest.raises(CommandError):
        economy.transfer(GUILD, 10, 11, 5, minimum=10)
    with pytest.raises(CommandError):
        economy.transfer(GUILD, 10, 11, 300, maximum=200)
    with pytest.raises(CommandError):
        economy.transfer(GUILD, 10, 11, 10_000)


def test_leaderboard_orders_by_balance_and_pages(tmp_path: Path) -> None:
    services = _make_services(tmp_path)
    scoped = services.economy.scoped(GUILD)
    for user_id in range(1, 13):
        scoped.set_balance(user_id, user_id * 10)
    rows, pages = services.economy.leaderboard(GUILD, page=1, per_page=10)
    assert pages == 2
    assert rows[0] == (12, 120)
    rows, _ = services.economy.leaderboard(GUILD, page=9, per_page=10)
    assert rows == [(2, 20), (1, 10)]


def test_give_item_and_resets(tmp_path: Path) -> None:
    services = _make_services(tmp_path)
    scoped = services.economy.scoped(GUILD)
    scoped.add_item(10, "gem", 2)
    assert services.economy.give_item(GUILD, 10, 11, "gem") == 1
    assert scoped.item_quantity(10, "gem") == 1
    with pytest.raises(CommandError):
        services.economy.give_item(GUILD, 10, 11, "gem", 5)

    services.economy.reset_user(GUILD, 11, inventory=True)
    assert scoped.inventory(11) == {}
    assert scoped.balance(11) == 500
    assert services.economy.reset_guild(GUILD, balances=True) == 2
    assert scoped.balance(10) == 0
    assert scoped.item_quantity(10, "gem") == 1


def test_shop_purchase_checks_funds_stock_and_roles(tmp_path: Path) -> None:
    services = _make_services(tmp_path)
    shop = services.shop
    shop.add_item(GUILD, "Golden Apple", 100, stock=2)
    shop.add_item(GUILD, "VIP Pass", 50)
    shop.edit_item(GUILD, "vip pass", "requirerole", 77)

    purchase = shop.purchase(GUILD, 10, "golden apple", 2)
    assert (purchase.cost, purchase.balance, purchase.quantity) == (200, 300, 2)
    assert shop.require_item(GUILD, "Golden Apple")["stock"] == 0
    assert services.economy.scoped(GUILD).item_quantity(10, "Golden Apple") == 2

    with pytest.raises(CommandError, match="stock"):
        shop.purchase(GUILD, 10, "Golden Apple")
    with pytest.raises(CommandError, match="role"):
        shop.purchase(GUILD, 10, "VIP Pass")
    assert shop.purchase(GUILD, 10, "VIP Pass", member_role_ids=[77]).balance == 250
    with pytest.raises(CommandError):
        shop.purchase(GUILD, 10, "VIP Pass", 10, member_role_ids=[77])
    with pytest.raises(CommandError):
        shop.purchase(GUILD, 10, "Missing")


def test_shop_edit_rename_and_validation(tmp_path: Path) -> None:
    shop = _make_services(tmp_path).shop
    shop.add_item(GUILD, "Cake", 10)
    shop.add_item(GUILD, "Pie", 5)
    with pytest.raises(CommandError):
        shop.add_item(GUILD, "cake", 1)
    with pytest.raises(CommandError):
        shop.edit_item(GUILD, "Cake", "name", "Pie")
    with pytest.raises(CommandError):
        shop.edit_item(GUILD, "Cake", "colour", "red")
    shop.edit_item(GUILD, "Cake", "name", "Big Cake")
    shop.edit_item(GUILD, "Big Cake", "stock", -5)
    assert shop.get_item(GUILD, "cake") is None
    assert shop.require_item(GUILD, "big cake")["stock"] == UNLIMITED_STOCK
    assert [item["name"] for item in shop.list_items(GUILD)] == ["Pie", "Big Cake"]
    assert shop.remove_item(GUILD, "pie") is True
    assert shop.reset(GUILD) == 1


def test_drop_codes_are_single_use_and_expire(tmp_path: Path) -> None:
    services = _make_services(tmp_path)
    drops = services.drops
    created = drops.create(GUILD, 5, 10, 250, now=1000.0)
    assert len(created.code) == 4

    picked, balance = drops.pick(GUILD, 11, created.code.lower(), now=1001.0)
    assert picked.amount == 250
    assert balance == 750
    with pytest.raises(CommandError):
        drops.pick(GUILD, 12, created.code, now=1002.0)

    stale = drops.create(GUILD, 5, 10, 10, now=1000.0)
    with pytest.raises(CommandError):
        drops.pick(GUILD, 11, stale.code, now=1000.0 + DROP_TTL_SEC + 1)
    with pytest.raises(CommandError):
        drops.create(GUILD, 5, 10, 0)


def test_activity_rewards_and_cooldown(tmp_path: Path) -> None:
    services = _make_services(tmp_path)
    services.guild_settings.set_activity(GUILD, "pet", 10, 50, 20)
    assert services.guild_settings.activity(GUILD, "pet") == {"cooldown_min": 10, "min": 20, "max": 50}

    result = services.activities.perform(GUILD, 10, "pet", target_id=11, now=0.0)
    assert 20 <= result.reward <= 50
    assert result.balance == 500 + result.reward
    assert result.target_id == 11
    with pytest.raises(CommandError, match="again in 5m 0s"):
        services.activities.perform(GUILD, 10, "pet", now=300.0)
    services.activities.perform(GUILD, 10, "pet", now=600.0)

    cake = services.activities.perform(GUILD, 10, "clickcake", target_id=10, now=0.0)
    assert cake.reward == 25
    assert cake.target_id is None


def test_format_wait() -> None:
    assert format_wait(0.2) == "1s"
    assert format_wait(61) == "1m 1s"
    assert format_wait(3 * 3600 + 120) == "3h 2m"


def test_guild_settings_validation_and_summary(tmp_path: Path) -> None:
    guild_settings = _make_services(tmp_path).guild_settings
    assert guild_settings.currency(GUILD) == "\U0001f36a"
    assert guild_settings.currency(None) == "\U0001f36a"
    guild_settings.set_currency(GUILD, "gems")
    assert guild_settings.set_embed_color(GUILD, "#ff0000") == 0xFF0000
    assert guild_settings.set_prefix(GUILD, "$") == "$"
    with pytest.raises(CommandError):
        guild_settings.set_prefix(GUILD, "too long")
    with pytest.raises(CommandError):
        guild_settings.set_onleave(GUILD, "archive")
    with pytest.raises(CommandError):
        guild_settings.set_transfer(GUILD, 10, 5, 0)
    with pytest.raises(CommandError):
        guild_settings.set_embed_color(GUILD, "red")
    rows = dict(guild_settings.summary(GUILD))
    assert rows["Currency"] == "gems"
    assert rows["Prefix"] == "$"
    assert rows["Embed colour"] == "#ff0000"


def test_embed_definitions(tmp_path: Path) -> None:
    embeds = _make_services(tmp_path).embeds
    embeds.create(GUILD, "Welcome")
    with pytest.raises(CommandError):
        embeds.create(GUILD, "two words")
    with pytest.raises(CommandError):
        embeds.create(GUILD, "welcome")
    embeds.edit(GUILD, "welcome", "title", "Hi {user_name}")
    embeds.edit(GUILD, "welcome", "footer", "bye", icon="https://example.invalid/i.png")
    embeds.edit(GUILD, "welcome", "color", "#00ff00")
    with pytest.raises(CommandError):
        embeds.edit(GUILD, "welcome", "color", "green")
    embeds.add_field(GUILD, "welcome", "Balance", "{user_balance}", inline=True)
    definition = embeds.get_embed(GUILD, "WELCOME")
    assert definition is not None
    assert definition["title"] == "Hi {user_name}"
    assert definition["footer_icon"] == "https://example.invalid/i.png"
    assert definition["color"] == 0x00FF00
    assert definition["fields"] == [{"name": "Balance", "value": "{user_balance}", "inline": True}]
    assert embeds.list_names(GUILD) == ["Welcome"]
    assert embeds.delete(GUILD, "welcome") is True
    assert embeds.get_embed(GUILD, "welcome") is None
