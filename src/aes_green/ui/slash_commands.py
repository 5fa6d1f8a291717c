from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Optional

import discord
from discord import Interaction, app_commands

from aes_green.errors import CommandError
from aes_green.services.command_service import CommandReply
from aes_green.template.context import context_from_interaction, snapshot_user
from aes_green.template.discord_host import DiscordActionHost
from aes_green.ui.shop_confirm import ShopConfirmView, send_reply

if TYPE_CHECKING:
    from aes_green.bot import AesGreenBot

ADMIN = app_commands.checks.has_permissions(manage_guild=True)


def _guild_id(itx: Interaction) -> int:
    if itx.guild_id is None:
        raise CommandError("This command only works in a server.")
    return int(itx.guild_id)


def register_slash_commands(bot: "AesGreenBot") -> None:
    tree = bot.tree
    service = bot.command_service

    def ctx_for(itx: Interaction, target: discord.abc.User | None = None):
        return context_from_interaction(itx, currency=bot.guild_settings.currency(itx.guild_id), target=target)

    @tree.error
    async def on_tree_error(itx: Interaction, error: app_commands.AppCommandError) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, CommandError):
            text = str(original)
        elif isinstance(error, app_commands.CheckFailure):
            text = "Not authorized."
        else:
            bot.logger.log(
                "slash.error",
                error=str(original)[:300],
                command=itx.command.qualified_name if itx.command else "unknown",
            )
            text = f"Command error: {original}"
        await send_reply(itx, CommandReply(content=text, ephemeral=True))

    @tree.command(name="ping", description="Check the bot latency")
    async def ping(itx: Interaction) -> None:
        await send_reply(itx, service.ping(bot.latency * 1000))

    @tree.command(name="balance", description="Show a balance")
    @app_commands.describe(user="Whose balance (defaults to you)")
    async def balance(itx: Interaction, user: Optional[discord.Member] = None) -> None:
        await send_reply(itx, service.balance(_guild_id(itx), snapshot_user(user or itx.user)))

    @tree.command(name="leaderboard", description="Richest members")
    async def leaderboard(itx: Interaction, page: int = 1) -> None:
        await send_reply(itx, service.leaderboard(_guild_id(itx), page))

    give = app_commands.Group(name="give", description="Give currency or items", guild_only=True)

    @give.command(name="currency", description="Give currency to a member")
    async def give_currency(itx: Interaction, user: discord.Member, amount: int) -> None:
        reply = service.give_currency(_guild_id(itx), snapshot_user(itx.user), snapshot_user(user), amount)
        await send_reply(itx, reply)

    @give.command(name="item", description="Give one item to a member")
    async def give_item(itx: Interaction, user: discord.Member, item: str) -> None:
        await send_reply(itx, service.give_item(_guild_id(itx), snapshot_user(itx.user), snapshot_user(user), item))

    shop = app_commands.Group(name="shop", description="Server shop", guild_only=True)

    @shop.command(name="view", description="List shop items")
    async def shop_view(itx: Interaction, page: int = 1) -> None:
        await send_reply(itx, service.shop_view(_guild_id(itx), page))

    @shop.command(name="buy", description="Buy an item")
    async def shop_buy(itx: Interaction, item: str, amount: int = 1) -> None:
        role_ids = [role.id for role in getattr(itx.user, "roles", [])]
        prompt = service.shop_buy_prompt(_guild_id(itx), snapshot_user(itx.user), item, amount)

        async def complete(button_itx: Interaction) -> CommandReply:
            host = await DiscordActionHost.for_interaction(bot, button_itx)
            return await service.shop_buy(ctx_for(itx), host, item, amount, member_role_ids=role_ids)

        if prompt is not None:
            await send_reply(itx, prompt, view=ShopConfirmView(itx.user.id, complete))
            return
        await itx.response.defer()
        await send_reply(itx, await complete(itx))

    @shop.command(name="add", description="(Admin) Add a shop item")
    @ADMIN
    async def shop_add(
        itx: Interaction,
        name: str,
        price: int,
        stock: int = -1,
        role: Optional[discord.Role] = None,
        description: str = "",
    ) -> None:
        reply = service.shop_add(_guild_id(itx), name, price, stock, role.id if role else 0, description)
        await send_reply(itx, reply)

    @shop.command(name="edit", description="(Admin) Edit a shop item")
    @ADMIN
    async def shop_edit(
        itx: Interaction,
        item: str,
        field: Literal["name", "price", "stock", "description", "role", "requirerole", "removerole", "reply", "disablegive"],
        value: str = "",
        role: Optional[discord.Role] = None,
    ) -> None:
        new_value: object = value
        if field in ("role", "requirerole", "removerole"):
            new_value = role.id if role else 0
        elif field in ("price", "stock"):
            try:
                new_value = int(value)
            except ValueError as exc:
                raise CommandError(f"{field} must be a number.") from exc
        elif field == "disablegive":
            new_value = value.strip().lower() in ("1", "true", "yes", "on")
        await send_reply(itx, service.shop_edit(_guild_id(itx), item, field, new_value))

    @shop.command(name="remove", description="(Admin) Remove a shop item")
    @ADMIN
    async def shop_remove(itx: Interaction, item: str) -> None:
        await send_reply(itx, service.shop_remove(_guild_id(itx), item))

    modifybal = app_commands.Group(name="modifybal", description="(Admin) Adjust balances", guild_only=True)

    @modifybal.command(name="add", description="Add currency to a member")
    @ADMIN
    async def modifybal_add(itx: Interaction, user: discord.Member, amount: int) -> None:
        await send_reply(itx, service.modifybal(_guild_id(itx), snapshot_user(user), amount, add=True))

    @modifybal.command(name="remove", description="Remove currency from a member")
    @ADMIN
    async def modifybal_remove(itx: Interaction, user: discord.Member, amount: int) -> None:
        await send_reply(itx, service.modifybal(_guild_id(itx), snapshot_user(user), amount, add=False))

    set_group = app_commands.Group(name="set", description="(Admin) Server settings", guild_only=True)
    currency = app_commands.Group(name="currency", description="Currency settings", parent=set_group)

    @currency.command(name="symbol", description="Set the currency symbol")
    @ADMIN
    async def set_symbol(itx: Interaction, symbol: str) -> None:
        await send_reply(itx, service.set_currency(_guild_id(itx), symbol))

    @currency.command(name="start", description="Set the starting balance")
    @ADMIN
    async def set_start(itx: Interaction, amount: int) -> None:
        await send_reply(itx, service.set_start_balance(_guild_id(itx), amount))

    @currency.command(name="onleave", description="Keep or delete data when a member leaves")
    @ADMIN
    async def set_onleave(itx: Interaction, policy: Literal["save", "delete"]) -> None:
        await send_reply(itx, service.set_onleave(_guild_id(itx), policy))

    @currency.command(name="pet", description="Configure /pet rewards")
    @ADMIN
    async def set_pet(itx: Interaction, minutes: int, amount_min: int, amount_max: int) -> None:
        await send_reply(itx, service.set_activity(_guild_id(itx), "pet", minutes, amount_min, amount_max))

    @currency.command(name="snuggle", description="Configure /snuggle rewards")
    @ADMIN
    async def set_snuggle(itx: Interaction, minutes: int, amount_min: int, amount_max: int) -> None:
        await send_reply(itx, service.set_activity(_guild_id(itx), "snuggle", minutes, amount_min, amount_max))

    @currency.command(name="clickcake", description="Configure /clickcake rewards")
    @ADMIN
    async def set_clickcake(itx: Interaction, minutes: int, amount: int) -> None:
        await send_reply(itx, service.set_activity(_guild_id(itx), "clickcake", minutes, amount))

    @currency.command(name="transfer", description="Configure /give currency limits")
    @ADMIN
    async def set_transfer(itx: Interaction, amount_min: int, amount_max: int, tax: int) -> None:
        await send_reply(itx, service.set_transfer(_guild_id(itx), amount_min, amount_max, tax))

    @currency.command(name="confirmbuy", description="Require confirmation before purchases")
    @ADMIN
    async def set_confirmbuy(itx: Interaction, enable_confirm: bool) -> None:
        await send_reply(itx, service.set_confirm_buy(_guild_id(itx), enable_confirm))

    @set_group.command(name="prefix", description="Set the server command prefix")
    @ADMIN
    async def set_prefix(itx: Interaction, prefix: str = "") -> None:
        await send_reply(itx, service.set_prefix(_guild_id(itx), prefix))

    @set_group.command(name="embedcolor", description="Set the embed colour")
    @ADMIN
    async def set_embedcolor(itx: Interaction, color: str) -> None:
        await send_reply(itx, service.set_embed_color(_guild_id(itx), color))

    @tree.command(name="settings", description="Show server settings")
    @app_commands.guild_only()
    async def settings_cmd(itx: Interaction) -> None:
        await send_reply(itx, service.settings_view(_guild_id(itx)))

    reset = app_commands.Group(name="reset", description="(Admin) Reset data", guild_only=True)

    @reset.command(name="user", description="Reset a member's balance or inventory")
    @ADMIN
    async def reset_user(itx: Interaction, what: Literal["balance", "inventory"], user: discord.Member) -> None:
        await send_reply(itx, service.reset_user(_guild_id(itx), snapshot_user(user), what))

    @reset.command(name="server", description="Reset server data")
    @ADMIN
    async def reset_server(
        itx: Interaction,
        what: Literal["balances", "inventories", "shop", "autoresponders", "embeds", "all"],
    ) -> None:
        await send_reply(itx, service.reset_server(_guild_id(itx), what))

    embed = app_commands.Group(name="embed", description="(Admin) Stored embeds", guild_only=True)

    @embed.command(name="list", description="List stored embeds")
    @ADMIN
    async def embed_list(itx: Interaction) -> None:
        await send_reply(itx, service.embed_list(_guild_id(itx)))

    @embed.command(name="create", description="Create an embed")
    @ADMIN
    async def embed_create(itx: Interaction, name: str) -> None:
        await send_reply(itx, service.embed_create(_guild_id(itx), name))

    @embed.command(name="edit", description="Edit part of an embed")
    @ADMIN
    async def embed_edit(
        itx: Interaction,
        name: str,
        part: Literal["title", "description", "color", "author", "footer", "thumbnail", "image"],
        text: str,
        icon: str = "",
    ) -> None:
        await send_reply(itx, service.embed_edit(_guild_id(itx), name, part, text, icon))

    @embed.command(name="field", description="Append a field to an embed")
    @ADMIN
    async def embed_field(itx: Interaction, name: str, field_name: str, value: str, inline: bool = False) -> None:
        await send_reply(itx, service.embed_field(_guild_id(itx), name, field_name, value, inline))

    @embed.command(name="show", description="Render an embed here")
    @ADMIN
    async def embed_show(itx: Interaction, name: str) -> None:
        _guild_id(itx)
        await itx.response.defer()
        host = await DiscordActionHost.for_interaction(bot, itx)
        await service.embed_show(ctx_for(itx), host, name)

    @embed.command(name="delete", description="Delete an embed")
    @ADMIN
    async def embed_delete(itx: Interaction, name: str) -> None:
        await send_reply(itx, service.embed_delete(_guild_id(itx), name))

    autoresponder = app_commands.Group(name="autoresponder", description="(Admin) Autoresponders", guild_only=True)

    @autoresponder.command(name="add", description="Add an autoresponder")
    @ADMIN
    async def ar_add(
        itx: Interaction,
        trigger: str,
        reply: str,
        matchmode: Literal["exact", "contains", "startswith"] = "exact",
    ) -> None:
        await send_reply(itx, service.autoresponder_add(_guild_id(itx), trigger, reply, matchmode))

    @autoresponder.command(name="editreply", description="Change an autoresponder reply")
    @ADMIN
    async def ar_editreply(itx: Interaction, trigger: str, reply: str) -> None:
        await send_reply(itx, service.autoresponder_edit_reply(_guild_id(itx), trigger, reply))

    @autoresponder.command(name="editmatchmode", description="Change how a trigger matches")
    @ADMIN
    async def ar_editmatchmode(
        itx: Interaction,
        trigger: str,
        matchmode: Literal["exact", "contains", "startswith"],
    ) -> None:
        await send_reply(itx, service.autoresponder_edit_matchmode(_guild_id(itx), trigger, matchmode))

    @autoresponder.command(name="show", description="Preview an autoresponder reply")
    @ADMIN
    async def ar_show(itx: Interaction, trigger: str) -> None:
        _guild_id(itx)
        await send_reply(itx, service.autoresponder_show(ctx_for(itx), trigger))

    @autoresponder.command(name="showraw", description="Show the raw reply template")
    @ADMIN
    async def ar_showraw(itx: Interaction, trigger: str) -> None:
        await send_reply(itx, service.autoresponder_show_raw(_guild_id(itx), trigger))

    @autoresponder.command(name="list", description="List autoresponders")
    @ADMIN
    async def ar_list(itx: Interaction) -> None:
        await send_reply(itx, service.autoresponder_list(_guild_id(itx)))

    @autoresponder.command(name="remove", description="Remove an autoresponder")
    @ADMIN
    async def ar_remove(itx: Interaction, trigger: str) -> None:
        await send_reply(itx, service.autoresponder_remove(_guild_id(itx), trigger))

    @tree.command(name="pet", description="Pet someone for a reward")
    @app_commands.guild_only()
    async def pet(itx: Interaction, user: Optional[discord.Member] = None) -> None:
        target = snapshot_user(user) if user else None
        await send_reply(itx, service.activity(_guild_id(itx), snapshot_user(itx.user), "pet", target))

    @tree.command(name="snuggle", description="Snuggle someone for a reward")
    @app_commands.guild_only()
    async def snuggle(itx: Interaction, user: Optional[discord.Member] = None) -> None:
        target = snapshot_user(user) if user else None
        await send_reply(itx, service.activity(_guild_id(itx), snapshot_user(itx.user), "snuggle", target))

    @tree.command(name="clickcake", description="Click the cake for a reward")
    @app_commands.guild_only()
    async def clickcake(itx: Interaction) -> None:
        await send_reply(itx, service.activity(_guild_id(itx), snapshot_user(itx.user), "clickcake"))

    @tree.command(name="drop", description="(Admin) Drop currency for the fastest picker")
    @app_commands.guild_only()
    @ADMIN
    async def drop(itx: Interaction, amount: int) -> None:
        await send_reply(itx, service.drop(_guild_id(itx), int(itx.channel_id or 0), snapshot_user(itx.user), amount))

    @tree.command(name="pick", description="Pick up a drop")
    @app_commands.guild_only()
    async def pick(itx: Interaction, code: str) -> None:
        await send_reply(itx, service.pick(_guild_id(itx), snapshot_user(itx.user), code))

    for group in (give, shop, modifybal, set_group, reset, embed, autoresponder):
        tree.add_command(group)
