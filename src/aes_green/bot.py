from __future__ import annotations

import asyncio
from typing import Callable

import discord
from discord.ext import commands

from aes_green.config import Settings
from aes_green.errors import CommandError
from aes_green.services.activity_service import ActivityService
from aes_green.services.autoresponder_service import AutoresponderService
from aes_green.services.command_service import CommandReply, CommandService
from aes_green.services.drop_service import DropService
from aes_green.services.economy_service import EconomyService
from aes_green.services.embed_service import EmbedService
from aes_green.services.guild_settings_service import GuildSettingsService
from aes_green.services.logger_service import LoggerService
from aes_green.services.shop_service import ShopService
from aes_green.storage import MessagePackStore
from aes_green.template.context import context_from_message, snapshot_user
from aes_green.template.discord_host import DiscordActionHost, to_discord_embed
from aes_green.template.engine import TemplateEngine
from aes_green.ui.shop_confirm import ShopConfirmView
from aes_green.ui.slash_commands import register_slash_commands
from aes_green.utils.discord_utils import has_guild_permission, split_for_discord
from aes_green.utils.mentions import parse_role_id

TRUTHY = ("1", "true", "yes", "on", "enable", "enabled")


def split_icon(text: str) -> tuple[str, str]:
    if "|" not in text:
        return text.strip(), ""
    value, icon = text.rsplit("|", 1)
    return value.strip(), icon.strip()


def split_amount(text: str) -> tuple[str, int]:
    parts = (text or "").strip().rsplit(" ", 1)
    if len(parts) == 2 and parts[1].isdigit():
        return parts[0].strip(), int(parts[1])
    return (text or "").strip(), 1


class AesGreenBot(commands.Bot):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True
        intents.reactions = True
        super().__init__(command_prefix=self._resolve_prefix, intents=intents, help_command=None)
        self.settings = settings
        self.store = MessagePackStore(settings.store_path)
        self.logger = LoggerService(self.store)
        self.guild_settings = GuildSettingsService(settings, self.store, self.logger)
        self.economy = EconomyService(self.store, self.logger, start_balance=self.guild_settings.start_balance)
        self.shop = ShopService(self.store, self.logger, self.economy)
        self.embeds = EmbedService(self.store, self.logger)
        self.autoresponders = AutoresponderService(
            self.store, self.logger, cooldown_sec=settings.autoresponder_cooldown_sec
        )
        self.activities = ActivityService(self.store, self.logger, self.economy, self.guild_settings)
        self.drops = DropService(self.store, self.logger, self.economy)
        self.engine = TemplateEngine(
            embeds=self.embeds,
            diagnostics=self.logger,
            timezone_name=settings.date_timezone,
            default_embed_color=settings.embed_color,
        )
        self.command_service = CommandService(
            self.logger,
            economy=self.economy,
            guild_settings=self.guild_settings,
            shop=self.shop,
            embeds=self.embeds,
            autoresponders=self.autoresponders,
            activities=self.activities,
            drops=self.drops,
            engine=self.engine,
        )
        self._autosave_task: asyncio.Task | None = None

    async def _resolve_prefix(self, bot: commands.Bot, message: discord.Message) -> list[str]:
        prefixes = list(self.settings.command_prefixes)
        if message.guild is not None:
            guild_prefix = self.guild_settings.prefix(message.guild.id)
            if guild_prefix and guild_prefix not in prefixes:
                prefixes.insert(0, guild_prefix)
        return prefixes

    async def setup_hook(self) -> None:
        await self.store.load()
        self._autosave_task = asyncio.create_task(self.store.autosave_loop(), name="msgpack-autosave")
        self._register_commands()
        register_slash_commands(self)
        try:
            if self.settings.guild_id:
                guild_obj = discord.Object(id=self.settings.guild_id)
                self.tree.copy_global_to(guild=guild_obj)
                synced = await self.tree.sync(guild=guild_obj)
            else:
                synced = await self.tree.sync()
            self.logger.log("slash.synced", count=len(synced), guild_id=self.settings.guild_id)
        except discord.HTTPException as exc:
            self.logger.log("slash.sync_failed", error=str(exc)[:300])

    async def close(self) -> None:
        if self._autosave_task is not None:
            self._autosave_task.cancel()
        if self.store.dirty:
            await self.store.save()
        await super().close()

    def _admin_check(self) -> Callable[[commands.Context], bool]:
        async def predicate(ctx: commands.Context) -> bool:
            return ctx.guild is not None and has_guild_permission(ctx.author, "manage_guild")

        return commands.check(predicate)

    def _guild_check(self) -> Callable[[commands.Context], bool]:
        async def predicate(ctx: commands.Context) -> bool:
            return ctx.guild is not None

        return commands.check(predicate)

    async def _send_reply(self, ctx: commands.Context, reply: CommandReply) -> None:
        embed = to_discord_embed(reply.embed) if reply.embed is not None else None
        chunks = split_for_discord(reply.content)
        if not chunks:
            if embed is not None:
                await ctx.send(embed=embed)
            return
        for index, chunk in enumerate(chunks):
            last = index == len(chunks) - 1
            await ctx.send(chunk, embed=embed if last else None)

    def _register_commands(self) -> None:
        service = self.command_service

        @self.command(name="ping")
        async def ping(ctx: commands.Context) -> None:
            await self._send_reply(ctx, service.ping(self.latency * 1000))

        @self.command(name="help")
        async def help_cmd(ctx: commands.Context) -> None:
            names = sorted(command.name for command in self.commands)
            prefixes = ", ".join(f"`{prefix}`" for prefix in await self._resolve_prefix(self, ctx.message))
            await ctx.send(f"Prefixes: {prefixes}\nCommands: {', '.join(names)}\nSlash versions are available with `/`.")

        @self.command(name="balance", aliases=["bal"])
        @self._guild_check()
        async def balance(ctx: commands.Context, member: discord.Member | None = None) -> None:
            await self._send_reply(ctx, service.balance(ctx.guild.id, snapshot_user(member or ctx.author)))

        @self.command(name="leaderboard", aliases=["lb"])
        @self._guild_check()
        async def leaderboard(ctx: commands.Context, page: int = 1) -> None:
            await self._send_reply(ctx, service.leaderboard(ctx.guild.id, page))

        @self.group(name="give", invoke_without_command=True)
        @self._guild_check()
        async def give_group(ctx: commands.Context) -> None:
            await ctx.send(f"Usage: `{ctx.clean_prefix}give currency @user amount` or `{ctx.clean_prefix}give item @user item`")

        @give_group.command(name="currency")
        async def give_currency(ctx: commands.Context, member: discord.Member, amount: int) -> None:
            reply = service.give_currency(ctx.guild.id, snapshot_user(ctx.author), snapshot_user(member), amount)
            await self._send_reply(ctx, reply)

        @give_group.command(name="item")
        async def give_item(ctx: commands.Context, member: discord.Member, *, item: str) -> None:
            reply = service.give_item(ctx.guild.id, snapshot_user(ctx.author), snapshot_user(member), item)
            await self._send_reply(ctx, reply)

        @self.group(name="shop", invoke_without_command=True)
        @self._guild_check()
        async def shop_group(ctx: commands.Context) -> None:
            await self._send_reply(ctx, service.shop_view(ctx.guild.id, 1))

        @shop_group.command(name="view")
        async def shop_view(ctx: commands.Context, page: int = 1) -> None:
            await self._send_reply(ctx, service.shop_view(ctx.guild.id, page))

        @shop_group.command(name="buy")
        async def shop_buy(ctx: commands.Context, *, item_and_amount: str) -> None:
            item, amount = split_amount(item_and_amount)
            role_ids = [role.id for role in getattr(ctx.author, "roles", [])]
            prompt = service.shop_buy_prompt(ctx.guild.id, snapshot_user(ctx.author), item, amount)

            async def complete(_: discord.Interaction | None = None) -> CommandReply:
                host = await DiscordActionHost.for_message(self, ctx.message)
                message_ctx = context_from_message(ctx.message, currency=self.guild_settings.currency(ctx.guild.id))
                return await service.shop_buy(message_ctx, host, item, amount, member_role_ids=role_ids)

            if prompt is not None:
                await ctx.send(embed=to_discord_embed(prompt.embed), view=ShopConfirmView(ctx.author.id, complete))
                return
            await self._send_reply(ctx, await complete())

        @shop_group.command(name="add")
        @self._admin_check()
        async def shop_add(
            ctx: commands.Context,
            name: str,
            price: int,
            stock: int = -1,
            role: discord.Role | None = None,
            *,
            description: str = "",
        ) -> None:
            reply = service.shop_add(ctx.guild.id, name, price, stock, role.id if role else 0, description)
            await self._send_reply(ctx, reply)

        @shop_group.command(name="edit")
        @self._admin_check()
        async def shop_edit(ctx: commands.Context, item: str, field: str, *, value: str = "") -> None:
            field = field.lower()
            new_value: object = value
            if field in ("role", "requirerole", "removerole"):
                new_value = parse_role_id(value) or 0
            elif field in ("price", "stock"):
                try:
                    new_value = int(value)
                except ValueError as exc:
                    raise CommandError(f"{field} must be a number.") from exc
            elif field == "disablegive":
                new_value = value.strip().lower() in TRUTHY
            await self._send_reply(ctx, service.shop_edit(ctx.guild.id, item, field, new_value))

        @shop_group.command(name="remove")
        @self._admin_check()
        async def shop_remove(ctx: commands.Context, *, item: str) -> None:
            await self._send_reply(ctx, service.shop_remove(ctx.guild.id, item))

        @self.group(name="modifybal", invoke_without_command=True)
        @self._admin_check()
        async def modifybal_group(ctx: commands.Context) -> None:
            await ctx.send(f"Usage: `{ctx.clean_prefix}modifybal add|remove @user amount`")

        @modifybal_group.command(name="add")
        async def modifybal_add(ctx: commands.Context, member: discord.Member, amount: int) -> None:
            await self._send_reply(ctx, service.modifybal(ctx.guild.id, snapshot_user(member), amount, add=True))

        @modifybal_group.command(name="remove")
        async def modifybal_remove(ctx: commands.Context, member: discord.Member, amount: int) -> None:
            await self._send_reply(ctx, service.modifybal(ctx.guild.id, snapshot_user(member), amount, add=False))

        @self.group(name="set", invoke_without_command=True)
        @self._admin_check()
        async def set_group(ctx: commands.Context) -> None:
            await ctx.send(f"Usage: `{ctx.clean_prefix}set currency|prefix|embedcolor ...`")

        @set_group.group(name="currency", invoke_without_command=True)
        async def set_currency(ctx: commands.Context, *, symbol: str = "") -> None:
            if not symbol:
                await ctx.send(f"Currency: {self.guild_settings.currency(ctx.guild.id)}")
                return
            await self._send_reply(ctx, service.set_currency(ctx.guild.id, symbol))

        @set_currency.command(name="symbol")
        async def set_currency_symbol(ctx: commands.Context, *, symbol: str) -> None:
            await self._send_reply(ctx, service.set_currency(ctx.guild.id, symbol))

        @set_currency.command(name="start")
        async def set_start(ctx: commands.Context, amount: int) -> None:
            await self._send_reply(ctx, service.set_start_balance(ctx.guild.id, amount))

        @set_currency.command(name="onleave")
        async def set_onleave(ctx: commands.Context, policy: str) -> None:
            await self._send_reply(ctx, service.set_onleave(ctx.guild.id, policy))

        @set_currency.command(name="pet")
        async def set_pet(ctx: commands.Context, minutes: int, amount_min: int, amount_max: int) -> None:
            await self._send_reply(ctx, service.set_activity(ctx.guild.id, "pet", minutes, amount_min, amount_max))

        @set_currency.command(name="snuggle")
        async def set_snuggle(ctx: commands.Context, minutes: int, amount_min: int, amount_max: int) -> None:
            await self._send_reply(ctx, service.set_activity(ctx.guild.id, "snuggle", minutes, amount_min, amount_max))

        @set_currency.command(name="clickcake")
        async def set_clickcake(ctx: commands.Context, minutes: int, amount: int) -> None:
            await self._send_reply(ctx, service.set_activity(ctx.guild.id, "clickcake", minutes, amount))

        @set_currency.command(name="transfer")
        async def set_transfer(ctx: commands.Context, amount_min: int, amount_max: int, tax: int) -> None:
            await self._send_reply(ctx, service.set_transfer(ctx.guild.id, amount_min, amount_max, tax))

        @set_currency.command(name="confirmbuy")
        async def set_confirmbuy(ctx: commands.Context, enabled: str) -> None:
            await self._send_reply(ctx, service.set_confirm_buy(ctx.guild.id, enabled.strip().lower() in TRUTHY))

        @set_group.command(name="prefix")
        async def set_prefix(ctx: commands.Context, prefix: str = "") -> None:
            await self._send_reply(ctx, service.set_prefix(ctx.guild.id, prefix))

        @set_group.command(name="embedcolor")
        async def set_embedcolor(ctx: commands.Context, color: str) -> None:
            await self._send_reply(ctx, service.set_embed_color(ctx.guild.id, color))

        @self.command(name="settings")
        @self._guild_check()
        async def settings_cmd(ctx: commands.Context) -> None:
            await self._send_reply(ctx, service.settings_view(ctx.guild.id))

        @self.group(name="reset", invoke_without_command=True)
        @self._admin_check()
        async def reset_group(ctx: commands.Context) -> None:
            await ctx.send(
                f"Usage: `{ctx.clean_prefix}reset user balance|inventory @user` or "
                f"`{ctx.clean_prefix}reset server balances|inventories|shop|autoresponders|embeds|all`"
            )

        @reset_group.command(name="user")
        async def reset_user(ctx: commands.Context, what: str, member: discord.Member) -> None:
            await self._send_reply(ctx, service.reset_user(ctx.guild.id, snapshot_user(member), what))

        @reset_group.command(name="server")
        async def reset_server(ctx: commands.Context, what: str) -> None:
            await self._send_reply(ctx, service.reset_server(ctx.guild.id, what))

        @self.group(name="embed", invoke_without_command=True)
        @self._admin_check()
        async def embed_group(ctx: commands.Context) -> None:
            await self._send_reply(ctx, service.embed_list(ctx.guild.id))

        @embed_group.command(name="list")
        async def embed_list(ctx: commands.Context) -> None:
            await self._send_reply(ctx, service.embed_list(ctx.guild.id))

        @embed_group.command(name="create")
        async def embed_create(ctx: commands.Context, name: str) -> None:
            await self._send_reply(ctx, service.embed_create(ctx.guild.id, name))

        @embed_group.command(name="edit")
        async def embed_edit(ctx: commands.Context, name: str, part: str, *, text: str = "") -> None:
            value, icon = split_icon(text) if part.lower() in ("author", "footer") else (text, "")
            await self._send_reply(ctx, service.embed_edit(ctx.guild.id, name, part, value, icon))

        @embed_group.command(name="field")
        async def embed_field(ctx: commands.Context, name: str, field_name: str, *, value: str) -> None:
            await self._send_reply(ctx, service.embed_field(ctx.guild.id, name, field_name, value))

        @embed_group.command(name="show")
        async def embed_show(ctx: commands.Context, name: str) -> None:
            host = await DiscordActionHost.for_message(self, ctx.message)
            message_ctx = context_from_message(ctx.message, currency=self.guild_settings.currency(ctx.guild.id))
            await service.embed_show(message_ctx, host, name)

        @embed_group.command(name="delete")
        async def embed_delete(ctx: commands.Context, name: str) -> None:
            await self._send_reply(ctx, service.embed_delete(ctx.guild.id, name))

        @self.group(name="autoresponder", aliases=["ar"], invoke_without_command=True)
        @self._admin_check()
        async def ar_group(ctx: commands.Context) -> None:
            await self._send_reply(ctx, service.autoresponder_list(ctx.guild.id))

        @ar_group.command(name="add")
        async def ar_add(ctx: commands.Context, trigger: str, *, reply: str) -> None:
            await self._send_reply(ctx, service.autoresponder_add(ctx.guild.id, trigger, reply))

        @ar_group.command(name="editreply")
        async def ar_editreply(ctx: commands.Context, trigger: str, *, reply: str) -> None:
            await self._send_reply(ctx, service.autoresponder_edit_reply(ctx.guild.id, trigger, reply))

        @ar_group.command(name="editmatchmode")
        async def ar_editmatchmode(ctx: commands.Context, trigger: str, matchmode: str) -> None:
            await self._send_reply(ctx, service.autoresponder_edit_matchmode(ctx.guild.id, trigger, matchmode))

        @ar_group.command(name="show")
        async def ar_show(ctx: commands.Context, *, trigger: str) -> None:
            message_ctx = context_from_message(ctx.message, currency=self.guild_settings.currency(ctx.guild.id))
            await self._send_reply(ctx, service.autoresponder_show(message_ctx, trigger))

        @ar_group.command(name="showraw")
        async def ar_showraw(ctx: commands.Context, *, trigger: str) -> None:
            await self._send_reply(ctx, service.autoresponder_show_raw(ctx.guild.id, trigger))

        @ar_group.command(name="list")
        async def ar_list(ctx: commands.Context) -> None:
            await self._send_reply(ctx, service.autoresponder_list(ctx.guild.id))

        @ar_group.command(name="remove")
        async def ar_remove(ctx: commands.Context, *, trigger: str) -> None:
            await self._send_reply(ctx, service.autoresponder_remove(ctx.guild.id, trigger))

        @self.command(name="pet")
        @self._guild_check()
        async def pet(ctx: commands.Context, member: discord.Member | None = None) -> None:
            target = snapshot_user(member) if member else None
            await self._send_reply(ctx, service.activity(ctx.guild.id, snapshot_user(ctx.author), "pet", target))

        @self.command(name="snuggle")
        @self._guild_check()
        async def snuggle(ctx: commands.Context, member: discord.Member | None = None) -> None:
            target = snapshot_user(member) if member else None
            await self._send_reply(ctx, service.activity(ctx.guild.id, snapshot_user(ctx.author), "snuggle", target))

        @self.command(name="clickcake")
        @self._guild_check()
        async def clickcake(ctx: commands.Context) -> None:
            await self._send_reply(ctx, service.activity(ctx.guild.id, snapshot_user(ctx.author), "clickcake"))

        @self.command(name="drop")
        @self._admin_check()
        async def drop(ctx: commands.Context, amount: int) -> None:
            await self._send_reply(ctx, service.drop(ctx.guild.id, ctx.channel.id, snapshot_user(ctx.author), amount))

        @self.command(name="pick")
        @self._guild_check()
        async def pick(ctx: commands.Context, code: str) -> None:
            await self._send_reply(ctx, service.pick(ctx.guild.id, snapshot_user(ctx.author), code))

    async def on_ready(self) -> None:
        self.logger.log("bot.ready", user=str(self.user), guilds=len(self.guilds))

    async def on_command_error(self, ctx: commands.Context, exception: Exception) -> None:
        if isinstance(exception, commands.CommandNotFound):
            return
        if isinstance(exception, commands.CheckFailure):
            await ctx.send("Not authorized.")
            return
        original = getattr(exception, "original", exception)
        if isinstance(original, CommandError):
            await ctx.send(str(original))
            return
        if isinstance(exception, (commands.UserInputError, commands.BadArgument)):
            usage = f"{ctx.clean_prefix}{ctx.command.qualified_name} {ctx.command.signature}" if ctx.command else ""
            await ctx.send(f"{exception}\nUsage: `{usage.strip()}`")
            return
        self.logger.log("command.error", error=str(original)[:300], command=ctx.command.name if ctx.command else "unknown")
        await ctx.send(f"Command error: {original}")

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        if message.guild is not None:
            await self._run_autoresponders(message)
        await self.process_commands(message)

    async def _run_autoresponders(self, message: discord.Message) -> None:
        try:
            hits = self.command_service.match_autoresponders(message.guild.id, message.author.id, message.content)
            if not hits:
                return
            host = await DiscordActionHost.for_message(self, message)
            ctx = context_from_message(message, currency=self.guild_settings.currency(message.guild.id))
            await self.command_service.fire_autoresponders(ctx, host, hits)
        except Exception as exc:  # noqa: BLE001
            self.logger.log("autoresponder.error", guild_id=message.guild.id, error=str(exc)[:300])

    async def on_member_remove(self, member: discord.Member) -> None:
        if self.command_service.handle_member_remove(member.guild.id, member.id):
            self.logger.log("economy.onleave_deleted", guild_id=member.guild.id, user_id=member.id)


def main() -> None:
    settings = Settings.load()
    bot = AesGreenBot(settings)
    bot.run(settings.discord_token)
