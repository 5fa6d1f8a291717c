from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from aes_green.errors import CommandError
from aes_green.services.activity_service import ActivityService
from aes_green.services.autoresponder_service import AutoresponderHit, AutoresponderService
from aes_green.services.drop_service import DropService
from aes_green.services.economy_service import EconomyService
from aes_green.services.embed_service import EmbedService
from aes_green.services.guild_settings_service import ACTIVITY_NAMES, GuildSettingsService
from aes_green.services.logger_service import LoggerService
from aes_green.services.shop_service import UNLIMITED_STOCK, ShopService
from aes_green.template.context import EvaluationContext, UserSnapshot
from aes_green.template.engine import TemplateEngine
from aes_green.template.executor import ExecutionReport
from aes_green.template.host import ActionHost, EmbedPayload, RoleRef

PAGE_SIZE = 10
ACTIVITY_LINES = {
    "pet": ("🐾 {actor} pets {target} and earns **{reward:,}** {currency}!", "🐾 {actor} gets some pets and earns **{reward:,}** {currency}!"),
    "snuggle": ("🤗 {actor} snuggles {target} and earns **{reward:,}** {currency}!", "🤗 {actor} snuggles up and earns **{reward:,}** {currency}!"),
    "clickcake": ("🍰 {actor} clicks the cake and earns **{reward:,}** {currency}!", "🍰 {actor} clicks the cake and earns **{reward:,}** {currency}!"),
}
RESET_SERVER_TARGETS = ("balances", "inventories", "shop", "autoresponders", "embeds", "all")
RESET_USER_TARGETS = ("balance", "inventory")


@dataclass
class CommandReply:
    content: str = ""
    embed: EmbedPayload | None = None
    ephemeral: bool = False


class CommandService:
    def __init__(
        self,
        logger: LoggerService,
        *,
        economy: EconomyService,
        guild_settings: GuildSettingsService,
        shop: ShopService,
        embeds: EmbedService,
        autoresponders: AutoresponderService,
        activities: ActivityService,
        drops: DropService,
        engine: TemplateEngine,
    ) -> None:
        self.logger = logger
        self.economy = economy
        self.guild_settings = guild_settings
        self.shop = shop
        self.embeds = embeds
        self.autoresponders = autoresponders
        self.activities = activities
        self.drops = drops
        self.engine = engine

    def _card(self, guild_id: int, title: str, description: str) -> CommandReply:
        return CommandReply(
            embed=EmbedPayload(title=title, description=description, color=self.guild_settings.embed_color(guild_id))
        )

    def _money(self, guild_id: int, amount: int) -> str:
        return f"{int(amount):,} {self.guild_settings.currency(guild_id)}"

    # economy

    def ping(self, latency_ms: float) -> CommandReply:
        return CommandReply(content=f"🏓 Pong! {int(latency_ms)}ms")

    def balance(self, guild_id: int, user: UserSnapshot) -> CommandReply:
        record = self.economy.scoped(guild_id).get_record(user.id)
        lines = [
            f"**{user.shown_name}** has {self._money(guild_id, record.balance)}",
            f"Bank: {self._money(guild_id, record.bank_balance)}",
        ]
        return self._card(guild_id, "Balance", "\n".join(lines))

    def leaderboard(self, guild_id: int, page: int = 1) -> CommandReply:
        rows, pages = self.economy.leaderboard(guild_id, page=page, per_page=PAGE_SIZE)
        page = min(max(1, int(page)), pages)
        if not rows:
            return self._card(guild_id, "Leaderboard", "Nobody has any currency yet.")
        start = (page - 1) * PAGE_SIZE
        lines = [f"**{start + index}.** <@{user_id}> {self._money(guild_id, amount)}" for index, (user_id, amount) in enumerate(rows, 1)]
        return self._card(guild_id, f"Leaderboard ({page}/{pages})", "\n".join(lines))

    def give_currency(self, guild_id: int, sender: UserSnapshot, receiver: UserSnapshot, amount: int) -> CommandReply:
        if receiver.bot:
            raise CommandError("Bots cannot hold currency.")
        config = self.guild_settings.transfer(guild_id)
        received, tax = self.economy.transfer(
            guild_id,
            sender.id,
            receiver.id,
            amount,
            minimum=config["min"],
            maximum=config["max"],
            tax_percent=config["tax"],
        )
        text = f"{sender.mention} gave {receiver.mention} {self._money(guild_id, received)}."
        if tax:
            text += f" (tax: {self._money(guild_id, tax)})"
        return CommandReply(content=text)

    def give_item(self, guild_id: int, sender: UserSnapshot, receiver: UserSnapshot, item_name: str) -> CommandReply:
        if receiver.bot:
            raise CommandError("Bots cannot hold items.")
        shop_item = self.shop.get_item(guild_id, item_name)
        if shop_item is not None:
            if shop_item.get("disablegive"):
                raise CommandError(f"{shop_item['name']} cannot be given.")
            item_name = shop_item["name"]
        self.economy.give_item(guild_id, sender.id, receiver.id, item_name.strip(), 1)
        return CommandReply(content=f"{sender.mention} gave {receiver.mention} 1 × {item_name.strip()}.")

    def modifybal(self, guild_id: int, target: UserSnapshot, amount: int, *, add: bool) -> CommandReply:
        if int(amount) < 1:
            raise CommandError("Amount must be at least 1.")
        delta = int(amount) if add else -int(amount)
        balance = self.economy.scoped(guild_id).add_balance(target.id, delta)
        self.logger.log("economy.modifybal", guild_id=int(guild_id), user_id=target.id, delta=delta)
        verb = "Added" if add else "Removed"
        direction = "to" if add else "from"
        return CommandReply(
            content=f"{verb} {self._money(guild_id, amount)} {direction} {target.mention}. New balance: {self._money(guild_id, balance)}."
        )

    # shop

    def shop_view(self, guild_id: int, page: int = 1) -> CommandReply:
        items, page, pages = self.shop.page(guild_id, page, PAGE_SIZE)
        if not items:
            return self._card(guild_id, "Shop", "The shop is empty.")
        lines = []
        for item in items:
            stock = int(item.get("stock", UNLIMITED_STOCK))
            stock_text = "∞" if stock == UNLIMITED_STOCK else str(stock)
            line = f"**{item['name']}** {self._money(guild_id, item['price'])} (stock: {stock_text})"
            if item.get("description"):
                line += f"\n{item['description']}"
            lines.append(line)
        return self._card(guild_id, f"Shop ({page}/{pages})", "\n\n".join(lines))

    def shop_buy_prompt(self, guild_id: int, user: UserSnapshot, item_name: str, amount: int = 1) -> CommandReply | None:
        """Confirmation card for a purchase, or None when the guild buys without confirming."""
        if not self.guild_settings.confirm_buy(guild_id):
            return None
        amount = int(amount)
        if amount < 1:
            raise CommandError("Amount must be at least 1.")
        item = self.shop.require_item(guild_id, item_name)
        cost = int(item.get("price", 0)) * amount
        balance = self.economy.scoped(guild_id).balance(user.id)
        return self._card(
            guild_id,
            "Confirm purchase",
            f"{user.mention}, buy {amount} × **{item['name']}** for {self._money(guild_id, cost)}?\n"
            f"Your balance: {self._money(guild_id, balance)}",
        )

    async def shop_buy(
        self,
        ctx: EvaluationContext,
        host: ActionHost,
        item_name: str,
        amount: int = 1,
        *,
        member_role_ids: Iterable[int] = (),
    ) -> CommandReply:
        guild_id = ctx.scope_id
        purchase = self.shop.purchase(guild_id, ctx.actor.id, item_name, amount, member_role_ids=member_role_ids)
        item = purchase.item
        if host.can_manage_roles():
            for field, add in (("role", True), ("removerole", False)):
                role_id = int(item.get(field, 0) or 0)
                if not role_id:
                    continue
                try:
                    if add:
                        await host.add_role(ctx.actor.id, RoleRef(id=role_id))
                    else:
                        await host.remove_role(ctx.actor.id, RoleRef(id=role_id))
                except Exception as exc:  # noqa: BLE001
                    self.logger.log("shop.role_failed", guild_id=guild_id, role_id=role_id, error=str(exc)[:300])
        if item.get("reply"):
            await self.engine.evaluate(str(item["reply"]), ctx, economy=self.economy.scoped(guild_id), host=host)
        return CommandReply(
            content=(
                f"{ctx.actor.mention} bought {purchase.amount} × {item['name']} for {self._money(guild_id, purchase.cost)}. "
                f"Balance: {self._money(guild_id, purchase.balance)}."
            )
        )

    def shop_add(self, guild_id: int, name: str, price: int, stock: int, role_id: int, description: str) -> CommandReply:
        item = self.shop.add_item(guild_id, name, price, stock=stock, description=description, role_id=role_id)
        return CommandReply(content=f"Added **{item['name']}** to the shop for {self._money(guild_id, item['price'])}.")

    def shop_edit(self, guild_id: int, name: str, field: str, value: object) -> CommandReply:
        item = self.shop.edit_item(guild_id, name, field, value)
        return CommandReply(content=f"Updated {field} of **{item['name']}**.")

    def shop_remove(self, guild_id: int, name: str) -> CommandReply:
        if not self.shop.remove_item(guild_id, name):
            raise CommandError(f"No shop item named `{name}`.")
        return CommandReply(content=f"Removed **{name}** from the shop.")

    # settings

    def set_currency(self, guild_id: int, symbol: str) -> CommandReply:
        return CommandReply(content=f"Currency set to {self.guild_settings.set_currency(guild_id, symbol)}.")

    def set_start_balance(self, guild_id: int, amount: int) -> CommandReply:
        value = self.guild_settings.set_start_balance(guild_id, amount)
        return CommandReply(content=f"New members start with {self._money(guild_id, value)}.")

    def set_onleave(self, guild_id: int, policy: str) -> CommandReply:
        return CommandReply(content=f"On-leave policy set to `{self.guild_settings.set_onleave(guild_id, policy)}`.")

    def set_activity(self, guild_id: int, name: str, cooldown_min: int, low: int, high: int | None = None) -> CommandReply:
        config = self.guild_settings.set_activity(guild_id, name, cooldown_min, low, high)
        return CommandReply(
            content=f"{name} now pays {config['min']:,}-{config['max']:,} every {config['cooldown_min']} minutes."
        )

    def set_transfer(self, guild_id: int, minimum: int, maximum: int, tax: int) -> CommandReply:
        config = self.guild_settings.set_transfer(guild_id, minimum, maximum, tax)
        return CommandReply(
            content=f"Transfers: min {config['min']:,}, max {config['max'] or 'none'}, tax {config['tax']}%."
        )

    def set_prefix(self, guild_id: int, prefix: str) -> CommandReply:
        value = self.guild_settings.set_prefix(guild_id, prefix)
        return CommandReply(content=f"Server prefix set to `{value}`." if value else "Server prefix cleared.")

    def set_embed_color(self, guild_id: int, raw: str) -> CommandReply:
        return CommandReply(content=f"Embed colour set to #{self.guild_settings.set_embed_color(guild_id, raw):06x}.")

    def set_confirm_buy(self, guild_id: int, enabled: bool) -> CommandReply:
        value = self.guild_settings.set_confirm_buy(guild_id, enabled)
        return CommandReply(content=f"Purchase confirmation {'enabled' if value else 'disabled'}.")

    def settings_view(self, guild_id: int) -> CommandReply:
        lines = [f"**{label}:** {value}" for label, value in self.guild_settings.summary(guild_id)]
        return self._card(guild_id, "Settings", "\n".join(lines))

    # resets

    def reset_user(self, guild_id: int, user: UserSnapshot, what: str) -> CommandReply:
        what = (what or "").strip().lower()
        if what not in RESET_USER_TARGETS:
            raise CommandError(f"Reset one of: {', '.join(RESET_USER_TARGETS)}.")
        self.economy.reset_user(guild_id, user.id, balance=what == "balance", inventory=what == "inventory")
        return CommandReply(content=f"Reset the {what} of {user.mention}.")

    def reset_server(self, guild_id: int, what: str) -> CommandReply:
        what = (what or "").strip().lower()
        if what not in RESET_SERVER_TARGETS:
            raise CommandError(f"Reset one of: {', '.join(RESET_SERVER_TARGETS)}.")
        everything = what == "all"
        if everything or what in ("balances", "inventories"):
            self.economy.reset_guild(
                guild_id,
                balances=everything or what == "balances",
                inventories=everything or what == "inventories",
            )
        if everything or what == "shop":
            self.shop.reset(guild_id)
        if everything or what == "autoresponders":
            self.autoresponders.reset(guild_id)
        if everything or what == "embeds":
            self.embeds.reset(guild_id)
        return CommandReply(content=f"Server {what} reset.")

    # embeds

    def embed_list(self, guild_id: int) -> CommandReply:
        names = self.embeds.list_names(guild_id)
        return self._card(guild_id, "Embeds", "\n".join(f"• {name}" for name in names) or "No embeds yet.")

    def embed_create(self, guild_id: int, name: str) -> CommandReply:
        definition = self.embeds.create(guild_id, name)
        return CommandReply(content=f"Created embed `{definition['name']}`. Use it in replies with `{{embed:{definition['name']}}}`.")

    def embed_edit(self, guild_id: int, name: str, field: str, value: str, icon: str = "") -> CommandReply:
        self.embeds.edit(guild_id, name, field, value, icon=icon)
        return CommandReply(content=f"Updated {field} of embed `{name}`.")

    def embed_field(self, guild_id: int, name: str, field_name: str, value: str, inline: bool = False) -> CommandReply:
        self.embeds.add_field(guild_id, name, field_name, value, inline=inline)
        return CommandReply(content=f"Added field `{field_name}` to embed `{name}`.")

    async def embed_show(self, ctx: EvaluationContext, host: ActionHost, name: str) -> ExecutionReport:
        if self.embeds.get_embed(ctx.scope_id, name) is None:
            raise CommandError(f"No embed named `{name}`.")
        return await self.engine.evaluate(
            "{embed:" + name.strip() + "}", ctx, economy=self.economy.scoped(ctx.scope_id), host=host
        )

    def embed_delete(self, guild_id: int, name: str) -> CommandReply:
        if not self.embeds.delete(guild_id, name):
            raise CommandError(f"No embed named `{name}`.")
        return CommandReply(content=f"Deleted embed `{name}`.")

    # autoresponders

    def autoresponder_add(self, guild_id: int, trigger: str, reply: str, matchmode: str = "exact") -> CommandReply:
        row = self.autoresponders.add(guild_id, trigger, reply, matchmode)
        return CommandReply(content=f"Autoresponder for `{row['trigger']}` added ({row['matchmode']}).")

    def autoresponder_edit_reply(self, guild_id: int, trigger: str, reply: str) -> CommandReply:
        row = self.autoresponders.edit_reply(guild_id, trigger, reply)
        return CommandReply(content=f"Reply of `{row['trigger']}` updated.")

    def autoresponder_edit_matchmode(self, guild_id: int, trigger: str, matchmode: str) -> CommandReply:
        row = self.autoresponders.edit_matchmode(guild_id, trigger, matchmode)
        return CommandReply(content=f"`{row['trigger']}` now matches with `{row['matchmode']}`.")

    def autoresponder_show(self, ctx: EvaluationContext, trigger: str) -> CommandReply:
        row = self.autoresponders.require(ctx.scope_id, trigger)
        preview = self.engine.preview(str(row["reply"]), ctx, self.economy.scoped(ctx.scope_id))
        return self._card(ctx.scope_id, f"Autoresponder: {row['trigger']}", preview or "(empty)")

    def autoresponder_show_raw(self, guild_id: int, trigger: str) -> CommandReply:
        row = self.autoresponders.require(guild_id, trigger)
        raw = str(row["reply"]).replace("```", "``​`")
        return CommandReply(content=f"**{row['trigger']}** ({row['matchmode']})\n```\n{raw}\n```")

    def autoresponder_list(self, guild_id: int) -> CommandReply:
        rows = self.autoresponders.list_all(guild_id)
        lines = [f"• `{row['trigger']}` ({row['matchmode']})" for row in rows]
        return self._card(guild_id, "Autoresponders", "\n".join(lines) or "No autoresponders yet.")

    def autoresponder_remove(self, guild_id: int, trigger: str) -> CommandReply:
        if not self.autoresponders.remove(guild_id, trigger):
            raise CommandError(f"No autoresponder for `{trigger}`.")
        return CommandReply(content=f"Removed autoresponder `{trigger}`.")

    def match_autoresponders(self, guild_id: int, user_id: int, content: str) -> list[AutoresponderHit]:
        return self.autoresponders.match(guild_id, user_id, content)

    async def fire_autoresponders(
        self,
        ctx: EvaluationContext,
        host: ActionHost,
        hits: list[AutoresponderHit],
    ) -> list[ExecutionReport]:
        reports = []
        economy = self.economy.scoped(ctx.scope_id)
        for hit in hits:
            report = await self.engine.evaluate(hit.reply, ctx, economy=economy, host=host)
            reports.append(report)
            self.logger.log(
                "autoresponder.fired",
                guild_id=ctx.scope_id,
                trigger=hit.trigger,
                user_id=ctx.actor.id,
                actions=len(report.outcomes),
                failures=len(report.failures()),
            )
        return reports

    # activities and drops

    def activity(self, guild_id: int, actor: UserSnapshot, name: str, target: UserSnapshot | None = None) -> CommandReply:
        if name not in ACTIVITY_NAMES:
            raise CommandError(f"Unknown activity `{name}`.")
        result = self.activities.perform(guild_id, actor.id, name, target_id=target.id if target else None)
        with_target, alone = ACTIVITY_LINES[name]
        template = with_target if result.target_id and target is not None else alone
        text = template.format(
            actor=actor.mention,
            target=target.mention if target else "",
            reward=result.reward,
            currency=self.guild_settings.currency(guild_id),
        )
        return CommandReply(content=f"{text}\nBalance: {self._money(guild_id, result.balance)}")

    def drop(self, guild_id: int, channel_id: int, actor: UserSnapshot, amount: int) -> CommandReply:
        created = self.drops.create(guild_id, channel_id, actor.id, amount)
        return self._card(
            guild_id,
            "💰 Drop!",
            f"{self._money(guild_id, created.amount)} dropped! Grab it with `pick {created.code}` or `/pick {created.code}`.",
        )

    def pick(self, guild_id: int, actor: UserSnapshot, code: str) -> CommandReply:
        drop, balance = self.drops.pick(guild_id, actor.id, code)
        return CommandReply(
            content=f"{actor.mention} picked up {self._money(guild_id, drop.amount)}! Balance: {self._money(guild_id, balance)}."
        )

    # events

    def handle_member_remove(self, guild_id: int, user_id: int) -> bool:
        if self.guild_settings.onleave(guild_id) != "delete":
            return False
        self.economy.reset_user(guild_id, user_id, balance=True, inventory=True)
        return True
