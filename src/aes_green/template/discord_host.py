from __future__ import annotations

from typing import Any

import discord

from aes_green.template.context import ChannelSnapshot, UserSnapshot, snapshot_channel, snapshot_user
from aes_green.template.errors import CapabilityDenied, UnresolvedReference
from aes_green.template.host import ActionHost, EmbedPayload, ReplyHandle, RoleRef
from aes_green.utils.discord_utils import (
    can_assign_role,
    can_edit_member,
    get_bot_member,
    has_guild_permission,
    split_for_discord,
)
from aes_green.utils.mentions import (
    CUSTOM_EMOJI_RE,
    parse_channel_id,
    parse_role_id,
    strip_channel_prefix,
    strip_role_prefix,
)


def to_discord_embed(payload: EmbedPayload) -> discord.Embed:
    embed = discord.Embed(
        title=payload.title or None,
        description=payload.description or None,
        color=discord.Color(payload.color) if payload.color is not None else None,
    )
    for name, value, inline in payload.fields[:25]:
        embed.add_field(name=name[:256], value=value[:1024], inline=inline)
    if payload.author:
        embed.set_author(name=payload.author[:256], icon_url=payload.author_icon or None)
    if payload.footer:
        embed.set_footer(text=payload.footer[:2048], icon_url=payload.footer_icon or None)
    if payload.thumbnail:
        embed.set_thumbnail(url=payload.thumbnail)
    if payload.image:
        embed.set_image(url=payload.image)
    return embed


def _handle(message: Any) -> ReplyHandle | None:
    if message is None:
        return None
    channel = getattr(message, "channel", None)
    return ReplyHandle(channel_id=int(getattr(channel, "id", 0) or 0), message_id=int(message.id), raw=message)


class DiscordActionHost(ActionHost):
    """ActionHost bound to one triggering message or interaction."""

    def __init__(
        self,
        bot: discord.Client,
        *,
        guild: discord.Guild | None,
        channel: Any,
        bot_member: discord.Member | None = None,
        source_message: discord.Message | None = None,
        interaction: discord.Interaction | None = None,
    ) -> None:
        self.bot = bot
        self.guild = guild
        self.channel = channel
        self.bot_member = bot_member
        self.source_message = source_message
        self.interaction = interaction

    @classmethod
    async def for_message(cls, bot: discord.Client, message: discord.Message) -> "DiscordActionHost":
        bot_member = await get_bot_member(bot, message.guild) if message.guild is not None else None
        return cls(bot, guild=message.guild, channel=message.channel, bot_member=bot_member, source_message=message)

    @classmethod
    async def for_interaction(cls, bot: discord.Client, interaction: discord.Interaction) -> "DiscordActionHost":
        guild = interaction.guild
        bot_member = await get_bot_member(bot, guild) if guild is not None else None
        return cls(bot, guild=guild, channel=interaction.channel, bot_member=bot_member, interaction=interaction)

    def can_manage_roles(self) -> bool:
        return has_guild_permission(self.bot_member, "manage_roles")

    def can_manage_nicknames(self) -> bool:
        return has_guild_permission(self.bot_member, "manage_nicknames")

    def resolve_role(self, ref: str) -> RoleRef | None:
        if self.guild is None:
            return None
        role_id = parse_role_id(ref)
        role = self.guild.get_role(role_id) if role_id else None
        if role is None:
            name = strip_role_prefix(ref)
            role = discord.utils.get(self.guild.roles, name=name)
            if role is None:
                lowered = name.lower()
                role = next((r for r in self.guild.roles if r.name.lower() == lowered), None)
        if role is None:
            return None
        return RoleRef(id=role.id, name=role.name)

    def resolve_member(self, user_id: int) -> UserSnapshot | None:
        if self.guild is None:
            user = self.bot.get_user(int(user_id))
        else:
            user = self.guild.get_member(int(user_id))
        return snapshot_user(user) if user is not None else None

    def _guild_channel(self, ref: str) -> Any:
        if self.guild is None:
            return None
        channel_id = parse_channel_id(ref)
        channel = self.guild.get_channel(channel_id) if channel_id else None
        if channel is None:
            name = strip_channel_prefix(ref).lower()
            channel = next((c for c in self.guild.text_channels if c.name.lower() == name), None)
        if channel is None or not hasattr(channel, "send"):
            return None
        return channel

    def resolve_channel(self, ref: str) -> ChannelSnapshot | None:
        return snapshot_channel(self._guild_channel(ref))

    async def _deliver(self, destination: Any, content: str | None, embed: EmbedPayload | None) -> Any:
        chunks = split_for_discord(content or "")
        rendered = to_discord_embed(embed) if embed is not None else None
        last = None
        if not chunks:
            chunks = [""]
        for index, chunk in enumerate(chunks):
            kwargs: dict[str, Any] = {"content": chunk or None}
            if index == len(chunks) - 1 and rendered is not None:
                kwargs["embed"] = rendered
            if kwargs["content"] is None and "embed" not in kwargs:
                continue
            last = await destination(**kwargs)
        return last

    async def _reply_here(self, **kwargs: Any) -> Any:
        if self.interaction is None:
            return await self.channel.send(**kwargs)
        if not self.interaction.response.is_done():
            await self.interaction.response.send_message(**kwargs)
            return await self.interaction.original_response()
        return await self.interaction.followup.send(wait=True, **kwargs)

    async def send(
        self,
        channel_id: int | None,
        content: str | None = None,
        embed: EmbedPayload | None = None,
    ) -> ReplyHandle | None:
        if channel_id is None:
            return _handle(await self._deliver(self._reply_here, content, embed))
        channel = self._guild_channel(str(channel_id))
        if channel is None:
            raise UnresolvedReference(f"unknown channel {channel_id}")
        return _handle(await self._deliver(channel.send, content, embed))

    async def send_dm(
        self,
        user_id: int,
        content: str | None = None,
        embed: EmbedPayload | None = None,
    ) -> ReplyHandle | None:
        user = self.guild.get_member(int(user_id)) if self.guild is not None else None
        if user is None:
            user = self.bot.get_user(int(user_id)) or await self.bot.fetch_user(int(user_id))
        return _handle(await self._deliver(user.send, content, embed))

    def _member(self, user_id: int) -> discord.Member:
        member = self.guild.get_member(int(user_id)) if self.guild is not None else None
        if member is None:
            raise UnresolvedReference(f"member {user_id} is not in this server")
        return member

    def _role(self, role: RoleRef) -> discord.Role:
        found = self.guild.get_role(role.id) if self.guild is not None else None
        if found is None:
            raise UnresolvedReference(f"unknown role {role.id}")
        if not can_assign_role(self.bot_member, found):
            raise CapabilityDenied(f"role {found.name} is above the bot")
        return found

    async def add_role(self, user_id: int, role: RoleRef) -> None:
        await self._member(user_id).add_roles(self._role(role), reason="Template action")

    async def remove_role(self, user_id: int, role: RoleRef) -> None:
        await self._member(user_id).remove_roles(self._role(role), reason="Template action")

    async def set_nickname(self, user_id: int, nickname: str | None) -> None:
        member = self._member(user_id)
        if not can_edit_member(self.bot_member, member):
            raise CapabilityDenied("member is above the bot")
        await member.edit(nick=nickname, reason="Template action")

    def resolve_emoji(self, text: str) -> Any:
        """Unicode passes through; `<:name:id>`, `:name:` and bare names resolve to custom emoji."""
        raw = (text or "").strip()
        match = CUSTOM_EMOJI_RE.fullmatch(raw)
        if match:
            return discord.PartialEmoji(name=match.group(2), id=int(match.group(3)), animated=bool(match.group(1)))
        name = raw.strip(":")
        if self.guild is not None and name:
            found = discord.utils.get(self.guild.emojis, name=name)
            if found is None:
                lowered = name.lower()
                found = next((e for e in self.guild.emojis if e.name.lower() == lowered), None)
            if found is not None:
                return found
        return raw

    async def react_to_source(self, emoji: str) -> None:
        if self.source_message is None:
            raise UnresolvedReference("no triggering message")
        await self.source_message.add_reaction(self.resolve_emoji(emoji))

    async def react_to_reply(self, handle: ReplyHandle, emoji: str) -> None:
        await handle.raw.add_reaction(self.resolve_emoji(emoji))

    async def delete_source(self) -> None:
        if self.source_message is None:
            raise UnresolvedReference("no triggering message")
        await self.source_message.delete()

    async def delete_reply_later(self, handle: ReplyHandle, seconds: int) -> None:
        await handle.raw.delete(delay=float(seconds))
