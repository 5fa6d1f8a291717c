from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

DM_LINK_SENTINEL = "@me"


@dataclass(frozen=True)
class UserSnapshot:
    id: int
    name: str
    display_name: str = ""
    discriminator: str = "0"
    avatar_url: str = ""
    created_at: datetime | None = None
    bot: bool = False
    is_member: bool = False
    nickname: str | None = None
    joined_at: datetime | None = None
    display_color: str | None = None
    premium_since: datetime | None = None

    @property
    def mention(self) -> str:
        return f"<@{self.id}>"

    @property
    def tag(self) -> str:
        if self.discriminator and self.discriminator != "0":
            return f"{self.name}#{self.discriminator}"
        return self.name

    @property
    def shown_name(self) -> str:
        return self.display_name or self.name


@dataclass(frozen=True)
class RosterEntry:
    id: int
    bot: bool = False


@dataclass(frozen=True)
class GuildSnapshot:
    id: int
    name: str
    member_count: int = 0
    created_at: datetime | None = None
    icon_url: str = ""
    premium_tier: int = 0
    premium_subscription_count: int = 0
    owner_id: int | None = None
    roster: tuple[RosterEntry, ...] | None = None


@dataclass(frozen=True)
class ChannelSnapshot:
    id: int
    name: str = ""
    created_at: datetime | None = None

    @property
    def mention(self) -> str:
        return f"<#{self.id}>"


@dataclass(frozen=True)
class MessageSnapshot:
    id: int
    content: str = ""
    channel_id: int = 0
    guild_id: int | None = None

    @property
    def link(self) -> str:
        guild_part = str(self.guild_id) if self.guild_id else DM_LINK_SENTINEL
        return f"https://discord.com/channels/{guild_part}/{self.channel_id}/{self.id}"


@dataclass(frozen=True)
class EvaluationContext:
    actor: UserSnapshot
    target: UserSnapshot | None = None
    guild: GuildSnapshot | None = None
    channel: ChannelSnapshot | None = None
    message: MessageSnapshot | None = None
    currency: str = ""

    @property
    def target_user(self) -> UserSnapshot:
        return self.target or self.actor

    @property
    def scope_id(self) -> int:
        return self.guild.id if self.guild else 0

    def with_channel(self, channel: ChannelSnapshot) -> "EvaluationContext":
        return replace(self, channel=channel)


def snapshot_user(user: Any) -> UserSnapshot:
    avatar = getattr(user, "display_avatar", None)
    joined_at = getattr(user, "joined_at", None)
    is_member = getattr(user, "guild", None) is not None
    color = getattr(user, "color", None) if is_member else None
    return UserSnapshot(
        id=int(user.id),
        name=str(getattr(user, "name", "") or ""),
        display_name=str(getattr(user, "display_name", "") or getattr(user, "name", "") or ""),
        discriminator=str(getattr(user, "discriminator", "0") or "0"),
        avatar_url=str(getattr(avatar, "url", "") or ""),
        created_at=getattr(user, "created_at", None),
        bot=bool(getattr(user, "bot", False)),
        is_member=is_member,
        nickname=getattr(user, "nick", None) if is_member else None,
        joined_at=joined_at if isinstance(joined_at, datetime) else None,
        display_color=str(color) if color is not None and str(color).startswith("#") else None,
        premium_since=getattr(user, "premium_since", None) if is_member else None,
    )


def snapshot_guild(guild: Any) -> GuildSnapshot:
    icon = getattr(guild, "icon", None)
    members = list(getattr(guild, "members", None) or [])
    roster = tuple(RosterEntry(id=int(m.id), bot=bool(getattr(m, "bot", False))) for m in members) if members else None
    owner_id = getattr(guild, "owner_id", None)
    return GuildSnapshot(
        id=int(guild.id),
        name=str(getattr(guild, "name", "") or ""),
        member_count=int(getattr(guild, "member_count", 0) or 0),
        created_at=getattr(guild, "created_at", None),
        icon_url=str(getattr(icon, "url", "") or ""),
        premium_tier=int(getattr(guild, "premium_tier", 0) or 0),
        premium_subscription_count=int(getattr(guild, "premium_subscription_count", 0) or 0),
        owner_id=int(owner_id) if owner_id else None,
        roster=roster,
    )


def snapshot_channel(channel: Any) -> ChannelSnapshot | None:
    if channel is None or getattr(channel, "id", None) is None:
        return None
    return ChannelSnapshot(
        id=int(channel.id),
        name=str(getattr(channel, "name", "") or ""),
        created_at=getattr(channel, "created_at", None),
    )


def snapshot_message(message: Any) -> MessageSnapshot:
    guild = getattr(message, "guild", None)
    channel = getattr(message, "channel", None)
    return MessageSnapshot(
        id=int(message.id),
        content=str(getattr(message, "content", "") or ""),
        channel_id=int(getattr(channel, "id", 0) or 0),
        guild_id=int(guild.id) if guild is not None else None,
    )


def context_from_message(message: Any, *, currency: str = "", target: Any = None) -> EvaluationContext:
    guild = getattr(message, "guild", None)
    return EvaluationContext(
        actor=snapshot_user(message.author),
        target=snapshot_user(target) if target is not None else None,
        guild=snapshot_guild(guild) if guild is not None else None,
        channel=snapshot_channel(getattr(message, "channel", None)),
        message=snapshot_message(message),
        currency=currency,
    )


def context_from_interaction(interaction: Any, *, currency: str = "", target: Any = None) -> EvaluationContext:
    guild = getattr(interaction, "guild", None)
    source = getattr(interaction, "message", None)
    return EvaluationContext(
        actor=snapshot_user(interaction.user),
        target=snapshot_user(target) if target is not None else None,
        guild=snapshot_guild(guild) if guild is not None else None,
        channel=snapshot_channel(getattr(interaction, "channel", None)),
        message=snapshot_message(source) if source is not None else None,
        currency=currency,
    )
