from __future__ import annotations

import discord


async def get_bot_member(bot: discord.Client, guild: discord.Guild) -> discord.Member | None:
    """
    Resolve the bot's Member object for a guild.

    `guild.me` can be None depending on cache state/intents; this helper tries cache
    and then falls back to an API fetch.
    """

    me = guild.me
    if me is not None:
        return me
    if bot.user is None:
        return None
    cached = guild.get_member(bot.user.id)
    if cached is not None:
        return cached
    try:
        return await guild.fetch_member(bot.user.id)
    except (discord.Forbidden, discord.HTTPException):
        return None


def has_guild_permission(member: discord.Member | None, name: str) -> bool:
    if member is None:
        return False
    perms = getattr(member, "guild_permissions", None)
    if perms is None:
        return False
    return bool(getattr(perms, "administrator", False) or getattr(perms, name, False))


def can_edit_member(bot_member: discord.Member | None, target: discord.Member) -> bool:
    if bot_member is None:
        return False
    guild = getattr(target, "guild", None)
    if guild is not None and getattr(guild, "owner_id", None) == target.id:
        return False
    try:
        return bot_member.top_role > target.top_role
    except (AttributeError, TypeError):
        return True


def can_assign_role(bot_member: discord.Member | None, role: discord.Role) -> bool:
    if bot_member is None:
        return False
    if getattr(role, "managed", False):
        return False
    try:
        return role < bot_member.top_role
    except (AttributeError, TypeError):
        return True


def split_for_discord(text: str, limit: int = 1900) -> list[str]:
    normalized = str(text or "").replace("\r\n", "\n").strip()
    if not normalized:
        return []

    chunks: list[str] = []
    remaining = normalized
    while len(remaining) > limit:
        cut = remaining.rfind("\n\n", 0, limit + 1)
        if cut < max(1, int(limit * 0.5)):
            cut = remaining.rfind("\n", 0, limit + 1)
        if cut < max(1, int(limit * 0.5)):
            cut = remaining.rfind(" ", 0, limit + 1)
        if cut <= 0:
            cut = limit
        chunk = remaining[:cut].strip()
        if not chunk:
            chunk = remaining[:limit]
            cut = len(chunk)
        chunks.append(chunk[:limit])
        remaining = remaining[cut:].strip()
    if remaining:
        chunks.append(remaining[:limit])
    return chunks
