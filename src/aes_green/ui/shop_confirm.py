from __future__ import annotations

from typing import Awaitable, Callable

import discord

from aes_green.errors import CommandError
from aes_green.services.command_service import CommandReply
from aes_green.template.discord_host import to_discord_embed

ConfirmHandler = Callable[[discord.Interaction], Awaitable[CommandReply]]


async def send_reply(itx: discord.Interaction, reply: CommandReply, *, view: discord.ui.View | None = None) -> None:
    kwargs: dict[str, object] = {}
    if reply.content:
        kwargs["content"] = reply.content[:2000]
    if reply.embed is not None:
        kwargs["embed"] = to_discord_embed(reply.embed)
    if not kwargs:
        return
    if view is not None:
        kwargs["view"] = view
    if itx.response.is_done():
        await itx.followup.send(ephemeral=reply.ephemeral, **kwargs)
    else:
        await itx.response.send_message(ephemeral=reply.ephemeral, **kwargs)


class ShopConfirmView(discord.ui.View):
    """Confirm/Cancel buttons in front of a purchase. Only the buyer can press them."""

    def __init__(self, buyer_id: int, on_confirm: ConfirmHandler) -> None:
        super().__init__(timeout=60)
        self.buyer_id = int(buyer_id)
        self.on_confirm = on_confirm
        self.settled = False

        confirm = discord.ui.Button(label="Buy", style=discord.ButtonStyle.success)
        confirm.callback = self._confirm
        self.add_item(confirm)
        cancel = discord.ui.Button(label="Cancel", style=discord.ButtonStyle.secondary)
        cancel.callback = self._cancel
        self.add_item(cancel)

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        user = interaction.user
        if user is not None and int(user.id) == self.buyer_id:
            return True
        await interaction.response.send_message("Only the buyer can answer this.", ephemeral=True)
        return False

    async def _confirm(self, interaction: discord.Interaction) -> None:
        if self.settled:
            await interaction.response.send_message("This purchase was already handled.", ephemeral=True)
            return
        self.settled = True
        self.stop()
        await interaction.response.edit_message(view=None)
        try:
            reply = await self.on_confirm(interaction)
        except CommandError as exc:
            reply = CommandReply(content=str(exc), ephemeral=True)
        await send_reply(interaction, reply)

    async def _cancel(self, interaction: discord.Interaction) -> None:
        self.settled = True
        self.stop()
        await interaction.response.edit_message(content="Purchase cancelled.", embed=None, view=None)
