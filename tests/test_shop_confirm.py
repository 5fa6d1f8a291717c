from __future__ import annotations

import asyncio
from types import SimpleNamespace

from aes_green.errors import CommandError
from aes_green.services.command_service import CommandReply
from aes_green.ui.shop_confirm import ShopConfirmView


class StubResponse:
    def __init__(self) -> None:
        self.done = False
        self.messages: list[tuple[str, bool]] = []
        self.edits: list[dict[str, object]] = []

    def is_done(self) -> bool:
        return self.done

    async def send_message(self, content: str | None = None, *, ephemeral: bool = False, **kwargs: object) -> None:
        self.done = True
        self.messages.append((str(content), ephemeral))

    async def edit_message(self, **kwargs: object) -> None:
        self.done = True
        self.edits.append(kwargs)


def _interaction(user_id: int) -> SimpleNamespace:
    followups: list[tuple[str, bool]] = []

    async def send(content: str | None = None, *, ephemeral: bool = False, **kwargs: object) -> None:
        followups.append((str(content), ephemeral))

    return SimpleNamespace(
        user=SimpleNamespace(id=user_id),
        response=StubResponse(),
        followup=SimpleNamespace(send=send),
        followups=followups,
    )


def test_only_the_buyer_can_answer() -> None:
    async def scenario() -> tuple[bool, bool, SimpleNamespace]:
        async def never(_: object) -> CommandReply:
            raise AssertionError("purchase must not run")

        view = ShopConfirmView(10, never)
        stranger = _interaction(11)
        return await view.interaction_check(stranger), await view.interaction_check(_interaction(10)), stranger

    stranger_ok, buyer_ok, stranger = asyncio.run(scenario())
    assert stranger_ok is False
    assert buyer_ok is True
    assert stranger.response.messages == [("Only the buyer can answer this.", True)]


def test_confirm_runs_the_purchase_once() -> None:
    calls: list[int] = []

    async def scenario() -> tuple[SimpleNamespace, SimpleNamespace]:
        async def complete(interaction: SimpleNamespace) -> CommandReply:
            calls.append(interaction.user.id)
            return CommandReply(content="<@10> bought 1 × Cake for 100.")

        view = ShopConfirmView(10, complete)
        first = _interaction(10)
        await view._confirm(first)
        second = _interaction(10)
        await view._confirm(second)
        return first, second

    first, second = asyncio.run(scenario())
    assert calls == [10]
    assert first.response.edits == [{"view": None}]
    assert first.followups == [("<@10> bought 1 × Cake for 100.", False)]
    assert second.response.messages == [("This purchase was already handled.", True)]


def test_confirm_reports_purchase_errors_privately() -> None:
    async def scenario() -> SimpleNamespace:
        async def broke(_: object) -> CommandReply:
            raise CommandError("You need 100 to buy 1 × Cake.")

        view = ShopConfirmView(10, broke)
        interaction = _interaction(10)
        await view._confirm(interaction)
        return interaction

    interaction = asyncio.run(scenario())
    assert interaction.followups == [("You need 100 to buy 1 × Cake.", True)]


def test_cancel_clears_the_prompt_without_buying() -> None:
    calls: list[object] = []

    async def scenario() -> SimpleNamespace:
        async def complete(interaction: object) -> CommandReply:
            calls.append(interaction)
            return CommandReply(content="bought")

        view = ShopConfirmView(10, complete)
        interaction = _interaction(10)
        await view._cancel(interaction)
        return interaction

    interaction = asyncio.run(scenario())
    assert calls == []
    assert interaction.response.edits == [{"content": "Purchase cancelled.", "embed": None, "view": None}]
