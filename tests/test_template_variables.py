from __future__ import annotations

import random
from datetime import datetime, timezone

from aes_green.template.context import (
    ChannelSnapshot,
    EvaluationContext,
    GuildSnapshot,
    MessageSnapshot,
    RosterEntry,
    UserSnapshot,
)
from aes_green.template.state import EconomyRecord, MemoryEconomyStore
from aes_green.template.variables import VariableResolver


class RecordingDiagnostics:
    def __init__(self) -> None:
        self.rows: list[tuple[str, dict[str, object]]] = []

    def diagnostic(self, kind: str, **context: object) -> None:
        self.rows.append((kind, context))


def _ctx(**overrides: object) -> EvaluationContext:
    values: dict[str, object] = {
        "actor": UserSnapshot(id=10, name="alice", display_name="Alice"),
        "guild": GuildSnapshot(
            id=1,
            name="Green",
            member_count=3,
            owner_id=10,
            roster=(RosterEntry(10), RosterEntry(11), RosterEntry(12, bot=True)),
        ),
        "channel": ChannelSnapshot(id=5, name="general"),
        "message": MessageSnapshot(id=99, content="hi {user}", channel_id=5, guild_id=1),
        "currency": "\U0001f36a",
    }
    values.update(overrides)
    return EvaluationContext(**values)  # type: ignore[arg-type]


def test_literal_text_is_returned_unchanged() -> None:
    resolver = VariableResolver()
    text = "Hello, world!\nNo placeholders here: 100% plain."
    assert resolver.resolve(text, _ctx()) == text


def test_unknown_tokens_are_removed_without_raising() -> None:
    resolver = VariableResolver()
    assert resolver.resolve("a{foo_bar}b{nope:x|y}c", _ctx()) == "abc"


def test_identity_tokens_and_non_member_fallbacks() -> None:
    resolver = VariableResolver()
    ctx = _ctx()
    assert resolver.resolve("{user}", ctx) == "<@10>"
    assert resolver.resolve("{user_name}/{user_id}", ctx) == "alice/10"
    assert resolver.resolve("{user_nick}", ctx) == "Alice"
    assert resolver.resolve("{user_joindate}", ctx) == "Unknown"
    assert resolver.resolve("{user_displaycolor}", ctx) == "#000000"
    assert resolver.resolve("{user_boostsince}", ctx) == "Not a Booster"


def test_target_tokens_default_to_actor() -> None:
    resolver = VariableResolver()
    bob = UserSnapshot(id=20, name="bob")
    assert resolver.resolve("{target}", _ctx()) == "<@10>"
    assert resolver.resolve("{target_name}", _ctx(target=bob)) == "bob"


def test_balance_and_inventory_tokens_read_the_store() -> None:
    resolver = VariableResolver()
    economy = MemoryEconomyStore(default_balance=0)
    economy.set_record(10, EconomyRecord(balance=1234567, inventory={"apple": 3}))
    ctx = _ctx()
    assert resolver.resolve("{user_balance}", ctx, economy) == "1234567"
    assert resolver.resolve("{user_balance_locale}", ctx, economy) == "1,234,567"
    assert resolver.resolve("{user_item:apple}", ctx, economy) == "3 × apple"
    assert resolver.resolve("{user_item_count:apple}", ctx, economy) == "3"
    assert resolver.resolve("{user_item:pear}", ctx, economy) == "0 × pear"
    assert resolver.resolve("{user_inventory}", ctx, economy) == "3 × apple"
    assert resolver.resolve("{user_inventory}", _ctx(actor=UserSnapshot(id=11, name="x")), economy) == "No items"


def test_guild_tokens_and_roster_degradation() -> None:
    resolver = VariableResolver()
    assert resolver.resolve("{server_name} {server_membercount} {server_botcount}", _ctx()) == "Green 3 1"
    assert resolver.resolve("{server_owner}", _ctx()) == "<@10>"
    no_roster = _ctx(guild=GuildSnapshot(id=1, name="Green"))
    assert resolver.resolve("[{server_botcount}][{server_randommember}]", no_roster) == "[][]"
    assert resolver.resolve("{server_randommember}", _ctx()) in {"<@10>", "<@11>"}


def test_channel_and_message_tokens() -> None:
    resolver = VariableResolver()
    ctx = _ctx()
    assert resolver.resolve("{channel} {channel_name}", ctx) == "<#5> general"
    assert resolver.resolve("{message_link}", ctx) == "https://discord.com/channels/1/5/99"
    dm = _ctx(guild=None, message=MessageSnapshot(id=3, channel_id=4, guild_id=None))
    assert resolver.resolve("{message_link}", dm) == "https://discord.com/channels/@me/4/3"
    assert resolver.resolve("[{channel}]", _ctx(channel=None)) == "[]"


def test_substituted_user_text_is_not_rescanned() -> None:
    resolver = VariableResolver()
    assert resolver.resolve("{message_content}", _ctx()) == "hi {user}"


def test_date_uses_clock_and_fixed_format() -> None:
    clock = lambda: datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)  # noqa: E731
    resolver = VariableResolver(clock=clock)
    assert resolver.resolve("{date}", _ctx()) == "Tue Jan 02 2024 03:04:05 UTC"


def test_range_stays_within_bounds() -> None:
    resolver = VariableResolver(rng=random.Random(7))
    seen = {resolver.resolve("{range:1-3}", _ctx()) for _ in range(1000)}
    assert seen == {"1", "2", "3"}
    swapped = {resolver.resolve("{range:3-1}", _ctx()) for _ in range(200)}
    assert swapped <= {"1", "2", "3"}
    negative = {int(resolver.resolve("{range:-2--1}", _ctx())) for _ in range(200)}
    assert negative <= {-2, -1}


def test_choose_picks_one_option_and_handles_empty_list() -> None:
    resolver = VariableResolver(rng=random.Random(3))
    for _ in range(100):
        assert resolver.resolve("{choose:a|b|c}", _ctx()) in {"a", "b", "c"}
    assert resolver.resolve("{choose:}", _ctx()) == ""
    assert resolver.resolve("x{choose:||}y", _ctx()) == "xy"


def test_nested_tokens_resolve_innermost_first() -> None:
    resolver = VariableResolver()
    assert resolver.resolve("{choose:{user}|{user}}", _ctx()) == "<@10>"


def test_inline_modifybal_scenario() -> None:
    resolver = VariableResolver()
    economy = MemoryEconomyStore(default_balance=100)
    out = resolver.resolve("{user} gained {modifybal:+50}!\n{newline}New balance shown above.", _ctx(), economy)
    assert out == "<@10> gained 150!\n\nNew balance shown above."
    assert economy.get_record(10).balance == 150


def test_inline_modifybal_can_target_another_user() -> None:
    resolver = VariableResolver()
    economy = MemoryEconomyStore(default_balance=100)
    assert resolver.resolve("gift {modifybal:+5|<@20>}", _ctx(), economy) == "gift 105"
    assert resolver.resolve("{modifybal:=7}", _ctx(), economy) == "7"
    assert economy.get_record(20).balance == 105
    assert economy.get_record(10).balance == 7


def test_malformed_argument_resolves_empty_and_reports() -> None:
    diagnostics = RecordingDiagnostics()
    resolver = VariableResolver(diagnostics=diagnostics)
    assert resolver.resolve("[{range:abc}]", _ctx()) == "[]"
    assert diagnostics.rows[0][0] == "malformed_argument"
    assert diagnostics.rows[0][1]["token"] == "range"
