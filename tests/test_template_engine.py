from __future__ import annotations

import asyncio
from typing import Any

from aes_green.template.context import ChannelSnapshot, EvaluationContext, GuildSnapshot, MessageSnapshot, UserSnapshot
from aes_green.template.engine import TemplateEngine
from aes_green.template.executor import APPLIED, FAILED, REQUIREMENT_FAILED, SKIPPED, ExecutionReport
from aes_green.template.host import ActionHost, EmbedPayload, ReplyHandle, RoleRef
from aes_green.template.state import EconomyRecord, MemoryEconomyStore
from aes_green.utils.mentions import parse_channel_id, parse_role_id, strip_channel_prefix, strip_role_prefix


class RecordingDiagnostics:
    def __init__(self) -> None:
        self.kinds: list[str] = []

    def diagnostic(self, kind: str, **context: object) -> None:
        self.kinds.append(kind)


class RecordingHost(ActionHost):
    def __init__(
        self,
        *,
        manage_roles: bool = False,
        manage_nicknames: bool = False,
        roles: dict[int, str] | None = None,
        members: dict[int, UserSnapshot] | None = None,
        channels: list[ChannelSnapshot] | None = None,
        fail_reactions: bool = False,
    ) -> None:
        self.manage_roles = manage_roles
        self.manage_nicknames = manage_nicknames
        self.roles = roles or {}
        self.members = members or {}
        self.channels = channels or []
        self.fail_reactions = fail_reactions
        self.sent: list[tuple[int | None, str | None, EmbedPayload | None]] = []
        self.dms: list[tuple[int, str | None]] = []
        self.role_changes: list[tuple[str, int, int]] = []
        self.nicknames: list[tuple[int, str | None]] = []
        self.reactions: list[str] = []
        self.reply_reactions: list[tuple[int, str]] = []
        self.scheduled_deletes: list[tuple[int, int]] = []
        self.deleted_source = False
        self._next_id = 1000

    def can_manage_roles(self) -> bool:
        return self.manage_roles

    def can_manage_nicknames(self) -> bool:
        return self.manage_nicknames

    def resolve_role(self, ref: str) -> RoleRef | None:
        role_id = parse_role_id(ref)
        if role_id in self.roles:
            return RoleRef(id=role_id, name=self.roles[role_id])
        name = strip_role_prefix(ref)
        for rid, role_name in self.roles.items():
            if role_name == name:
                return RoleRef(id=rid, name=role_name)
        return None

    def resolve_member(self, user_id: int) -> UserSnapshot | None:
        return self.members.get(user_id)

    def resolve_channel(self, ref: str) -> ChannelSnapshot | None:
        channel_id = parse_channel_id(ref)
        name = strip_channel_prefix(ref)
        for channel in self.channels:
            if channel.id == channel_id or channel.name == name:
                return channel
        return None

    def _handle(self, channel_id: int | None) -> ReplyHandle:
        self._next_id += 1
        return ReplyHandle(channel_id=channel_id or 5, message_id=self._next_id)

    async def send(self, channel_id: int | None, content: str | None = None, embed: EmbedPayload | None = None) -> ReplyHandle:
        self.sent.append((channel_id, content, embed))
        return self._handle(channel_id)

    async def send_dm(self, user_id: int, content: str | None = None, embed: EmbedPayload | None = None) -> ReplyHandle:
        self.dms.append((user_id, content))
        return self._handle(None)

    async def add_role(self, user_id: int, role: RoleRef) -> None:
        self.role_changes.append(("add", user_id, role.id))

    async def remove_role(self, user_id: int, role: RoleRef) -> None:
        self.role_changes.append(("remove", user_id, role.id))

    async def set_nickname(self, user_id: int, nickname: str | None) -> None:
        self.nicknames.append((user_id, nickname))

    async def react_to_source(self, emoji: str) -> None:
        if self.fail_reactions:
            raise RuntimeError("Missing Access")
        self.reactions.append(emoji)

    async def react_to_reply(self, handle: ReplyHandle, emoji: str) -> None:
        self.reply_reactions.append((handle.message_id, emoji))

    async def delete_source(self) -> None:
        self.deleted_source = True

    async def delete_reply_later(self, handle: ReplyHandle, seconds: int) -> None:
        self.scheduled_deletes.append((handle.message_id, seconds))


class StubEmbeds:
    def __init__(self, rows: dict[str, dict[str, Any]]) -> None:
        self.rows = rows

    def get_embed(self, guild_id: int, name: str) -> dict[str, Any] | None:
        return self.rows.get(name)


def _ctx(content: str = "hello") -> EvaluationContext:
    return EvaluationContext(
        actor=UserSnapshot(id=10, name="alice", display_name="Alice"),
        guild=GuildSnapshot(id=1, name="Green"),
        channel=ChannelSnapshot(id=5, name="general"),
        message=MessageSnapshot(id=99, content=content, channel_id=5, guild_id=1),
        currency="\U0001f36a",
    )


def _run(
    template: str,
    host: RecordingHost,
    economy: MemoryEconomyStore,
    *,
    ctx: EvaluationContext | None = None,
    engine: TemplateEngine | None = None,
) -> ExecutionReport:
    engine = engine or TemplateEngine()
    return asyncio.run(engine.evaluate(template, ctx or _ctx(), economy=economy, host=host))


def _texts(host: RecordingHost) -> list[str | None]:
    return [content for _, content, _ in host.sent]


def test_end_to_end_inline_balance_scenario() -> None:
    host = RecordingHost()
    economy = MemoryEconomyStore(default_balance=100)
    _run("{user} gained {modifybal:+50}!\n{newline}New balance shown above.", host, economy)
    assert _texts(host) == ["<@10> gained 150!", "New balance shown above."]
    assert economy.get_record(10).balance == 150


def test_targeted_modifybal_alone_credits_the_target() -> None:
    host = RecordingHost()
    economy = MemoryEconomyStore(default_balance=100)
    _run("{modifybal:+50|<@20>}", host, economy)
    assert economy.get_record(20).balance == 150
    assert economy.get_record(10).balance == 100
    assert _texts(host) == ["150"]


def test_failed_requirement_emits_notice_and_continues() -> None:
    host = RecordingHost()
    economy = MemoryEconomyStore(default_balance=0)
    report = _run("{requirebal:1000000}\nYou got a reward!", host, economy)
    texts = _texts(host)
    assert len(texts) == 2
    assert texts[0] is not None and texts[0].startswith("❌") and "1,000,000" in texts[0]
    assert texts[1] == "You got a reward!"
    assert report.statuses() == [REQUIREMENT_FAILED, APPLIED]
    assert report.notices == [texts[0]]


def test_role_change_without_capability_is_silent() -> None:
    host = RecordingHost(manage_roles=False, roles={1234: "VIP"})
    diagnostics = RecordingDiagnostics()
    report = _run("{addrole:<@&1234>}", host, MemoryEconomyStore(), engine=TemplateEngine(diagnostics=diagnostics))
    assert host.role_changes == []
    assert host.sent == []
    assert report.outcomes[0].status == SKIPPED
    assert report.outcomes[0].kind == "capability_denied"
    assert diagnostics.kinds == ["capability_denied"]


def test_role_changes_resolve_mentions_and_names() -> None:
    host = RecordingHost(manage_roles=True, roles={1234: "VIP"})
    report = _run("{addrole:<@&1234>}\n{removerole:VIP}\n{addrole:Ghost}", host, MemoryEconomyStore())
    assert host.role_changes == [("add", 10, 1234), ("remove", 10, 1234)]
    assert report.statuses() == [APPLIED, APPLIED, SKIPPED]


def test_resolution_happens_before_execution() -> None:
    host = RecordingHost()
    economy = MemoryEconomyStore(default_balance=100)
    report = _run("{modifybal:+10}\nBalance: {user_balance}", host, economy)
    assert economy.get_record(10).balance == 110
    assert _texts(host) == ["Balance: 100"]
    assert report.outcomes[0].detail == "100->110"


def test_inventory_decrement_clamps_at_zero() -> None:
    economy = MemoryEconomyStore()
    economy.set_record(10, EconomyRecord(inventory={"apple": 2}))
    _run("{modifyinv:apple|-5}", RecordingHost(), economy)
    record = economy.get_record(10)
    assert record.quantity("apple") == 0
    assert "apple" not in record.inventory


def test_inventory_target_must_resolve() -> None:
    economy = MemoryEconomyStore()
    host = RecordingHost(members={77: UserSnapshot(id=77, name="bob")})
    report = _run("{modifyinv:gem|2|<@77>}\n{modifyinv:gem|2|<@88>}", host, economy)
    assert economy.get_record(77).quantity("gem") == 2
    assert economy.get_record(88).quantity("gem") == 0
    assert report.outcomes[1].kind == "unresolved_reference"


def test_one_failing_action_does_not_stop_the_rest() -> None:
    host = RecordingHost(fail_reactions=True)
    diagnostics = RecordingDiagnostics()
    report = _run("{react:👍}\nStill here", host, MemoryEconomyStore(), engine=TemplateEngine(diagnostics=diagnostics))
    assert report.statuses() == [FAILED, APPLIED]
    assert _texts(host) == ["Still here"]
    assert "io_failure" in diagnostics.kinds


def test_malformed_action_argument_is_skipped() -> None:
    economy = MemoryEconomyStore(default_balance=50)
    report = _run("{modifybal:abc}\nok", RecordingHost(), economy)
    assert economy.get_record(10).balance == 50
    assert report.outcomes[0].kind == "malformed_argument"
    assert report.outcomes[1].status == APPLIED


def test_reply_targeted_actions_wait_for_the_next_reply() -> None:
    host = RecordingHost()
    report = _run("{reactreply:🔥}\nHello\n{delete_reply:5}", host, MemoryEconomyStore())
    reply_id = report.replies[0].message_id
    assert host.reply_reactions == [(reply_id, "🔥")]
    assert host.scheduled_deletes == [(reply_id, 5)]
    assert report.statuses() == [APPLIED, APPLIED, APPLIED]


def test_reply_targeted_action_without_any_reply_is_skipped() -> None:
    host = RecordingHost()
    report = _run("{delete_reply:5}", host, MemoryEconomyStore())
    assert host.scheduled_deletes == []
    assert report.outcomes[0].status == SKIPPED
    assert report.outcomes[0].kind == "unresolved_reference"


def test_sendto_resolves_line_against_target_channel() -> None:
    host = RecordingHost(channels=[ChannelSnapshot(id=42, name="announcements")])
    _run("{sendto:#announcements}Posted in {channel_name} by {user_name}", host, MemoryEconomyStore())
    assert host.sent == [(42, "Posted in announcements by alice", None)]


def test_dm_and_source_actions() -> None:
    host = RecordingHost(manage_nicknames=True)
    _run("{dm}Secret for {user_name}\n{react:✅}\n{setnick:Captain {user_name}}\n{delete}", host, MemoryEconomyStore())
    assert host.dms == [(10, "Secret for alice")]
    assert host.reactions == ["✅"]
    assert host.nicknames == [(10, "Captain alice")]
    assert host.deleted_source is True


def test_adhoc_embed_uses_colour_and_remaining_line() -> None:
    host = RecordingHost()
    _run("{embed:#ff0000}Hello {user_name}", host, MemoryEconomyStore())
    (channel_id, content, embed) = host.sent[0]
    assert channel_id is None and content is None
    assert embed is not None
    assert embed.color == 0xFF0000
    assert embed.description == "Hello alice"


def test_stored_embed_is_rendered_through_the_resolver() -> None:
    embeds = StubEmbeds(
        {
            "welcome": {
                "title": "Hi {user_name}",
                "description": "Balance {user_balance}",
                "color": 0x123456,
                "fields": [{"name": "Server", "value": "{server_name}", "inline": True}],
            }
        }
    )
    host = RecordingHost()
    report = _run("{embed:welcome}\n{embed:missing}", host, MemoryEconomyStore(default_balance=100), engine=TemplateEngine(embeds=embeds))
    embed = host.sent[0][2]
    assert embed is not None
    assert embed.title == "Hi alice"
    assert embed.description == "Balance 100"
    assert embed.color == 0x123456
    assert embed.fields == [("Server", "Green", True)]
    assert report.outcomes[1].kind == "unresolved_reference"


def test_user_supplied_braces_never_become_actions() -> None:
    host = RecordingHost(manage_roles=True, roles={1: "Admin"})
    _run("{message_content}\nYou said: {message_content}", host, MemoryEconomyStore(), ctx=_ctx("{addrole:Admin}"))
    assert host.role_changes == []
    assert _texts(host) == ["{addrole:Admin}", "You said: {addrole:Admin}"]


def test_preview_does_not_write_to_the_store() -> None:
    economy = MemoryEconomyStore(default_balance=100)
    engine = TemplateEngine()
    assert engine.preview("now {modifybal:+25}", _ctx(), economy) == "now 125"
    assert economy.get_record(10).balance == 100
