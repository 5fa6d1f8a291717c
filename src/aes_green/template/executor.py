from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from aes_green.template.actions import (
    Action,
    ActionKind,
    DelayedDeleteReply,
    EmitEmbed,
    ModifyBalance,
    ModifyInventory,
    React,
    RequireBalance,
    RequireItem,
    RoleChange,
    SendToChannel,
    SetNickname,
)
from aes_green.template.context import EvaluationContext
from aes_green.template.errors import (
    CapabilityDenied,
    Diagnostics,
    MalformedArgument,
    RequirementFailed,
    TemplateError,
    UnresolvedReference,
)
from aes_green.template.host import ActionHost, EmbedPayload, ReplyHandle
from aes_green.template.state import EconomyStore, EmbedSource, adjust_inventory
from aes_green.template.variables import ValueVault, VariableResolver
from aes_green.utils.mentions import parse_user_id

APPLIED = "applied"
QUEUED = "queued"
SKIPPED = "skipped"
FAILED = "failed"
REQUIREMENT_FAILED = "requirement_failed"


@dataclass
class Outcome:
    action: Action
    status: str
    detail: str = ""
    kind: str = ""


@dataclass
class ExecutionReport:
    outcomes: list[Outcome] = field(default_factory=list)
    replies: list[ReplyHandle] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)

    def statuses(self) -> list[str]:
        return [outcome.status for outcome in self.outcomes]

    def failures(self) -> list[Outcome]:
        return [outcome for outcome in self.outcomes if outcome.status in (SKIPPED, FAILED, REQUIREMENT_FAILED)]


ReplyOp = Callable[[ReplyHandle], Awaitable[None]]


@dataclass
class _Run:
    ctx: EvaluationContext
    economy: EconomyStore
    host: ActionHost
    vault: ValueVault
    report: ExecutionReport = field(default_factory=ExecutionReport)
    pending: list[tuple[Outcome, ReplyOp]] = field(default_factory=list)

    def argument(self, action: Action) -> str | None:
        if action.argument is None:
            return None
        return self.vault.reveal(action.argument)

    def content(self, action: Action) -> str:
        return self.vault.reveal(action.content).strip()


class ActionExecutor:
    def __init__(
        self,
        resolver: VariableResolver,
        *,
        embeds: EmbedSource | None = None,
        diagnostics: Diagnostics | None = None,
        default_embed_color: int = 0x2ECC71,
    ) -> None:
        self.resolver = resolver
        self.embeds = embeds
        self.diagnostics = diagnostics
        self.default_embed_color = default_embed_color
        self._handlers: dict[ActionKind, Callable[[_Run, Action], Awaitable[str]]] = {
            ActionKind.TEXT: self._text,
            ActionKind.MODIFY_BALANCE: self._modify_balance,
            ActionKind.MODIFY_INVENTORY: self._modify_inventory,
            ActionKind.REQUIRE_BALANCE: self._require_balance,
            ActionKind.REQUIRE_ITEM: self._require_item,
            ActionKind.ADD_ROLE: self._add_role,
            ActionKind.REMOVE_ROLE: self._remove_role,
            ActionKind.SET_NICKNAME: self._set_nickname,
            ActionKind.REACT: self._react,
            ActionKind.REACT_REPLY: self._react_reply,
            ActionKind.SEND_DM: self._send_dm,
            ActionKind.SEND_TO_CHANNEL: self._send_to_channel,
            ActionKind.EMIT_EMBED: self._emit_embed,
            ActionKind.DELETE_INVOKING: self._delete_invoking,
            ActionKind.DELAYED_DELETE_REPLY: self._delayed_delete_reply,
        }

    async def execute(
        self,
        actions: list[Action],
        ctx: EvaluationContext,
        *,
        economy: EconomyStore,
        host: ActionHost,
        vault: ValueVault | None = None,
    ) -> ExecutionReport:
        run = _Run(ctx=ctx, economy=economy, host=host, vault=vault or ValueVault())
        for action in actions:
            outcome = Outcome(action=action, status=APPLIED)
            run.report.outcomes.append(outcome)
            try:
                result = await self._handlers[action.kind](run, action)
                if result == QUEUED:
                    outcome.status = QUEUED
                else:
                    outcome.detail = result
            except RequirementFailed as exc:
                outcome.status, outcome.kind, outcome.detail = REQUIREMENT_FAILED, exc.kind, exc.notice
                self._report(run, action, exc)
                await self._emit_notice(run, exc.notice)
            except TemplateError as exc:
                outcome.status, outcome.kind, outcome.detail = SKIPPED, exc.kind, str(exc)
                self._report(run, action, exc)
            except Exception as exc:  # noqa: BLE001
                outcome.status, outcome.kind, outcome.detail = FAILED, "io_failure", str(exc)[:300]
                self._report(run, action, exc, kind="io_failure")
        for outcome, _ in run.pending:
            outcome.status, outcome.kind, outcome.detail = SKIPPED, "unresolved_reference", "no reply was emitted"
            self._report(run, outcome.action, UnresolvedReference("no reply was emitted"))
        run.pending.clear()
        return run.report

    def _report(self, run: _Run, action: Action, exc: Exception, *, kind: str | None = None) -> None:
        if self.diagnostics is None:
            return
        self.diagnostics.diagnostic(
            kind or getattr(exc, "kind", "io_failure"),
            stage="execute",
            action=action.kind.value,
            argument=run.argument(action) or "",
            actor_id=run.ctx.actor.id,
            guild_id=run.ctx.scope_id,
            channel_id=run.ctx.channel.id if run.ctx.channel else 0,
            error=str(exc)[:300],
        )

    async def _emit_notice(self, run: _Run, notice: str) -> None:
        try:
            await run.host.send(None, notice)
            run.report.notices.append(notice)
        except Exception as exc:  # noqa: BLE001
            if self.diagnostics is not None:
                self.diagnostics.diagnostic("io_failure", stage="notice", error=str(exc)[:300])

    async def _record_reply(self, run: _Run, handle: ReplyHandle | None) -> None:
        if handle is None:
            return
        run.report.replies.append(handle)
        pending, run.pending = run.pending, []
        for outcome, op in pending:
            try:
                await op(handle)
                outcome.status = APPLIED
            except Exception as exc:  # noqa: BLE001
                outcome.status, outcome.kind, outcome.detail = FAILED, "io_failure", str(exc)[:300]
                self._report(run, outcome.action, exc, kind="io_failure")

    async def _on_reply(self, run: _Run, action: Action, op: ReplyOp) -> str:
        if run.report.replies:
            await op(run.report.replies[-1])
            return "last reply"
        run.pending.append((run.report.outcomes[-1], op))
        return QUEUED

    def _render_line(self, run: _Run, text: str, ctx: EvaluationContext | None = None) -> str:
        rendered = self.resolver.render(text, ctx or run.ctx, economy=run.economy, vault=run.vault)
        return run.vault.reveal(rendered).strip()

    async def _text(self, run: _Run, action: Action) -> str:
        content = self._render_line(run, action.content)
        if not content:
            return "empty"
        await self._record_reply(run, await run.host.send(None, content))
        return "sent"

    async def _modify_balance(self, run: _Run, action: Action) -> str:
        payload = ModifyBalance.from_argument(run.argument(action))
        record = run.economy.get_record(run.ctx.actor.id)
        before = record.balance
        record.balance = payload.apply(before)
        run.economy.set_record(run.ctx.actor.id, record)
        return f"{before}->{record.balance}"

    async def _modify_inventory(self, run: _Run, action: Action) -> str:
        payload = ModifyInventory.from_argument(run.argument(action))
        user_id = run.ctx.actor.id
        if payload.target_ref:
            parsed = parse_user_id(payload.target_ref)
            if parsed is None:
                raise MalformedArgument(f"not a user reference: {payload.target_ref!r}")
            member = run.host.resolve_member(parsed)
            if member is None:
                raise UnresolvedReference(f"unknown user {parsed}")
            user_id = member.id
        qty = adjust_inventory(run.economy, user_id, payload.item_key, payload.delta)
        return f"{payload.item_key}={qty}"

    async def _require_balance(self, run: _Run, action: Action) -> str:
        payload = RequireBalance.from_argument(run.argument(action))
        balance = run.economy.get_record(run.ctx.actor.id).balance
        if balance < payload.threshold:
            currency = f" {run.ctx.currency}" if run.ctx.currency else ""
            raise RequirementFailed(
                f"❌ {run.ctx.actor.mention}, you need at least {payload.threshold:,}{currency} to do that."
            )
        return "ok"

    async def _require_item(self, run: _Run, action: Action) -> str:
        payload = RequireItem.from_argument(run.argument(action))
        qty = run.economy.get_record(run.ctx.actor.id).quantity(payload.item_key)
        if qty < payload.min_quantity:
            raise RequirementFailed(
                f"❌ {run.ctx.actor.mention}, you need {payload.min_quantity} × {payload.item_key} to do that."
            )
        return "ok"

    async def _change_role(self, run: _Run, action: Action, *, add: bool) -> str:
        payload = RoleChange.from_argument(run.argument(action))
        if not run.host.can_manage_roles():
            raise CapabilityDenied("missing manage_roles")
        role = run.host.resolve_role(payload.role_ref)
        if role is None:
            raise UnresolvedReference(f"unknown role {payload.role_ref!r}")
        if add:
            await run.host.add_role(run.ctx.actor.id, role)
        else:
            await run.host.remove_role(run.ctx.actor.id, role)
        return role.name or str(role.id)

    async def _add_role(self, run: _Run, action: Action) -> str:
        return await self._change_role(run, action, add=True)

    async def _remove_role(self, run: _Run, action: Action) -> str:
        return await self._change_role(run, action, add=False)

    async def _set_nickname(self, run: _Run, action: Action) -> str:
        payload = SetNickname.from_argument(run.argument(action))
        if not run.host.can_manage_nicknames():
            raise CapabilityDenied("missing manage_nicknames")
        await run.host.set_nickname(run.ctx.actor.id, payload.value)
        return payload.value or "reset"

    async def _react(self, run: _Run, action: Action) -> str:
        payload = React.from_argument(run.argument(action))
        if run.ctx.message is None:
            raise UnresolvedReference("no triggering message")
        await run.host.react_to_source(payload.emoji)
        return payload.emoji

    async def _react_reply(self, run: _Run, action: Action) -> str:
        payload = React.from_argument(run.argument(action))

        async def op(handle: ReplyHandle) -> None:
            await run.host.react_to_reply(handle, payload.emoji)

        return await self._on_reply(run, action, op)

    async def _send_dm(self, run: _Run, action: Action) -> str:
        content = run.content(action)
        if not content:
            raise MalformedArgument("nothing to send")
        await self._record_reply(run, await run.host.send_dm(run.ctx.actor.id, content))
        return "sent"

    async def _send_to_channel(self, run: _Run, action: Action) -> str:
        payload = SendToChannel.from_argument(run.argument(action))
        channel = run.host.resolve_channel(payload.channel_ref)
        if channel is None:
            raise UnresolvedReference(f"unknown channel {payload.channel_ref!r}")
        content = self._render_line(run, run.content(action), run.ctx.with_channel(channel))
        if not content:
            raise MalformedArgument("nothing to send")
        await self._record_reply(run, await run.host.send(channel.id, content))
        return channel.name or str(channel.id)

    async def _emit_embed(self, run: _Run, action: Action) -> str:
        payload = EmitEmbed.from_argument(run.argument(action))
        body = run.content(action)
        if payload.embed_name:
            embed = self._stored_embed(run, payload.embed_name)
            await self._record_reply(run, await run.host.send(None, body or None, embed))
            return payload.embed_name
        if not body:
            raise MalformedArgument("embed body is empty")
        color = payload.color if payload.color is not None else self.default_embed_color
        await self._record_reply(run, await run.host.send(None, None, EmbedPayload(description=body, color=color)))
        return f"#{color:06x}"

    def _stored_embed(self, run: _Run, name: str) -> EmbedPayload:
        definition: dict[str, Any] | None = None
        if self.embeds is not None:
            definition = self.embeds.get_embed(run.ctx.scope_id, name)
        if not definition:
            raise UnresolvedReference(f"unknown embed {name!r}")
        fields = []
        for row in definition.get("fields", []) or []:
            if isinstance(row, dict) and row.get("name"):
                fields.append(
                    (str(row["name"]), self._render_line(run, str(row.get("value", ""))) or "​", bool(row.get("inline", False)))
                )
        color = definition.get("color")
        return EmbedPayload(
            title=self._render_line(run, str(definition.get("title", "") or "")),
            description=self._render_line(run, str(definition.get("description", "") or "")),
            color=int(color) if color is not None else self.default_embed_color,
            fields=fields,
            author=self._render_line(run, str(definition.get("author", "") or "")),
            author_icon=str(definition.get("author_icon", "") or ""),
            footer=self._render_line(run, str(definition.get("footer", "") or "")),
            footer_icon=str(definition.get("footer_icon", "") or ""),
            thumbnail=str(definition.get("thumbnail", "") or ""),
            image=str(definition.get("image", "") or ""),
        )

    async def _delete_invoking(self, run: _Run, action: Action) -> str:
        if run.ctx.message is None:
            raise UnresolvedReference("no triggering message")
        await run.host.delete_source()
        return "deleted"

    async def _delayed_delete_reply(self, run: _Run, action: Action) -> str:
        payload = DelayedDeleteReply.from_argument(run.argument(action))

        async def op(handle: ReplyHandle) -> None:
            await run.host.delete_reply_later(handle, payload.seconds)

        return await self._on_reply(run, action, op)
