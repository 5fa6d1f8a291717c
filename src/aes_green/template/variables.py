from __future__ import annotations

import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from enum import IntEnum
from typing import Callable, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from aes_green.template.context import EvaluationContext, UserSnapshot
from aes_green.template.errors import Diagnostics, MalformedArgument, TemplateError
from aes_green.template.state import EconomyStore, read_balance, write_balance
from aes_green.utils.mentions import parse_user_id

TOKEN_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)(?::([^{}]*))?\}")
SWEEP_RE = re.compile(r"\{[^{}]+\}")
RANGE_RE = re.compile(r"^\s*(-?\d+)\s*-\s*(-?\d+)\s*$")
MARKER_RE = re.compile("\x00(\\d+)\x00")

MAX_NESTING = 4
DATE_FORMAT = "%a %b %d %Y %H:%M:%S %Z"
UNKNOWN_DATE = "Unknown"
NOT_A_BOOSTER = "Not a Booster"
DEFAULT_DISPLAY_COLOR = "#000000"
EMPTY_INVENTORY = "No items"


class TokenCategory(IntEnum):
    STRUCTURAL = 1
    IDENTITY = 2
    GUILD = 3
    CHANNEL = 4
    MESSAGE = 5
    RANDOM = 6
    MUTATION = 7


@dataclass
class ResolveScope:
    ctx: EvaluationContext
    economy: EconomyStore | None
    rng: random.Random
    tz: tzinfo
    clock: Callable[[], datetime]

    def format_date(self, value: datetime | None, fallback: str = "") -> str:
        if value is None:
            return fallback
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(self.tz).strftime(DATE_FORMAT)


TokenResolver = Callable[[ResolveScope, "str | None"], str]


@dataclass(frozen=True)
class VariableDefinition:
    name: str
    category: TokenCategory
    resolver: TokenResolver
    raw: bool = False
    deferred_when_alone: bool = False


class VariableRegistry:
    def __init__(self) -> None:
        self._definitions: dict[str, VariableDefinition] = {}

    def register(
        self,
        name: str,
        category: TokenCategory,
        *,
        raw: bool = False,
        deferred_when_alone: bool = False,
    ) -> Callable[[TokenResolver], TokenResolver]:
        def decorator(func: TokenResolver) -> TokenResolver:
            self.add(VariableDefinition(name.lower(), category, func, raw=raw, deferred_when_alone=deferred_when_alone))
            return func

        return decorator

    def add(self, definition: VariableDefinition) -> None:
        self._definitions[definition.name] = definition

    def get(self, name: str) -> VariableDefinition | None:
        return self._definitions.get(name.lower())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._definitions


class ValueVault:
    """Holds substituted values behind opaque markers until the final reveal.

    Text produced by a resolver (nicknames, message content, bios) never goes
    back through token scanning, action parsing or the unknown-token sweep.
    """

    def __init__(self) -> None:
        self._values: list[str] = []

    def stash(self, value: str) -> str:
        self._values.append(str(value).replace("\x00", ""))
        return f"\x00{len(self._values) - 1}\x00"

    def reveal(self, text: str) -> str:
        for _ in range(MAX_NESTING + 2):
            if "\x00" not in text:
                break
            text = MARKER_RE.sub(self._lookup, text)
        return text.replace("\x00", "")

    def _lookup(self, match: re.Match[str]) -> str:
        index = int(match.group(1))
        if 0 <= index < len(self._values):
            return self._values[index]
        return ""


class VariableResolver:
    def __init__(
        self,
        registry: VariableRegistry | None = None,
        *,
        preserve: Iterable[str] = (),
        timezone_name: str = "UTC",
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self.registry = registry or build_default_registry()
        self.preserve = frozenset(name.lower() for name in preserve)
        self.tz = _load_timezone(timezone_name)
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self.diagnostics = diagnostics

    def resolve(self, template: str, ctx: EvaluationContext, economy: EconomyStore | None = None) -> str:
        vault = ValueVault()
        return vault.reveal(self.render(template, ctx, economy=economy, vault=vault))

    def render(
        self,
        template: str,
        ctx: EvaluationContext,
        *,
        economy: EconomyStore | None = None,
        vault: ValueVault,
        defer_lines_with: str | None = None,
    ) -> str:
        if not template:
            return ""
        scope = ResolveScope(ctx=ctx, economy=economy, rng=self.rng, tz=self.tz, clock=self.clock)
        text = str(template)
        for category in TokenCategory:
            text = self._run_category(text, category, scope, vault)
            if category is TokenCategory.STRUCTURAL and defer_lines_with:
                text = _defer_lines(text, defer_lines_with, vault)
        return SWEEP_RE.sub(self._sweep, text)

    def _run_category(self, text: str, category: TokenCategory, scope: ResolveScope, vault: ValueVault) -> str:
        for _ in range(MAX_NESTING):
            changed = False

            def substitute(match: re.Match[str]) -> str:
                nonlocal changed
                definition = self.registry.get(match.group(1))
                if definition is None or definition.category != category:
                    return match.group(0)
                if _defer_to_action(definition, match) and definition.name in self.preserve:
                    return match.group(0)
                arg = match.group(2)
                if arg is not None:
                    arg = vault.reveal(arg)
                changed = True
                try:
                    value = definition.resolver(scope, arg)
                except TemplateError as exc:
                    self._report(exc.kind, definition.name, arg, exc)
                    value = ""
                except Exception as exc:  # noqa: BLE001
                    self._report("io_failure", definition.name, arg, exc)
                    value = ""
                if definition.raw:
                    return value
                return vault.stash(value)

            text = TOKEN_RE.sub(substitute, text)
            if not changed:
                break
        return text

    def _sweep(self, match: re.Match[str]) -> str:
        token = TOKEN_RE.fullmatch(match.group(0))
        if token and token.group(1).lower() in self.preserve:
            return match.group(0)
        return ""

    def _report(self, kind: str, token: str, arg: str | None, exc: Exception) -> None:
        if self.diagnostics is None:
            return
        self.diagnostics.diagnostic(kind, stage="resolve", token=token, argument=arg or "", error=str(exc)[:300])


def _defer_to_action(definition: VariableDefinition, match: re.Match[str]) -> bool:
    # a |target argument only exists on the inline form
    return definition.deferred_when_alone and "|" not in (match.group(2) or "") and _stands_alone(match)


def _stands_alone(match: re.Match[str]) -> bool:
    text = match.string
    line_start = text.rfind("\n", 0, match.start()) + 1
    line_end = text.find("\n", match.end())
    if line_end < 0:
        line_end = len(text)
    return not text[line_start : match.start()].strip() and not text[match.end() : line_end].strip()


def _defer_lines(text: str, token_name: str, vault: ValueVault) -> str:
    lines = text.split("\n")
    for index, line in enumerate(lines):
        for match in TOKEN_RE.finditer(line):
            if match.group(1).lower() != token_name:
                continue
            rest = (line[: match.start()] + line[match.end() :]).strip()
            lines[index] = match.group(0) + (vault.stash(rest) if rest else "")
            break
    return "\n".join(lines)


def _load_timezone(name: str) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def _parse_int(raw: str | None) -> int:
    text = (raw or "").strip().replace(",", "").replace("_", "")
    if not text:
        raise MalformedArgument("missing number")
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return int(float(text))
    except ValueError as exc:
        raise MalformedArgument(f"not a number: {raw!r}") from exc


def _register_identity(registry: VariableRegistry, prefix: str, pick: Callable[[EvaluationContext], UserSnapshot]) -> None:
    def token(suffix: str) -> str:
        return f"{prefix}_{suffix}" if suffix else prefix

    def field_token(suffix: str, getter: Callable[[ResolveScope, UserSnapshot], str]) -> None:
        def resolver(scope: ResolveScope, arg: str | None) -> str:
            return getter(scope, pick(scope.ctx))

        registry.add(VariableDefinition(token(suffix), TokenCategory.IDENTITY, resolver))

    def balance(scope: ResolveScope, user: UserSnapshot) -> int | None:
        if scope.economy is None:
            return None
        return read_balance(scope.economy, user.id)

    def inventory_listing(scope: ResolveScope, user: UserSnapshot) -> str:
        if scope.economy is None:
            return EMPTY_INVENTORY
        items = scope.economy.get_record(user.id).inventory
        lines = [f"{qty} × {item}" for item, qty in items.items() if qty > 0]
        return "\n".join(lines) or EMPTY_INVENTORY

    field_token("", lambda scope, user: user.mention)
    field_token("tag", lambda scope, user: user.tag)
    field_token("name", lambda scope, user: user.name)
    field_token("avatar", lambda scope, user: user.avatar_url)
    field_token("id", lambda scope, user: str(user.id))
    field_token("discrim", lambda scope, user: user.discriminator)
    field_token("nick", lambda scope, user: (user.nickname or user.shown_name) if user.is_member else user.shown_name)
    field_token("joindate", lambda scope, user: scope.format_date(user.joined_at, UNKNOWN_DATE))
    field_token("createdate", lambda scope, user: scope.format_date(user.created_at))
    field_token("displaycolor", lambda scope, user: user.display_color or DEFAULT_DISPLAY_COLOR)
    field_token("boostsince", lambda scope, user: scope.format_date(user.premium_since, NOT_A_BOOSTER))
    field_token("balance", lambda scope, user: "" if balance(scope, user) is None else str(balance(scope, user)))
    field_token(
        "balance_locale",
        lambda scope, user: "" if balance(scope, user) is None else f"{balance(scope, user):,}",
    )
    field_token(
        "bank",
        lambda scope, user: "" if scope.economy is None else str(scope.economy.get_record(user.id).bank_balance),
    )
    field_token("inventory", inventory_listing)

    def item(scope: ResolveScope, arg: str | None) -> str:
        key = (arg or "").strip()
        if not key:
            raise MalformedArgument("item key required")
        qty = 0 if scope.economy is None else scope.economy.get_record(pick(scope.ctx).id).quantity(key)
        return f"{qty} × {key}"

    def item_count(scope: ResolveScope, arg: str | None) -> str:
        key = (arg or "").strip()
        if not key:
            raise MalformedArgument("item key required")
        qty = 0 if scope.economy is None else scope.economy.get_record(pick(scope.ctx).id).quantity(key)
        return str(qty)

    registry.add(VariableDefinition(token("item"), TokenCategory.IDENTITY, item))
    registry.add(VariableDefinition(token("item_count"), TokenCategory.IDENTITY, item_count))


def build_default_registry() -> VariableRegistry:
    registry = VariableRegistry()

    @registry.register("newline", TokenCategory.STRUCTURAL, raw=True)
    def newline(scope: ResolveScope, arg: str | None) -> str:
        return "\n"

    @registry.register("date", TokenCategory.STRUCTURAL)
    def date(scope: ResolveScope, arg: str | None) -> str:
        return scope.format_date(scope.clock())

    _register_identity(registry, "user", lambda ctx: ctx.actor)
    _register_identity(registry, "target", lambda ctx: ctx.target_user)

    def guild_token(name: str, getter: Callable[[ResolveScope], str]) -> None:
        def resolver(scope: ResolveScope, arg: str | None) -> str:
            if scope.ctx.guild is None:
                return ""
            return getter(scope)

        registry.add(VariableDefinition(name, TokenCategory.GUILD, resolver))

    def bot_count(scope: ResolveScope) -> str:
        roster = scope.ctx.guild.roster if scope.ctx.guild else None
        if roster is None:
            return ""
        return str(sum(1 for entry in roster if entry.bot))

    def random_member(scope: ResolveScope) -> str:
        roster = scope.ctx.guild.roster if scope.ctx.guild else None
        humans = [entry for entry in roster or () if not entry.bot]
        if not humans:
            return ""
        return f"<@{scope.rng.choice(humans).id}>"

    guild_token("server_name", lambda scope: scope.ctx.guild.name)
    guild_token("server_id", lambda scope: str(scope.ctx.guild.id))
    guild_token("server_membercount", lambda scope: str(scope.ctx.guild.member_count))
    guild_token("server_botcount", bot_count)
    guild_token("server_owner", lambda scope: f"<@{scope.ctx.guild.owner_id}>" if scope.ctx.guild.owner_id else "")
    guild_token("server_createdate", lambda scope: scope.format_date(scope.ctx.guild.created_at))
    guild_token("server_icon", lambda scope: scope.ctx.guild.icon_url)
    guild_token("server_boostcount", lambda scope: str(scope.ctx.guild.premium_subscription_count))
    guild_token("server_boosttier", lambda scope: str(scope.ctx.guild.premium_tier))
    guild_token("server_randommember", random_member)
    guild_token("server_currency", lambda scope: scope.ctx.currency)

    def channel_token(name: str, getter: Callable[[ResolveScope], str]) -> None:
        def resolver(scope: ResolveScope, arg: str | None) -> str:
            if scope.ctx.channel is None:
                return ""
            return getter(scope)

        registry.add(VariableDefinition(name, TokenCategory.CHANNEL, resolver))

    channel_token("channel", lambda scope: scope.ctx.channel.mention)
    channel_token("channel_name", lambda scope: scope.ctx.channel.name)
    channel_token("channel_createdate", lambda scope: scope.format_date(scope.ctx.channel.created_at))

    def message_token(name: str, getter: Callable[[ResolveScope], str]) -> None:
        def resolver(scope: ResolveScope, arg: str | None) -> str:
            if scope.ctx.message is None:
                return ""
            return getter(scope)

        registry.add(VariableDefinition(name, TokenCategory.MESSAGE, resolver))

    message_token("message_id", lambda scope: str(scope.ctx.message.id))
    message_token("message_content", lambda scope: scope.ctx.message.content)
    message_token("message_link", lambda scope: scope.ctx.message.link)

    @registry.register("range", TokenCategory.RANDOM)
    def range_token(scope: ResolveScope, arg: str | None) -> str:
        match = RANGE_RE.match(arg or "")
        if not match:
            raise MalformedArgument(f"range expects A-B, got {arg!r}")
        low, high = int(match.group(1)), int(match.group(2))
        if low > high:
            low, high = high, low
        return str(scope.rng.randint(low, high))

    @registry.register("choose", TokenCategory.RANDOM)
    def choose(scope: ResolveScope, arg: str | None) -> str:
        options = [part for part in (arg or "").split("|") if part.strip()]
        if not options:
            return ""
        return scope.rng.choice(options).strip()

    @registry.register("modifybal", TokenCategory.MUTATION, deferred_when_alone=True)
    def modifybal(scope: ResolveScope, arg: str | None) -> str:
        if scope.economy is None:
            return ""
        parts = [part.strip() for part in (arg or "").split("|")]
        op = parts[0] if parts else ""
        target_id = scope.ctx.actor.id
        if len(parts) > 1 and parts[1]:
            target_id = parse_user_id(parts[1]) or target_id
        current = read_balance(scope.economy, target_id)
        if not op or op[0] not in "+-=":
            return str(current)
        try:
            amount = _parse_int(op[1:])
        except MalformedArgument:
            if op[0] == "=":
                return str(current)
            amount = 0
        if op[0] == "+":
            return str(write_balance(scope.economy, target_id, current + amount))
        if op[0] == "-":
            return str(write_balance(scope.economy, target_id, current - amount))
        return str(write_balance(scope.economy, target_id, amount))

    return registry

