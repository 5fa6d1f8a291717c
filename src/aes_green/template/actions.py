from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum

from aes_green.config import HEX_COLOR_RE, parse_hex_color
from aes_green.template.errors import MalformedArgument

MAX_DELETE_DELAY_SEC = 24 * 60 * 60


class ActionKind(str, Enum):
    MODIFY_BALANCE = "modifybal"
    MODIFY_INVENTORY = "modifyinv"
    REQUIRE_BALANCE = "requirebal"
    REQUIRE_ITEM = "requireitem"
    ADD_ROLE = "addrole"
    REMOVE_ROLE = "removerole"
    SET_NICKNAME = "setnick"
    REACT = "react"
    REACT_REPLY = "reactreply"
    SEND_DM = "dm"
    SEND_TO_CHANNEL = "sendto"
    EMIT_EMBED = "embed"
    DELETE_INVOKING = "delete"
    DELAYED_DELETE_REPLY = "delete_reply"
    TEXT = "text"


# First match wins per line.
ACTION_PRIORITY: tuple[ActionKind, ...] = (
    ActionKind.MODIFY_BALANCE,
    ActionKind.MODIFY_INVENTORY,
    ActionKind.REQUIRE_BALANCE,
    ActionKind.REQUIRE_ITEM,
    ActionKind.ADD_ROLE,
    ActionKind.REMOVE_ROLE,
    ActionKind.SET_NICKNAME,
    ActionKind.REACT,
    ActionKind.REACT_REPLY,
    ActionKind.SEND_DM,
    ActionKind.SEND_TO_CHANNEL,
    ActionKind.EMIT_EMBED,
    ActionKind.DELETE_INVOKING,
    ActionKind.DELAYED_DELETE_REPLY,
)
ACTION_TOKEN_NAMES: frozenset[str] = frozenset(kind.value for kind in ACTION_PRIORITY)

_KIND_PATTERNS: dict[ActionKind, re.Pattern[str]] = {
    kind: re.compile(r"\{" + re.escape(kind.value) + r"(?::([^{}]*))?\}", re.IGNORECASE) for kind in ACTION_PRIORITY
}


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    argument: str | None = None
    content: str = ""
    line: str = ""


class ActionParser:
    def parse(self, text: str) -> list[Action]:
        actions: list[Action] = []
        for raw_line in (text or "").split("\n"):
            line = raw_line.strip()
            if not line:
                continue
            actions.append(self.parse_line(line))
        return actions

    def parse_line(self, line: str) -> Action:
        for kind in ACTION_PRIORITY:
            match = _KIND_PATTERNS[kind].search(line)
            if match is None:
                continue
            content = (line[: match.start()] + line[match.end() :]).strip()
            return Action(kind=kind, argument=match.group(1), content=content, line=line)
        return Action(kind=ActionKind.TEXT, content=line, line=line)


def parse_actions(text: str) -> list[Action]:
    return ActionParser().parse(text)


def _split_args(argument: str | None) -> list[str]:
    return [part.strip() for part in (argument or "").split("|")]


def _parse_number(raw: str) -> int | float:
    text = (raw or "").strip().replace(",", "").replace("_", "")
    if not text:
        raise MalformedArgument("missing number")
    try:
        return int(text)
    except ValueError:
        pass
    try:
        value = float(text)
    except ValueError as exc:
        raise MalformedArgument(f"not a number: {raw!r}") from exc
    if math.isnan(value) or math.isinf(value):
        raise MalformedArgument(f"not a finite number: {raw!r}")
    return value


def _parse_int(raw: str, what: str) -> int:
    value = _parse_number(raw)
    if isinstance(value, float):
        if not value.is_integer():
            raise MalformedArgument(f"{what} must be a whole number, got {raw!r}")
        value = int(value)
    return value


@dataclass(frozen=True)
class ModifyBalance:
    op: str
    operand: int | float

    OPERATORS = {"+": "add", "-": "subtract", "=": "set", "*": "multiply", "x": "multiply", "/": "divide"}

    @classmethod
    def from_argument(cls, argument: str | None) -> "ModifyBalance":
        parts = _split_args(argument)
        if len(parts) > 1:
            raise MalformedArgument("modifybal actions apply to the actor only")
        raw = parts[0]
        if not raw:
            raise MalformedArgument("modifybal needs an operation")
        symbol = raw[0].lower()
        if symbol in cls.OPERATORS:
            op, number = cls.OPERATORS[symbol], raw[1:]
        else:
            op, number = "add", raw
        operand = _parse_number(number)
        if op in ("add", "subtract", "set"):
            operand = _parse_int(number, "amount")
        if op == "divide" and operand == 0:
            raise MalformedArgument("division by zero")
        return cls(op=op, operand=operand)

    def apply(self, current: int) -> int:
        if self.op == "add":
            return current + int(self.operand)
        if self.op == "subtract":
            return current - int(self.operand)
        if self.op == "set":
            return int(self.operand)
        if self.op == "multiply":
            if isinstance(self.operand, int):
                return current * self.operand
            return math.floor(current * self.operand)
        if isinstance(self.operand, int):
            return current // self.operand
        return math.floor(current / self.operand)


@dataclass(frozen=True)
class ModifyInventory:
    item_key: str
    delta: int
    target_ref: str | None = None

    @classmethod
    def from_argument(cls, argument: str | None) -> "ModifyInventory":
        parts = _split_args(argument)
        item_key = parts[0]
        if not item_key:
            raise MalformedArgument("modifyinv needs an item")
        delta = _parse_int(parts[1], "quantity") if len(parts) > 1 and parts[1] else 1
        target_ref = parts[2] if len(parts) > 2 and parts[2] else None
        return cls(item_key=item_key, delta=delta, target_ref=target_ref)


@dataclass(frozen=True)
class RequireBalance:
    threshold: int

    @classmethod
    def from_argument(cls, argument: str | None) -> "RequireBalance":
        value = _parse_number(_split_args(argument)[0])
        return cls(threshold=math.ceil(value))


@dataclass(frozen=True)
class RequireItem:
    item_key: str
    min_quantity: int = 1

    @classmethod
    def from_argument(cls, argument: str | None) -> "RequireItem":
        parts = _split_args(argument)
        if not parts[0]:
            raise MalformedArgument("requireitem needs an item")
        min_quantity = _parse_int(parts[1], "quantity") if len(parts) > 1 and parts[1] else 1
        return cls(item_key=parts[0], min_quantity=max(1, min_quantity))


@dataclass(frozen=True)
class RoleChange:
    role_ref: str

    @classmethod
    def from_argument(cls, argument: str | None) -> "RoleChange":
        ref = (argument or "").strip()
        if not ref:
            raise MalformedArgument("role reference required")
        return cls(role_ref=ref)


@dataclass(frozen=True)
class SetNickname:
    value: str | None

    @classmethod
    def from_argument(cls, argument: str | None) -> "SetNickname":
        value = (argument or "").strip()
        return cls(value=value[:32] or None)


@dataclass(frozen=True)
class React:
    emoji: str

    @classmethod
    def from_argument(cls, argument: str | None) -> "React":
        emoji = (argument or "").strip()
        if not emoji:
            raise MalformedArgument("emoji required")
        return cls(emoji=emoji)


@dataclass(frozen=True)
class SendToChannel:
    channel_ref: str

    @classmethod
    def from_argument(cls, argument: str | None) -> "SendToChannel":
        ref = (argument or "").strip()
        if not ref:
            raise MalformedArgument("channel reference required")
        return cls(channel_ref=ref)


@dataclass(frozen=True)
class EmitEmbed:
    color: int | None = None
    embed_name: str | None = None

    @classmethod
    def from_argument(cls, argument: str | None) -> "EmitEmbed":
        raw = (argument or "").strip()
        if not raw:
            return cls()
        if HEX_COLOR_RE.match(raw):
            return cls(color=parse_hex_color(raw, default=0))
        return cls(embed_name=raw)


@dataclass(frozen=True)
class DelayedDeleteReply:
    seconds: int

    @classmethod
    def from_argument(cls, argument: str | None) -> "DelayedDeleteReply":
        raw = (argument or "").strip()
        seconds = _parse_int(raw, "delay") if raw else 0
        if seconds < 0:
            raise MalformedArgument("delay must not be negative")
        return cls(seconds=min(seconds, MAX_DELETE_DELAY_SEC))
