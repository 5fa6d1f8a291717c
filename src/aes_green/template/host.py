from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from aes_green.template.context import ChannelSnapshot, UserSnapshot


@dataclass(frozen=True)
class RoleRef:
    id: int
    name: str = ""


@dataclass
class EmbedPayload:
    description: str = ""
    title: str = ""
    color: int | None = None
    fields: list[tuple[str, str, bool]] = field(default_factory=list)
    author: str = ""
    author_icon: str = ""
    footer: str = ""
    footer_icon: str = ""
    thumbnail: str = ""
    image: str = ""


@dataclass(frozen=True)
class ReplyHandle:
    """Opaque reference to a message the host emitted on the engine's behalf."""

    channel_id: int
    message_id: int
    raw: Any = None


class ActionHost(ABC):
    """Outbound capability set the executor drives.

    Lookups are synchronous cache reads; anything touching the network is a
    coroutine. Implementations raise on delivery failure; the executor isolates
    those failures per action.
    """

    def can_manage_roles(self) -> bool:
        return False

    def can_manage_nicknames(self) -> bool:
        return False

    def resolve_role(self, ref: str) -> RoleRef | None:
        return None

    def resolve_member(self, user_id: int) -> UserSnapshot | None:
        return None

    def resolve_channel(self, ref: str) -> ChannelSnapshot | None:
        return None

    @abstractmethod
    async def send(
        self,
        channel_id: int | None,
        content: str | None = None,
        embed: EmbedPayload | None = None,
    ) -> ReplyHandle | None:
        ...

    @abstractmethod
    async def send_dm(
        self,
        user_id: int,
        content: str | None = None,
        embed: EmbedPayload | None = None,
    ) -> ReplyHandle | None:
        ...

    @abstractmethod
    async def add_role(self, user_id: int, role: RoleRef) -> None:
        ...

    @abstractmethod
    async def remove_role(self, user_id: int, role: RoleRef) -> None:
        ...

    @abstractmethod
    async def set_nickname(self, user_id: int, nickname: str | None) -> None:
        ...

    @abstractmethod
    async def react_to_source(self, emoji: str) -> None:
        ...

    @abstractmethod
    async def react_to_reply(self, handle: ReplyHandle, emoji: str) -> None:
        ...

    @abstractmethod
    async def delete_source(self) -> None:
        ...

    @abstractmethod
    async def delete_reply_later(self, handle: ReplyHandle, seconds: int) -> None:
        ...
