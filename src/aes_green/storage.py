from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import msgpack


DEFAULT_STORE: dict[str, Any] = {
    "meta": {"version": 1},
    "economy": {},
    "servers": {},
    "shops": {},
    "embeds": {},
    "autoresponders": {},
    "cooldowns": {
        "autoresponders": {},
        "activities": {},
    },
    "drops": {},
    "logs": [],
}

AUTOSAVE_INTERVAL_SEC = 5


class MessagePackStore:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._dirty = False
        self.data: dict[str, Any] = _clone_defaults()

    async def load(self) -> None:
        async with self._lock:
            if not self.path.exists():
                self.data = _clone_defaults()
                await self._save_unlocked()
                return
            raw = self.path.read_bytes()
            self.data = msgpack.unpackb(raw, raw=False, strict_map_key=False)
            self._ensure_schema()

    async def autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(AUTOSAVE_INTERVAL_SEC)
            if self._dirty:
                await self.save()

    async def save(self) -> None:
        async with self._lock:
            await self._save_unlocked()

    async def _save_unlocked(self) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        packed = msgpack.packb(self.data, use_bin_type=True)
        tmp.write_bytes(packed)
        tmp.replace(self.path)
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    def touch(self) -> None:
        self._dirty = True

    def guild_node(self, root_key: str, guild_id: int) -> dict[str, Any]:
        root = self.data.setdefault(root_key, {})
        node = root.get(str(int(guild_id)))
        if not isinstance(node, dict):
            node = {}
            root[str(int(guild_id))] = node
            self.touch()
        return node

    def _ensure_schema(self) -> None:
        defaults = _clone_defaults()
        for key, value in defaults.items():
            if key not in self.data:
                self.data[key] = value
            elif isinstance(value, dict) and isinstance(self.data[key], dict):
                for sub_key, sub_value in value.items():
                    self.data[key].setdefault(sub_key, sub_value)
        self._dirty = True


def _clone_defaults() -> dict[str, Any]:
    return msgpack.unpackb(msgpack.packb(DEFAULT_STORE, use_bin_type=True), raw=False)
