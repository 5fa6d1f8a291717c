from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class EconomyRecord:
    balance: int = 0
    bank_balance: int = 0
    inventory: dict[str, int] = field(default_factory=dict)

    def quantity(self, item_key: str) -> int:
        return max(0, int(self.inventory.get(item_key, 0)))

    def adjust_item(self, item_key: str, delta: int) -> int:
        new_qty = max(0, self.quantity(item_key) + int(delta))
        if new_qty:
            self.inventory[item_key] = new_qty
        else:
            self.inventory.pop(item_key, None)
        return new_qty

    def to_row(self) -> dict[str, Any]:
        return {
            "balance": int(self.balance),
            "bank": int(self.bank_balance),
            "inventory": {str(k): int(v) for k, v in self.inventory.items() if int(v) > 0},
        }

    @staticmethod
    def from_row(row: dict[str, Any] | None, *, default_balance: int = 0) -> "EconomyRecord":
        if not isinstance(row, dict):
            return EconomyRecord(balance=int(default_balance))
        inventory: dict[str, int] = {}
        raw_inventory = row.get("inventory", {})
        if isinstance(raw_inventory, dict):
            for key, value in raw_inventory.items():
                try:
                    qty = int(value)
                except (TypeError, ValueError):
                    continue
                if qty > 0:
                    inventory[str(key)] = qty
        return EconomyRecord(
            balance=_to_int(row.get("balance", default_balance)),
            bank_balance=_to_int(row.get("bank", 0)),
            inventory=inventory,
        )


class EconomyStore(Protocol):
    def get_record(self, user_id: int) -> EconomyRecord: ...

    def set_record(self, user_id: int, record: EconomyRecord) -> None: ...


class EmbedSource(Protocol):
    def get_embed(self, guild_id: int, name: str) -> dict[str, Any] | None: ...


class MemoryEconomyStore:
    def __init__(self, default_balance: int = 0) -> None:
        self.default_balance = int(default_balance)
        self.rows: dict[int, dict[str, Any]] = {}

    def get_record(self, user_id: int) -> EconomyRecord:
        key = int(user_id)
        if key not in self.rows:
            self.rows[key] = EconomyRecord(balance=self.default_balance).to_row()
        return EconomyRecord.from_row(self.rows[key], default_balance=self.default_balance)

    def set_record(self, user_id: int, record: EconomyRecord) -> None:
        self.rows[int(user_id)] = record.to_row()


class PreviewEconomyStore:
    """Copy-on-write view over another store; writes never reach the backing store."""

    def __init__(self, backing: EconomyStore) -> None:
        self.backing = backing
        self.overlay: dict[int, dict[str, Any]] = {}

    def get_record(self, user_id: int) -> EconomyRecord:
        key = int(user_id)
        if key in self.overlay:
            return EconomyRecord.from_row(self.overlay[key])
        return self.backing.get_record(key)

    def set_record(self, user_id: int, record: EconomyRecord) -> None:
        self.overlay[int(user_id)] = record.to_row()


def read_balance(store: EconomyStore, user_id: int) -> int:
    return store.get_record(user_id).balance


def write_balance(store: EconomyStore, user_id: int, value: int) -> int:
    record = store.get_record(user_id)
    record.balance = int(value)
    store.set_record(user_id, record)
    return record.balance


def adjust_inventory(store: EconomyStore, user_id: int, item_key: str, delta: int) -> int:
    record = store.get_record(user_id)
    qty = record.adjust_item(item_key, delta)
    store.set_record(user_id, record)
    return qty


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0
