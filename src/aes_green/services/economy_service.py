from __future__ import annotations

from typing import Any, Callable

from aes_green.errors import CommandError
from aes_green.services.logger_service import LoggerService
from aes_green.storage import MessagePackStore
from aes_green.template.state import EconomyRecord


class ScopedEconomy:
    """Economy records of one guild; satisfies the template engine's EconomyStore."""

    def __init__(self, service: "EconomyService", guild_id: int) -> None:
        self.service = service
        self.guild_id = int(guild_id)

    def _rows(self) -> dict[str, Any]:
        return self.service.store.guild_node("economy", self.guild_id)

    def get_record(self, user_id: int) -> EconomyRecord:
        rows = self._rows()
        key = str(int(user_id))
        start = self.service.start_balance(self.guild_id)
        if not isinstance(rows.get(key), dict):
            rows[key] = EconomyRecord(balance=start).to_row()
            self.service.store.touch()
        return EconomyRecord.from_row(rows[key], default_balance=start)

    def set_record(self, user_id: int, record: EconomyRecord) -> None:
        self._rows()[str(int(user_id))] = record.to_row()
        self.service.store.touch()

    def balance(self, user_id: int) -> int:
        return self.get_record(user_id).balance

    def set_balance(self, user_id: int, amount: int) -> int:
        record = self.get_record(user_id)
        record.balance = int(amount)
        self.set_record(user_id, record)
        return record.balance

    def add_balance(self, user_id: int, delta: int) -> int:
        record = self.get_record(user_id)
        record.balance += int(delta)
        self.set_record(user_id, record)
        return record.balance

    def item_quantity(self, user_id: int, item_key: str) -> int:
        return self.get_record(user_id).quantity(item_key)

    def add_item(self, user_id: int, item_key: str, delta: int = 1) -> int:
        record = self.get_record(user_id)
        qty = record.adjust_item(item_key, delta)
        self.set_record(user_id, record)
        return qty

    def inventory(self, user_id: int) -> dict[str, int]:
        return dict(self.get_record(user_id).inventory)

    def known_users(self) -> list[int]:
        return [int(key) for key in self._rows().keys()]


class EconomyService:
    def __init__(
        self,
        store: MessagePackStore,
        logger: LoggerService,
        *,
        start_balance: Callable[[int], int] | None = None,
    ) -> None:
        self.store = store
        self.logger = logger
        self._start_balance = start_balance or (lambda guild_id: 0)

    def start_balance(self, guild_id: int) -> int:
        return int(self._start_balance(int(guild_id)))

    def scoped(self, guild_id: int | None) -> ScopedEconomy:
        return ScopedEconomy(self, int(guild_id or 0))

    def leaderboard(self, guild_id: int, *, page: int = 1, per_page: int = 10) -> tuple[list[tuple[int, int]], int]:
        rows = self.store.guild_node("economy", guild_id)
        ranked = sorted(
            ((int(user_id), int(row.get("balance", 0))) for user_id, row in rows.items() if isinstance(row, dict)),
            key=lambda pair: (-pair[1], pair[0]),
        )
        pages = max(1, (len(ranked) + per_page - 1) // per_page)
        page = min(max(1, int(page)), pages)
        start = (page - 1) * per_page
        return ranked[start : start + per_page], pages

    def transfer(
        self,
        guild_id: int,
        sender_id: int,
        receiver_id: int,
        amount: int,
        *,
        minimum: int = 1,
        maximum: int = 0,
        tax_percent: int = 0,
    ) -> tuple[int, int]:
        """Move currency between two members; returns (amount received, tax taken)."""
        if sender_id == receiver_id:
            raise CommandError("You cannot give currency to yourself.")
        amount = int(amount)
        if amount < max(1, int(minimum)):
            raise CommandError(f"The minimum transfer is {max(1, int(minimum)):,}.")
        if maximum and amount > int(maximum):
            raise CommandError(f"The maximum transfer is {int(maximum):,}.")
        economy = self.scoped(guild_id)
        if economy.balance(sender_id) < amount:
            raise CommandError("You do not have enough to give that much.")
        tax = (amount * max(0, min(100, int(tax_percent)))) // 100
        economy.add_balance(sender_id, -amount)
        economy.add_balance(receiver_id, amount - tax)
        self.logger.log(
            "economy.transfer",
            guild_id=int(guild_id),
            sender_id=int(sender_id),
            receiver_id=int(receiver_id),
            amount=amount,
            tax=tax,
        )
        return amount - tax, tax

    def give_item(self, guild_id: int, sender_id: int, receiver_id: int, item_key: str, quantity: int = 1) -> int:
        if sender_id == receiver_id:
            raise CommandError("You cannot give an item to yourself.")
        quantity = int(quantity)
        if quantity < 1:
            raise CommandError("Quantity must be at least 1.")
        economy = self.scoped(guild_id)
        if economy.item_quantity(sender_id, item_key) < quantity:
            raise CommandError(f"You do not have {quantity} × {item_key}.")
        economy.add_item(sender_id, item_key, -quantity)
        received = economy.add_item(receiver_id, item_key, quantity)
        self.logger.log(
            "economy.give_item",
            guild_id=int(guild_id),
            sender_id=int(sender_id),
            receiver_id=int(receiver_id),
            item=item_key,
            quantity=quantity,
        )
        return received

    def reset_user(self, guild_id: int, user_id: int, *, balance: bool = False, inventory: bool = False) -> None:
        economy = self.scoped(guild_id)
        record = economy.get_record(user_id)
        if balance:
            record.balance = 0
        if inventory:
            record.inventory = {}
        economy.set_record(user_id, record)
        self.logger.log("economy.reset_user", guild_id=int(guild_id), user_id=int(user_id), balance=balance, inventory=inventory)

    def reset_guild(self, guild_id: int, *, balances: bool = False, inventories: bool = False) -> int:
        economy = self.scoped(guild_id)
        users = economy.known_users()
        for user_id in users:
            record = economy.get_record(user_id)
            if balances:
                record.balance = 0
            if inventories:
                record.inventory = {}
            economy.set_record(user_id, record)
        self.logger.log(
            "economy.reset_guild",
            guild_id=int(guild_id),
            users=len(users),
            balances=balances,
            inventories=inventories,
        )
        return len(users)
