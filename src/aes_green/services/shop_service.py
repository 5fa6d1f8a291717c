from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from aes_green.errors import CommandError
from aes_green.services.economy_service import EconomyService
from aes_green.services.logger_service import LoggerService
from aes_green.storage import MessagePackStore

UNLIMITED_STOCK = -1
MAX_ITEM_NAME_LEN = 64
EDITABLE_FIELDS = ("name", "price", "stock", "description", "role", "requirerole", "removerole", "reply", "disablegive")


@dataclass
class Purchase:
    item: dict[str, Any]
    amount: int
    cost: int
    balance: int
    quantity: int


def _item_key(name: str) -> str:
    return (name or "").strip().lower()


class ShopService:
    def __init__(self, store: MessagePackStore, logger: LoggerService, economy: EconomyService) -> None:
        self.store = store
        self.logger = logger
        self.economy = economy

    def _catalog(self, guild_id: int) -> dict[str, dict[str, Any]]:
        return self.store.guild_node("shops", guild_id)

    def list_items(self, guild_id: int) -> list[dict[str, Any]]:
        return sorted(self._catalog(guild_id).values(), key=lambda item: (int(item.get("price", 0)), str(item.get("name", ""))))

    def page(self, guild_id: int, page: int = 1, per_page: int = 10) -> tuple[list[dict[str, Any]], int, int]:
        items = self.list_items(guild_id)
        pages = max(1, (len(items) + per_page - 1) // per_page)
        page = min(max(1, int(page)), pages)
        start = (page - 1) * per_page
        return items[start : start + per_page], page, pages

    def get_item(self, guild_id: int, name: str) -> dict[str, Any] | None:
        return self._catalog(guild_id).get(_item_key(name))

    def require_item(self, guild_id: int, name: str) -> dict[str, Any]:
        item = self.get_item(guild_id, name)
        if item is None:
            raise CommandError(f"No shop item named `{name}`.")
        return item

    def add_item(
        self,
        guild_id: int,
        name: str,
        price: int,
        *,
        stock: int = UNLIMITED_STOCK,
        description: str = "",
        role_id: int = 0,
    ) -> dict[str, Any]:
        name = (name or "").strip()
        if not name or len(name) > MAX_ITEM_NAME_LEN:
            raise CommandError(f"Item name must be 1 to {MAX_ITEM_NAME_LEN} characters.")
        if int(price) < 0:
            raise CommandError("Price cannot be negative.")
        catalog = self._catalog(guild_id)
        if _item_key(name) in catalog:
            raise CommandError(f"`{name}` is already in the shop.")
        item = {
            "name": name,
            "price": int(price),
            "stock": int(stock) if int(stock) >= 0 else UNLIMITED_STOCK,
            "description": (description or "").strip(),
            "role": int(role_id or 0),
            "requirerole": 0,
            "removerole": 0,
            "reply": "",
            "disablegive": False,
        }
        catalog[_item_key(name)] = item
        self.store.touch()
        self.logger.log("shop.add", guild_id=int(guild_id), item=name, price=int(price))
        return item

    def edit_item(self, guild_id: int, name: str, field: str, value: Any) -> dict[str, Any]:
        field = (field or "").strip().lower()
        if field not in EDITABLE_FIELDS:
            raise CommandError(f"Editable fields: {', '.join(EDITABLE_FIELDS)}.")
        catalog = self._catalog(guild_id)
        item = self.require_item(guild_id, name)
        if field == "name":
            new_name = str(value or "").strip()
            if not new_name or len(new_name) > MAX_ITEM_NAME_LEN:
                raise CommandError(f"Item name must be 1 to {MAX_ITEM_NAME_LEN} characters.")
            if _item_key(new_name) != _item_key(name) and _item_key(new_name) in catalog:
                raise CommandError(f"`{new_name}` is already in the shop.")
            catalog.pop(_item_key(name), None)
            item["name"] = new_name
            catalog[_item_key(new_name)] = item
        elif field == "price":
            if int(value) < 0:
                raise CommandError("Price cannot be negative.")
            item["price"] = int(value)
        elif field == "stock":
            item["stock"] = int(value) if int(value) >= 0 else UNLIMITED_STOCK
        elif field in ("role", "requirerole", "removerole"):
            item[field] = int(value or 0)
        elif field == "disablegive":
            item[field] = bool(value)
        else:
            item[field] = str(value or "").strip()
        self.store.touch()
        self.logger.log("shop.edit", guild_id=int(guild_id), item=item["name"], field=field)
        return item

    def remove_item(self, guild_id: int, name: str) -> bool:
        removed = self._catalog(guild_id).pop(_item_key(name), None)
        if removed is not None:
            self.store.touch()
            self.logger.log("shop.remove", guild_id=int(guild_id), item=removed["name"])
        return removed is not None

    def reset(self, guild_id: int) -> int:
        catalog = self._catalog(guild_id)
        count = len(catalog)
        catalog.clear()
        self.store.touch()
        self.logger.log("shop.reset", guild_id=int(guild_id), items=count)
        return count

    def purchase(
        self,
        guild_id: int,
        user_id: int,
        name: str,
        amount: int = 1,
        *,
        member_role_ids: Iterable[int] = (),
    ) -> Purchase:
        amount = int(amount)
        if amount < 1:
            raise CommandError("Amount must be at least 1.")
        item = self.require_item(guild_id, name)
        stock = int(item.get("stock", UNLIMITED_STOCK))
        if stock != UNLIMITED_STOCK and stock < amount:
            raise CommandError(f"Only {stock} × {item['name']} left in stock.")
        required = int(item.get("requirerole", 0) or 0)
        if required and required not in {int(role_id) for role_id in member_role_ids}:
            raise CommandError(f"You need the <@&{required}> role to buy {item['name']}.")
        economy = self.economy.scoped(guild_id)
        cost = int(item.get("price", 0)) * amount
        if economy.balance(user_id) < cost:
            raise CommandError(f"You need {cost:,} to buy {amount} × {item['name']}.")
        balance = economy.add_balance(user_id, -cost)
        quantity = economy.add_item(user_id, item["name"], amount)
        if stock != UNLIMITED_STOCK:
            item["stock"] = stock - amount
            self.store.touch()
        self.logger.log("shop.purchase", guild_id=int(guild_id), user_id=int(user_id), item=item["name"], amount=amount, cost=cost)
        return Purchase(item=item, amount=amount, cost=cost, balance=balance, quantity=quantity)
