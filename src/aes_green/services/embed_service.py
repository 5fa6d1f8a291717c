from __future__ import annotations

from typing import Any

from aes_green.config import HEX_COLOR_RE, parse_hex_color
from aes_green.errors import CommandError
from aes_green.services.logger_service import LoggerService
from aes_green.storage import MessagePackStore

EMBED_FIELDS = ("title", "description", "color", "author", "footer", "thumbnail", "image")
MAX_EMBED_NAME_LEN = 32
MAX_EMBED_FIELDS = 25


def _embed_key(name: str) -> str:
    return (name or "").strip().lower()


class EmbedService:
    def __init__(self, store: MessagePackStore, logger: LoggerService) -> None:
        self.store = store
        self.logger = logger

    def _definitions(self, guild_id: int) -> dict[str, dict[str, Any]]:
        return self.store.guild_node("embeds", guild_id)

    def get_embed(self, guild_id: int, name: str) -> dict[str, Any] | None:
        return self._definitions(guild_id).get(_embed_key(name))

    def list_names(self, guild_id: int) -> list[str]:
        return sorted(str(row.get("name", key)) for key, row in self._definitions(guild_id).items())

    def create(self, guild_id: int, name: str) -> dict[str, Any]:
        name = (name or "").strip()
        if not name or len(name) > MAX_EMBED_NAME_LEN or " " in name:
            raise CommandError(f"Embed name must be 1 to {MAX_EMBED_NAME_LEN} characters without spaces.")
        definitions = self._definitions(guild_id)
        if _embed_key(name) in definitions:
            raise CommandError(f"An embed named `{name}` already exists.")
        definition: dict[str, Any] = {
            "name": name,
            "title": "",
            "description": "",
            "color": None,
            "author": "",
            "author_icon": "",
            "footer": "",
            "footer_icon": "",
            "thumbnail": "",
            "image": "",
            "fields": [],
        }
        definitions[_embed_key(name)] = definition
        self.store.touch()
        self.logger.log("embed.create", guild_id=int(guild_id), name=name)
        return definition

    def edit(self, guild_id: int, name: str, field: str, value: str, *, icon: str = "") -> dict[str, Any]:
        field = (field or "").strip().lower()
        if field not in EMBED_FIELDS:
            raise CommandError(f"Editable parts: {', '.join(EMBED_FIELDS)}.")
        definition = self.get_embed(guild_id, name)
        if definition is None:
            raise CommandError(f"No embed named `{name}`.")
        value = (value or "").strip()
        if field == "color":
            if not HEX_COLOR_RE.match(value):
                raise CommandError("Colour must be a hex value like `#2ecc71`.")
            definition["color"] = parse_hex_color(value, default=0)
        else:
            definition[field] = value
            if field in ("author", "footer"):
                definition[f"{field}_icon"] = (icon or "").strip()
        self.store.touch()
        self.logger.log("embed.edit", guild_id=int(guild_id), name=definition["name"], field=field)
        return definition

    def add_field(self, guild_id: int, name: str, field_name: str, value: str, *, inline: bool = False) -> dict[str, Any]:
        definition = self.get_embed(guild_id, name)
        if definition is None:
            raise CommandError(f"No embed named `{name}`.")
        fields = definition.setdefault("fields", [])
        if len(fields) >= MAX_EMBED_FIELDS:
            raise CommandError(f"Embeds can hold at most {MAX_EMBED_FIELDS} fields.")
        if not (field_name or "").strip():
            raise CommandError("Field name is required.")
        fields.append({"name": field_name.strip(), "value": (value or "").strip(), "inline": bool(inline)})
        self.store.touch()
        return definition

    def delete(self, guild_id: int, name: str) -> bool:
        removed = self._definitions(guild_id).pop(_embed_key(name), None)
        if removed is not None:
            self.store.touch()
            self.logger.log("embed.delete", guild_id=int(guild_id), name=removed.get("name", name))
        return removed is not None

    def reset(self, guild_id: int) -> int:
        definitions = self._definitions(guild_id)
        count = len(definitions)
        definitions.clear()
        self.store.touch()
        self.logger.log("embed.reset", guild_id=int(guild_id), embeds=count)
        return count
