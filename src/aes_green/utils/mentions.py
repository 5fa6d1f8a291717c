from __future__ import annotations

import re

USER_MENTION_RE = re.compile(r"<@!?(\d+)>")
CHANNEL_MENTION_RE = re.compile(r"<#(\d+)>")
ROLE_MENTION_RE = re.compile(r"<@&(\d+)>")
CUSTOM_EMOJI_RE = re.compile(r"<(a?):([A-Za-z0-9_~]+):(\d+)>")


def parse_user_id(text: str | None) -> int | None:
    if not text:
        return None
    match = USER_MENTION_RE.search(text)
    if match:
        return int(match.group(1))
    raw = text.strip()
    if raw.isdigit():
        return int(raw)
    return None


def parse_channel_id(text: str | None) -> int | None:
    if not text:
        return None
    match = CHANNEL_MENTION_RE.search(text)
    if match:
        return int(match.group(1))
    raw = text.strip().lstrip("#")
    if raw.isdigit():
        return int(raw)
    return None


def parse_role_id(text: str | None) -> int | None:
    if not text:
        return None
    match = ROLE_MENTION_RE.search(text)
    if match:
        return int(match.group(1))
    raw = text.strip().lstrip("@")
    if raw.isdigit():
        return int(raw)
    return None


def strip_channel_prefix(text: str) -> str:
    return (text or "").strip().lstrip("#").strip()


def strip_role_prefix(text: str) -> str:
    return (text or "").strip().lstrip("@").strip()
