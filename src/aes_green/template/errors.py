from __future__ import annotations

from typing import Protocol


class TemplateError(Exception):
    kind = "io_failure"


class MalformedArgument(TemplateError):
    kind = "malformed_argument"


class CapabilityDenied(TemplateError):
    kind = "capability_denied"


class UnresolvedReference(TemplateError):
    kind = "unresolved_reference"


class RequirementFailed(TemplateError):
    kind = "requirement_failed"

    def __init__(self, notice: str) -> None:
        super().__init__(notice)
        self.notice = notice


class Diagnostics(Protocol):
    def diagnostic(self, kind: str, **context: object) -> object: ...
