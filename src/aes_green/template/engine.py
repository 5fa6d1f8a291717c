from __future__ import annotations

import random
from datetime import datetime
from typing import Callable

from aes_green.template.actions import ACTION_TOKEN_NAMES, Action, ActionKind, ActionParser
from aes_green.template.context import EvaluationContext
from aes_green.template.errors import Diagnostics
from aes_green.template.executor import ActionExecutor, ExecutionReport
from aes_green.template.host import ActionHost
from aes_green.template.state import EconomyStore, EmbedSource, PreviewEconomyStore
from aes_green.template.variables import ValueVault, VariableRegistry, VariableResolver


class TemplateEngine:
    """Resolve a template, split it into actions and run them against a host.

    One evaluation is isolated: a fresh vault, fresh reply tracking and a
    fresh report. Economy writes go straight to the supplied store.
    """

    def __init__(
        self,
        *,
        registry: VariableRegistry | None = None,
        embeds: EmbedSource | None = None,
        diagnostics: Diagnostics | None = None,
        timezone_name: str = "UTC",
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        default_embed_color: int = 0x2ECC71,
    ) -> None:
        self.resolver = VariableResolver(
            registry,
            preserve=ACTION_TOKEN_NAMES,
            timezone_name=timezone_name,
            rng=rng,
            clock=clock,
            diagnostics=diagnostics,
        )
        self.parser = ActionParser()
        self.executor = ActionExecutor(
            self.resolver,
            embeds=embeds,
            diagnostics=diagnostics,
            default_embed_color=default_embed_color,
        )

    def resolve(self, template: str, ctx: EvaluationContext, economy: EconomyStore | None = None) -> str:
        return self.resolver.resolve(template, ctx, economy)

    def preview(self, template: str, ctx: EvaluationContext, economy: EconomyStore) -> str:
        return self.resolver.resolve(template, ctx, PreviewEconomyStore(economy))

    def plan(self, template: str, ctx: EvaluationContext, *, economy: EconomyStore, vault: ValueVault) -> list[Action]:
        rendered = self.resolver.render(
            template,
            ctx,
            economy=economy,
            vault=vault,
            defer_lines_with=ActionKind.SEND_TO_CHANNEL.value,
        )
        return self.parser.parse(rendered)

    async def evaluate(
        self,
        template: str,
        ctx: EvaluationContext,
        *,
        economy: EconomyStore,
        host: ActionHost,
    ) -> ExecutionReport:
        vault = ValueVault()
        actions = self.plan(template, ctx, economy=economy, vault=vault)
        return await self.executor.execute(actions, ctx, economy=economy, host=host, vault=vault)
