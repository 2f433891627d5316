"""Hybrid strategy: escalate through standard, evasive and multi-vector."""

from typing import List, Optional, Sequence, Set

from harvester.core.exceptions import HarvesterError
from harvester.models.item import RawItem
from harvester.scrapers.base import AttemptContext, BaseStrategy
from harvester.scrapers.strategies.evasion import EvasionFirstStrategy
from harvester.scrapers.strategies.multi_vector import MultiVectorStrategy
from harvester.scrapers.strategies.standard import StandardStealthStrategy


class HybridStrategy(BaseStrategy):
    """Run sub-strategies in order until enough items have been collected.

    Items keep the ``extracted_by`` of the stage that produced them, so
    quality scoring still sees which approach found each one. Categories
    checkpointed by one stage are not revisited by the next.
    """

    name = "hybrid"
    description = "Standard, then evasive, then multi-vector until the minimum viable count"
    confidence = 3.0

    STAGES = (StandardStealthStrategy, EvasionFirstStrategy, MultiVectorStrategy)

    def __init__(
        self,
        *args,
        min_viable_items: int = 10,
        stages: Optional[Sequence[BaseStrategy]] = None,
        sitemap_detail_pages: int = 5,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.min_viable_items = min_viable_items
        if stages is None:
            stages = []
            for stage_class in self.STAGES:
                extra = {"sitemap_detail_pages": sitemap_detail_pages} if stage_class is MultiVectorStrategy else {}
                stages.append(stage_class(*args, **kwargs, **extra))
        self.stages = list(stages)

    async def _harvest(self, ctx: AttemptContext) -> List[RawItem]:
        items: List[RawItem] = []
        completed: Set[str] = set()

        async def stage_progress(category: str, stage_items: List[RawItem]) -> None:
            completed.add(category)
            await self._report_progress(ctx, category, stage_items)

        for stage in self.stages:
            remaining = [category for category in ctx.categories if category not in completed]
            if ctx.categories and not remaining:
                break

            fingerprint = ctx.fingerprint
            if stage.evasive_fingerprint and not fingerprint.evasive:
                fingerprint = self.fingerprints.for_target(ctx.target, evasive=True)

            stage_items, outcome = await stage.attempt(ctx.target, remaining, fingerprint, stage_progress)
            if outcome.response_ms is not None:
                ctx.latencies_ms.append(outcome.response_ms)
            try:
                outcome.raise_for_error()
            except HarvesterError as exc:
                ctx.errors.append(exc)
                continue

            items.extend(stage_items)
            self.logger.info(
                "hybrid_stage_finished",
                target=ctx.target.id,
                stage=stage.name,
                items=len(stage_items),
                total=len(items),
            )
            if len(items) >= self.min_viable_items:
                break
        return items
