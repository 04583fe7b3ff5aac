from typing import List, Optional
import structlog
from pydantic import BaseModel, Field

from domain.models.world_info import ActivatedEntry, WorldInfoSettings
from infrastructure.observability.logging import world_info_logger
from .exceptions import TokenizerError
from .macros import MacroExpander
from .tokenizer import TokenCounter

logger = structlog.get_logger(__name__)


class BudgetResult(BaseModel):
    """Outcome of fitting candidates into the token budget"""
    admitted: List[ActivatedEntry] = Field(default_factory=list)
    overflowed: bool = Field(default=False, description="A qualifying entry was cut for budget reasons")
    used_tokens: int = 0
    ceiling: int = 0


class BudgetAllocator:
    """Admits candidates in priority order until the token ceiling is reached"""

    def __init__(
        self,
        settings: WorldInfoSettings,
        max_context: int,
        token_counter: TokenCounter,
        macros: Optional[MacroExpander] = None,
        generation_id: str = ""
    ):
        self.settings = settings
        self.max_context = max_context
        self.token_counter = token_counter
        self.macros = macros
        self.generation_id = generation_id

    @property
    def ceiling(self) -> int:
        """Absolute token ceiling derived from the context size"""

        ceiling = max(self.max_context, 0) * self.settings.budget // 100
        if self.settings.budget_cap > 0:
            ceiling = min(ceiling, self.settings.budget_cap)
        return ceiling

    def in_floor_scope(self, candidate: ActivatedEntry) -> bool:
        """Whether a candidate may count toward the minimum-activation floor"""

        depth_max = self.settings.min_activations_depth_max
        return depth_max <= 0 or candidate.scan_depth <= depth_max

    async def count_tokens(self, text: str) -> int:
        try:
            count = await self.token_counter(text)
        except Exception as e:
            raise TokenizerError(f"Tokenizer failed: {e}", text_length=len(text)) from e

        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise TokenizerError(f"Tokenizer returned an invalid count: {count!r}", text_length=len(text))
        return count

    async def allocate(self, candidates: List[ActivatedEntry]) -> BudgetResult:
        """Walk candidates by priority, awaiting the tokenizer one entry at a time"""

        ceiling = self.ceiling
        ordered = sorted(candidates, key=lambda c: c.priority)

        admitted: List[ActivatedEntry] = []
        used = 0
        floor_used = 0
        overflowed = False

        for candidate in ordered:
            entry = candidate.entry

            is_floor = floor_used < self.settings.min_activations and self.in_floor_scope(candidate)
            if is_floor:
                floor_used += 1

            # Past the ceiling only the floor and budget-exempt entries get in
            if overflowed and not is_floor and not entry.ignore_budget:
                world_info_logger.log_budget_decision(
                    generation_id=self.generation_id,
                    book=candidate.book,
                    entry_id=entry.id,
                    tokens=0,
                    used=used,
                    ceiling=ceiling,
                    admitted=False,
                    reason="budget_exhausted"
                )
                continue

            content = self.macros.expand(entry.content) if self.macros is not None else entry.content
            tokens = await self.count_tokens(content)

            if is_floor or entry.ignore_budget or used + tokens <= ceiling:
                used += tokens
                admitted.append(candidate)
                accepted = True
                reason = "min_activations" if is_floor else ("ignore_budget" if entry.ignore_budget else None)
            else:
                overflowed = True
                accepted = False
                reason = "over_ceiling"

            world_info_logger.log_budget_decision(
                generation_id=self.generation_id,
                book=candidate.book,
                entry_id=entry.id,
                tokens=tokens,
                used=used,
                ceiling=ceiling,
                admitted=accepted,
                reason=reason
            )

        if overflowed:
            logger.warning("World info budget overflowed",
                           generation_id=self.generation_id,
                           ceiling=ceiling,
                           used=used,
                           admitted=len(admitted),
                           candidates=len(ordered))

        return BudgetResult(
            admitted=admitted,
            overflowed=overflowed,
            used_tokens=used,
            ceiling=ceiling
        )
