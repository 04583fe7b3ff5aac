from typing import Dict, List, Any, Optional, Union
import random
import time
import uuid
import structlog
from pydantic import ValidationError

from domain.models.world_info import (
    ChatMessage, Character, Persona, ProcessedWorldInfo,
    WorldInfoBook, WorldInfoSettings
)
from infrastructure.config import EngineConfig, get_config
from infrastructure.observability.logging import metrics, world_info_logger
from .budget import BudgetAllocator
from .eligibility import EligibilityFilter
from .events import WorldInfoEvents, PROCESSING_STARTED, ENTRY_ACTIVATED, PROCESSING_FINISHED
from .group_resolver import PriorityResolver
from .key_matcher import KeyMatcher
from .macros import MacroExpander
from .output_assembler import OutputAssembler
from .recursion import RecursionController, SourceEntry
from .scan_buffer import ScanBuffer
from .tokenizer import as_token_counter

logger = structlog.get_logger(__name__)


def _coerce(model, value):
    return value if isinstance(value, model) else model.model_validate(value)


class WorldInfoProcessor:
    """Decides which lorebook entries apply to one generation request"""

    def __init__(
        self,
        chat: List[Union[ChatMessage, Dict[str, Any]]],
        characters: List[Union[Character, Dict[str, Any]]],
        settings: Union[WorldInfoSettings, Dict[str, Any]],
        books: List[Union[WorldInfoBook, Dict[str, Any]]],
        max_context: int,
        tokenizer: Any,
        persona: Optional[Union[Persona, Dict[str, Any]]] = None,
        generation_id: Optional[str] = None,
        events: Optional[WorldInfoEvents] = None,
        config: Optional[EngineConfig] = None
    ):
        self.chat = [_coerce(ChatMessage, m) for m in chat]
        self.characters = [_coerce(Character, c) for c in characters]
        self.settings = _coerce(WorldInfoSettings, settings)
        self.books = self._load_books(books)
        self.persona = _coerce(Persona, persona) if persona is not None else Persona()
        self.max_context = max_context
        self.token_counter = as_token_counter(tokenizer)
        self.generation_id = generation_id or str(uuid.uuid4())
        self.events = events or WorldInfoEvents()
        self.config = config or get_config()

    @staticmethod
    def _load_books(books: List[Union[WorldInfoBook, Dict[str, Any]]]) -> List[WorldInfoBook]:
        """Validate book payloads, skipping any that cannot be parsed"""

        loaded = []
        for idx, book in enumerate(books):
            try:
                loaded.append(_coerce(WorldInfoBook, book))
            except ValidationError as e:
                logger.warning("Skipping malformed book",
                               index=idx,
                               errors=e.error_count())
        return loaded

    def collect_entries(self) -> List[SourceEntry]:
        """Flatten all books into one list, keeping input order"""

        return [
            (book.name, book_index, entry)
            for book_index, book in enumerate(self.books)
            for entry in book.entries
        ]

    async def process(self) -> ProcessedWorldInfo:
        """Run activation, group resolution, budgeting and slot assembly"""

        started = time.perf_counter()
        log = logger.bind(generation_id=self.generation_id)
        log.info("Processing world info",
                 books=len(self.books),
                 chat_length=len(self.chat),
                 max_context=self.max_context)

        await self.events.emit(self.generation_id, PROCESSING_STARTED, self)

        # Every collaborator below is scoped to this call
        macros = MacroExpander(self.characters, self.persona, rng=random.Random(self.generation_id))
        buffer = ScanBuffer(
            self.chat,
            self.settings,
            self.characters,
            self.persona,
            max_scan_depth=self.config.max_scan_depth
        )
        controller = RecursionController(
            settings=self.settings,
            buffer=buffer,
            matcher=KeyMatcher(self.settings, macros),
            eligibility=EligibilityFilter(len(self.chat), self.characters, self.persona),
            macros=macros,
            rng=random.Random(self.generation_id),
            generation_id=self.generation_id
        )

        candidates = controller.run(self.collect_entries())
        survivors = PriorityResolver().resolve(candidates)

        allocator = BudgetAllocator(
            settings=self.settings,
            max_context=self.max_context,
            token_counter=self.token_counter,
            macros=macros,
            generation_id=self.generation_id
        )
        allocation = await allocator.allocate(survivors)

        for item in allocation.admitted:
            await self.events.emit(self.generation_id, ENTRY_ACTIVATED, item)

        result = OutputAssembler(macros).assemble(
            allocation.admitted,
            overflowed=self.settings.overflow_alert and allocation.overflowed,
            generation_id=self.generation_id
        )

        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_latency("world_info.process", duration_ms)
        metrics.increment_counter("world_info.activated", len(allocation.admitted))
        if allocation.overflowed:
            metrics.increment_counter("world_info.overflow")

        world_info_logger.log_processing_summary(
            generation_id=self.generation_id,
            summary={
                "candidates": len(candidates),
                "after_groups": len(survivors),
                "admitted": len(allocation.admitted),
                "used_tokens": allocation.used_tokens,
                "ceiling": allocation.ceiling,
                "overflowed": allocation.overflowed
            },
            duration_ms=duration_ms
        )

        await self.events.emit(self.generation_id, PROCESSING_FINISHED, result)
        return result


async def process_world_info(**kwargs) -> ProcessedWorldInfo:
    """Build a one-shot processor and run it"""
    return await WorldInfoProcessor(**kwargs).process()
