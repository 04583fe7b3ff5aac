from typing import Dict, List, Optional, Set, Tuple, Union
import random
import structlog

from domain.models.world_info import ActivatedEntry, WorldInfoEntry, WorldInfoSettings
from infrastructure.observability.logging import world_info_logger
from .eligibility import EligibilityFilter
from .key_matcher import KeyMatcher
from .macros import MacroExpander
from .scan_buffer import ScanBuffer, ScanState

logger = structlog.get_logger(__name__)

# (book name, book index, entry)
SourceEntry = Tuple[str, int, WorldInfoEntry]


class RecursionController:
    """Runs activation passes until nothing new activates or the step limit is hit"""

    def __init__(
        self,
        settings: WorldInfoSettings,
        buffer: ScanBuffer,
        matcher: KeyMatcher,
        eligibility: EligibilityFilter,
        macros: Optional[MacroExpander] = None,
        rng: Optional[random.Random] = None,
        generation_id: str = ""
    ):
        self.settings = settings
        self.buffer = buffer
        self.matcher = matcher
        self.eligibility = eligibility
        self.macros = macros
        self.rng = rng or random.Random(generation_id)
        self.generation_id = generation_id
        # Entries that lost their probability roll stay out for the whole run
        self.failed_rolls: Set[Tuple[int, Union[int, str]]] = set()

    @property
    def max_passes(self) -> int:
        """Key-matching passes allowed; min-activation widening is bounded separately"""

        if self.settings.recursive and self.settings.max_recursion_steps > 0:
            return self.settings.max_recursion_steps
        return 1

    def run(self, entries: List[SourceEntry]) -> List[ActivatedEntry]:
        """Activate entries over repeated passes and return them in discovery order"""

        pool: List[SourceEntry] = []
        for book, book_index, entry in entries:
            if entry.is_well_formed():
                pool.append((book, book_index, entry))
            else:
                logger.debug("Skipping malformed entry", book=book, entry_id=entry.id)

        activated: Dict[Tuple[int, Union[int, str]], ActivatedEntry] = {}
        scan_state = ScanState.INITIAL
        passes = 0
        pass_index = 0

        while scan_state is not None:
            newly = self._scan(pool, activated, scan_state, pass_index)
            if scan_state != ScanState.MIN_ACTIVATIONS:
                passes += 1

            world_info_logger.log_pass(
                generation_id=self.generation_id,
                pass_index=pass_index,
                scan_state=scan_state.value,
                activated=len(newly),
                total=len(activated),
                depth=self.buffer.get_depth()
            )

            can_recurse = self.settings.recursive and passes < self.max_passes
            next_state = None

            if newly and can_recurse:
                for item in newly:
                    if not item.entry.prevent_recursion:
                        self.buffer.add_recurse(self._expand(item.entry.content))
                next_state = ScanState.RECURSION
            elif can_recurse and self._has_pending_levels(pool, activated, passes):
                next_state = ScanState.RECURSION
            elif self._needs_min_activations(len(activated)):
                self.buffer.advance_scan()
                next_state = ScanState.MIN_ACTIVATIONS

            if next_state is not None and next_state != ScanState.MIN_ACTIVATIONS:
                pass_index = passes
            scan_state = next_state

        return sorted(activated.values(), key=lambda item: item.discovery_index)

    def _scan(
        self,
        pool: List[SourceEntry],
        activated: Dict[Tuple[int, Union[int, str]], ActivatedEntry],
        scan_state: ScanState,
        pass_index: int
    ) -> List[ActivatedEntry]:
        newly: List[ActivatedEntry] = []

        for book, book_index, entry in pool:
            uid = (book_index, entry.id)
            if uid in activated or uid in self.failed_rolls:
                continue
            if not self._phase_allows(entry, scan_state, pass_index):
                continue
            if not self.eligibility.is_eligible(entry):
                continue

            scan_depth = self.buffer.scan_depth_for(entry)
            if not entry.constant:
                haystack = self.buffer.get(entry, scan_state)
                if not self.matcher.matches(entry, haystack):
                    continue

            if entry.use_probability and self.rng.random() * 100 >= entry.probability:
                self.failed_rolls.add(uid)
                logger.debug("Probability roll failed", book=book, entry_id=entry.id)
                continue

            item = ActivatedEntry(
                book=book,
                book_index=book_index,
                entry=entry,
                discovery_index=len(activated),
                pass_index=pass_index,
                scan_depth=0 if entry.constant else scan_depth
            )
            activated[uid] = item
            newly.append(item)

            world_info_logger.log_entry_activation(
                generation_id=self.generation_id,
                book=book,
                entry_id=entry.id,
                pass_index=pass_index,
                scan_depth=item.scan_depth
            )

        return newly

    @staticmethod
    def _phase_allows(entry: WorldInfoEntry, scan_state: ScanState, pass_index: int) -> bool:
        """Recursion-related gates on top of the regular eligibility checks"""

        if scan_state == ScanState.RECURSION and entry.exclude_recursion:
            return False
        level = entry.recursion_level
        if level > 0:
            return scan_state == ScanState.RECURSION and pass_index >= level
        return True

    def _has_pending_levels(
        self,
        pool: List[SourceEntry],
        activated: Dict[Tuple[int, Union[int, str]], ActivatedEntry],
        next_pass_index: int
    ) -> bool:
        """Delayed entries whose recursion level has not been reached yet keep the loop alive"""

        return any(
            entry.recursion_level >= next_pass_index
            for _, book_index, entry in pool
            if entry.recursion_level > 0
            and (book_index, entry.id) not in activated
            and (book_index, entry.id) not in self.failed_rolls
        )

    def _needs_min_activations(self, activated_count: int) -> bool:
        if activated_count >= self.settings.min_activations:
            return False

        next_depth = self.buffer.get_depth() + 1
        if next_depth > self.buffer.chat_length or next_depth > self.buffer.max_scan_depth:
            return False
        depth_max = self.settings.min_activations_depth_max
        if depth_max > 0 and next_depth > depth_max:
            return False
        return True

    def _expand(self, text: str) -> str:
        return self.macros.expand(text) if self.macros is not None else text
