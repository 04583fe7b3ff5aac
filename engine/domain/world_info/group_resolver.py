from typing import Dict, List, Set, Tuple, Union
from collections import defaultdict
import structlog

from domain.models.world_info import ActivatedEntry

logger = structlog.get_logger(__name__)


class PriorityResolver:
    """Applies group override rules to the full candidate set"""

    def group_candidates(self, candidates: List[ActivatedEntry]) -> Dict[str, List[ActivatedEntry]]:
        """Map each non-empty group name to its candidates"""

        groups: Dict[str, List[ActivatedEntry]] = defaultdict(list)
        for candidate in candidates:
            group = candidate.entry.group.strip()
            if group:
                groups[group].append(candidate)
        return groups

    def resolve(self, candidates: List[ActivatedEntry]) -> List[ActivatedEntry]:
        """Return the candidates that survive group overrides, in their original order"""

        removed: Set[Tuple[int, Union[int, str]]] = set()

        for group, members in self.group_candidates(candidates).items():
            overriders = [m for m in members if m.entry.group_override]
            if not overriders:
                continue

            best_order = min(m.entry.order for m in overriders)
            losers = [
                m for m in members
                if not (m.entry.group_override and m.entry.order == best_order)
            ]
            removed.update(m.uid for m in losers)

            if losers:
                logger.debug("Group override applied",
                             group=group,
                             winners=len(members) - len(losers),
                             suppressed=[m.entry.id for m in losers])

        return [c for c in candidates if c.uid not in removed]
