from typing import Dict, List, Optional, Tuple

from domain.models.world_info import (
    ActivatedEntry, DepthEntry, ProcessedWorldInfo, WorldInfoPosition, WorldInfoRole
)
from .macros import MacroExpander

_LIST_SLOTS = {
    WorldInfoPosition.BEFORE_AN: "an_before",
    WorldInfoPosition.AFTER_AN: "an_after",
    WorldInfoPosition.BEFORE_EM: "em_before",
    WorldInfoPosition.AFTER_EM: "em_after",
}


class OutputAssembler:
    """Places admitted entries into their output slots"""

    def __init__(self, macros: Optional[MacroExpander] = None):
        self.macros = macros

    def assemble(
        self,
        admitted: List[ActivatedEntry],
        overflowed: bool = False,
        generation_id: Optional[str] = None
    ) -> ProcessedWorldInfo:
        """Group admitted entries by position, each slot in ascending priority"""

        result = ProcessedWorldInfo(overflowed=overflowed, generation_id=generation_id)

        before: List[str] = []
        after: List[str] = []
        depth_buckets: Dict[Tuple[int, WorldInfoRole], List[str]] = {}

        for item in sorted(admitted, key=lambda a: a.priority):
            entry = item.entry
            result.triggered_entries.setdefault(item.book, []).append(item.to_ref())

            content = self.macros.expand(entry.content) if self.macros is not None else entry.content
            if not content:
                continue

            if entry.position == WorldInfoPosition.BEFORE_CHAR:
                before.append(content)
            elif entry.position == WorldInfoPosition.AFTER_CHAR:
                after.append(content)
            elif entry.position in _LIST_SLOTS:
                getattr(result, _LIST_SLOTS[entry.position]).append(content)
            elif entry.position == WorldInfoPosition.AT_DEPTH:
                depth_buckets.setdefault((entry.depth, entry.role), []).append(content)
            elif entry.position == WorldInfoPosition.OUTLET:
                result.outlet_entries.setdefault(entry.outlet_name, []).append(content)

        result.world_info_before = "\n".join(before).strip()
        result.world_info_after = "\n".join(after).strip()
        # Stable sort keeps buckets of equal depth in first-seen order
        result.depth_entries = [
            DepthEntry(depth=depth, role=role, entries=entries)
            for (depth, role), entries in sorted(depth_buckets.items(), key=lambda kv: kv[0][0])
        ]

        return result
