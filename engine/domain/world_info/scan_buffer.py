from typing import Dict, List, Optional
from enum import Enum

from domain.models.world_info import (
    ChatMessage, Character, Persona, WorldInfoEntry, WorldInfoSettings
)


class ScanState(str, Enum):
    """Kind of pass the buffer is being read for"""
    INITIAL = "initial"
    RECURSION = "recursion"
    MIN_ACTIVATIONS = "min_activations"


class ScanBuffer:
    """Builds the text windows that keys are matched against"""

    def __init__(
        self,
        chat: List[ChatMessage],
        settings: WorldInfoSettings,
        characters: List[Character],
        persona: Optional[Persona] = None,
        max_scan_depth: int = 100
    ):
        self.settings = settings
        self.character = characters[0] if characters else None
        self.persona = persona
        self.max_scan_depth = max_scan_depth
        self.chat_length = len(chat)

        # Most recent message first so a depth is a simple prefix
        self._messages = [self._format_message(msg) for msg in reversed(chat)][:max_scan_depth]
        self._recurse: List[str] = []
        self._windows: Dict[int, str] = {}
        self._skew = 0

    def _format_message(self, message: ChatMessage) -> str:
        if self.settings.include_names and message.name:
            return f"{message.name}: {message.content}"
        return message.content

    def window(self, depth: int) -> str:
        """Last `depth` messages joined in chronological order"""

        depth = max(0, min(depth, self.max_scan_depth))
        if depth not in self._windows:
            self._windows[depth] = "\n".join(reversed(self._messages[:depth]))
        return self._windows[depth]

    def scan_depth_for(self, entry: WorldInfoEntry) -> int:
        """Effective window depth for an entry on the current pass"""

        base = entry.scan_depth if entry.scan_depth is not None else self.settings.depth
        return min(base + self._skew, self.max_scan_depth)

    def get(self, entry: WorldInfoEntry, scan_state: ScanState) -> str:
        """Text an entry's keys are tested against"""

        parts = [self.window(self.scan_depth_for(entry))]

        if self.character is not None:
            if entry.match_character_description:
                parts.append(self.character.description or "")
            if entry.match_character_personality:
                parts.append(self.character.personality or "")
            if entry.match_scenario:
                parts.append(self.character.scenario or "")
            if entry.match_creator_notes:
                parts.append(self.character.creator_notes or "")
        if entry.match_persona_description and self.persona is not None:
            parts.append(self.persona.description or "")

        # Widened min-activation scans only look at chat
        if self._recurse and scan_state != ScanState.MIN_ACTIVATIONS:
            parts.extend(self._recurse)

        return "\n".join(part for part in parts if part)

    def add_recurse(self, content: str):
        """Feed activated content into later passes"""
        self._recurse.append(content)

    def has_recurse(self) -> bool:
        return len(self._recurse) > 0

    def advance_scan(self):
        """Widen every window by one message"""
        self._skew += 1

    def get_depth(self) -> int:
        return self.settings.depth + self._skew
