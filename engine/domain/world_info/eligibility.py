from typing import List, Optional, Set

from domain.models.world_info import Character, Persona, WorldInfoEntry


class EligibilityFilter:
    """Rejects entries that fail non-lexical preconditions"""

    def __init__(self, chat_length: int, characters: List[Character], persona: Optional[Persona] = None):
        self.chat_length = chat_length
        self.names: Set[str] = {c.name for c in characters}
        if persona is not None and persona.name:
            self.names.add(persona.name)
        self.tags: Set[str] = {tag.lower() for c in characters for tag in c.tags}

    def is_eligible(self, entry: WorldInfoEntry) -> bool:
        if entry.disable:
            return False
        if not self.delay_satisfied(entry):
            return False
        return self.character_filter_passes(entry)

    def delay_satisfied(self, entry: WorldInfoEntry) -> bool:
        """Entry waits until the chat holds at least `delay` messages"""
        return not entry.delay or self.chat_length >= entry.delay

    def character_filter_passes(self, entry: WorldInfoEntry) -> bool:
        """Name and tag filters combine with OR; exclude inverts the outcome"""

        filter_names = [name for name in entry.character_filter_names if name]
        filter_tags = [tag.lower() for tag in entry.character_filter_tags if tag]

        if not filter_names and not filter_tags:
            return True

        matched = any(name in self.names for name in filter_names)
        if not matched:
            matched = any(tag in self.tags for tag in filter_tags)

        if entry.character_filter_exclude:
            return not matched
        return matched
