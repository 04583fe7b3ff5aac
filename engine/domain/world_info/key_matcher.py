from typing import Dict, List, Optional, Tuple
import re
import structlog

from domain.models.world_info import WorldInfoEntry, WorldInfoLogic, WorldInfoSettings
from .macros import MacroExpander

logger = structlog.get_logger(__name__)

# "/pattern/flags" keys are treated as regular expressions
_REGEX_KEY = re.compile(r"^/(.+)/([a-z]*)$", re.DOTALL)

_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
}


class KeyMatcher:
    """Tests entry keys against a scan buffer"""

    def __init__(self, settings: WorldInfoSettings, macros: Optional[MacroExpander] = None):
        self.settings = settings
        self.macros = macros
        self._patterns: Dict[Tuple[str, bool, bool], Optional[re.Pattern]] = {}

    def resolve_flags(self, entry: WorldInfoEntry) -> Tuple[bool, bool]:
        """Per-entry case sensitivity and whole-word flags with the global fallback"""

        case_sensitive = entry.case_sensitive if entry.case_sensitive is not None else self.settings.case_sensitive
        whole_words = entry.match_whole_words if entry.match_whole_words is not None else self.settings.match_whole_words
        return case_sensitive, whole_words

    def _compile(self, key: str, case_sensitive: bool, whole_words: bool) -> Optional[re.Pattern]:
        cache_key = (key, case_sensitive, whole_words)
        if cache_key in self._patterns:
            return self._patterns[cache_key]

        pattern = None
        regex_match = _REGEX_KEY.match(key)
        if regex_match:
            flags = 0
            for flag in regex_match.group(2):
                flags |= _REGEX_FLAGS.get(flag, 0)
            try:
                pattern = re.compile(regex_match.group(1), flags)
            except re.error as e:
                logger.warning("Invalid regex key", key=key, error=str(e))
        elif whole_words:
            flags = 0 if case_sensitive else re.IGNORECASE
            pattern = re.compile(rf"(?<!\w){re.escape(key)}(?!\w)", flags)

        self._patterns[cache_key] = pattern
        return pattern

    def match_key(self, haystack: str, key: str, entry: WorldInfoEntry) -> bool:
        """Check a single key against the haystack"""

        if self.macros is not None:
            key = self.macros.expand(key)
        if not key:
            return False

        case_sensitive, whole_words = self.resolve_flags(entry)

        if _REGEX_KEY.match(key) or whole_words:
            pattern = self._compile(key, case_sensitive, whole_words)
            return pattern is not None and pattern.search(haystack) is not None

        if case_sensitive:
            return key in haystack
        return key.lower() in haystack.lower()

    def match_any(self, haystack: str, keys: List[str], entry: WorldInfoEntry) -> bool:
        return any(self.match_key(haystack, key, entry) for key in keys)

    def matches(self, entry: WorldInfoEntry, haystack: str) -> bool:
        """Primary keys (OR) followed by the secondary key logic"""

        if not haystack or not self.match_any(haystack, entry.key, entry):
            return False

        secondary = [key for key in entry.secondary_keys if key]
        if not secondary:
            return True

        hits = [self.match_key(haystack, key, entry) for key in secondary]
        logic = entry.selective_logic

        if logic == WorldInfoLogic.AND_ANY:
            return any(hits)
        if logic == WorldInfoLogic.AND_ALL:
            return all(hits)
        if logic == WorldInfoLogic.NOT_ANY:
            return not any(hits)
        if logic == WorldInfoLogic.NOT_ALL:
            return not all(hits)
        return False
