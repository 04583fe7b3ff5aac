from typing import Dict, Any, List, Optional
from datetime import datetime
import random
import structlog

from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment

from domain.models.world_info import Character, Persona

logger = structlog.get_logger(__name__)

_SANDBOX = SandboxedEnvironment(autoescape=False, keep_trailing_newline=True)

# Macro values may themselves contain macros
MAX_MACRO_DEPTH = 10


class MacroExpander:
    """Expands {{char}}/{{user}}-style macros in keys and entry content"""

    def __init__(
        self,
        characters: List[Character],
        persona: Optional[Persona] = None,
        now: Optional[datetime] = None,
        rng: Optional[random.Random] = None
    ):
        self.rng = rng or random.Random()
        self.context = self._build_context(characters, persona or Persona(), now or datetime.now())
        self.context["random"] = self._random
        self._cache: Dict[str, str] = {}

    @staticmethod
    def _build_context(characters: List[Character], persona: Persona, now: datetime) -> Dict[str, Any]:
        primary = characters[0] if characters else None

        return {
            # User data
            "user": persona.name,
            "persona": persona.description or "",

            # Character data (primary)
            "char": primary.name if primary else "Character",
            "description": (primary.description if primary else None) or "",
            "personality": (primary.personality if primary else None) or "",
            "scenario": (primary.scenario if primary else None) or "",

            # Group data
            "chars": ", ".join(c.name for c in characters),

            # Clock
            "time": now.strftime("%H:%M"),
            "date": now.strftime("%Y-%m-%d"),
            "weekday": now.strftime("%A")
        }

    def _random(self, low: Any = None, high: Any = None) -> int:
        """{{ random(1, 6) }} - inclusive integer range, 0 for non-integer bounds"""

        if isinstance(low, bool) or isinstance(high, bool):
            return 0
        if not isinstance(low, int) or not isinstance(high, int):
            return 0
        return self.rng.randint(min(low, high), max(low, high))

    def expand(self, text: str) -> str:
        """Expand macros in text until it stops changing.

        A template error stops expansion and keeps the last good rendering.
        """

        if not text or "{{" not in text:
            return text or ""

        if text in self._cache:
            return self._cache[text]

        rendered = text
        depth = 0
        while "{{" in rendered and depth < MAX_MACRO_DEPTH:
            try:
                expanded = _SANDBOX.from_string(rendered).render(**self.context)
            except TemplateError as e:
                logger.warning("Macro expansion failed", error=str(e), text=rendered[:50], depth=depth)
                break

            if expanded == rendered:
                break
            rendered = expanded
            depth += 1

        self._cache[text] = rendered
        return rendered
