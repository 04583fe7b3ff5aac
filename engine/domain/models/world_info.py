from typing import Dict, Any, List, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from enum import Enum
import structlog

logger = structlog.get_logger(__name__)

DEFAULT_DEPTH = 4
DEFAULT_ORDER = 100


class WorldInfoPosition(str, Enum):
    """Output slot an activated entry is placed into"""
    BEFORE_CHAR = "before_char"
    AFTER_CHAR = "after_char"
    BEFORE_AN = "before_an"
    AFTER_AN = "after_an"
    BEFORE_EM = "before_em"
    AFTER_EM = "after_em"
    AT_DEPTH = "at_depth"
    OUTLET = "outlet"


class WorldInfoRole(str, Enum):
    """Chat role used when an entry is spliced in at a chat depth"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class WorldInfoLogic(str, Enum):
    """How secondary keys combine with a primary key hit"""
    AND_ANY = "and_any"
    NOT_ALL = "not_all"
    NOT_ANY = "not_any"
    AND_ALL = "and_all"


class WorldInfoEntry(BaseModel):
    """A single trigger-keyed content snippet"""
    id: Union[int, str] = Field(description="Identifier, unique within its book")
    key: List[str] = Field(default_factory=list, description="Primary trigger keys (OR semantics)")
    secondary_keys: List[str] = Field(default_factory=list, description="Optional secondary keys")
    selective_logic: WorldInfoLogic = Field(default=WorldInfoLogic.AND_ANY)
    comment: str = Field(default="", description="Free-form label shown in telemetry")
    content: str = Field(default="", description="Text injected when activated")
    constant: bool = Field(default=False, description="Activate without key matching")
    disable: bool = Field(default=False)
    order: int = Field(default=DEFAULT_ORDER, description="Lower value = higher priority")
    position: WorldInfoPosition = Field(default=WorldInfoPosition.BEFORE_CHAR)
    depth: Optional[int] = Field(None, ge=0, description="Chat depth for at_depth entries")
    role: WorldInfoRole = Field(default=WorldInfoRole.SYSTEM)
    outlet_name: str = Field(default="", description="Outlet slot for outlet entries")
    scan_depth: Optional[int] = Field(None, ge=0, description="Overrides settings.depth")
    case_sensitive: Optional[bool] = None
    match_whole_words: Optional[bool] = None
    character_filter_names: List[str] = Field(default_factory=list)
    character_filter_tags: List[str] = Field(default_factory=list)
    character_filter_exclude: bool = Field(default=False, description="Invert the character filter")
    group: str = Field(default="", description="Mutual-exclusion group")
    group_override: bool = False
    delay: Optional[int] = Field(None, description="Minimum chat length before the entry is eligible")
    exclude_recursion: bool = Field(default=False, description="Only activate on the first pass")
    prevent_recursion: bool = Field(default=False, description="Never feed the recursion buffer")
    delay_until_recursion: Union[bool, int] = Field(default=False)
    probability: int = Field(default=100, ge=0, le=100)
    use_probability: bool = False
    ignore_budget: bool = False
    match_persona_description: bool = False
    match_character_description: bool = False
    match_character_personality: bool = False
    match_scenario: bool = False
    match_creator_notes: bool = False

    @property
    def recursion_level(self) -> int:
        """Recursion pass this entry waits for (0 = no wait)"""
        if self.delay_until_recursion is True:
            return 1
        if self.delay_until_recursion is False:
            return 0
        return max(int(self.delay_until_recursion), 0)

    def is_well_formed(self) -> bool:
        """Check the entry carries everything needed to activate and be placed"""
        if not self.content:
            return False
        if not self.constant and not any(k for k in self.key):
            return False
        if self.position == WorldInfoPosition.AT_DEPTH and self.depth is None:
            return False
        if self.position == WorldInfoPosition.OUTLET and not self.outlet_name:
            return False
        return True


def create_default_entry(uid: Union[int, str]) -> WorldInfoEntry:
    """Create an empty entry with the editor defaults"""
    return WorldInfoEntry(id=uid, comment="New Entry", depth=DEFAULT_DEPTH)


class WorldInfoBook(BaseModel):
    """A named, ordered collection of entries (a lorebook)"""
    name: str = Field(description="Book name")
    entries: List[WorldInfoEntry] = Field(default_factory=list)

    @field_validator("entries", mode="before")
    @classmethod
    def drop_invalid_entries(cls, value: Any) -> Any:
        """Skip entry payloads that cannot be parsed instead of failing the book"""

        if not isinstance(value, list):
            return value

        entries = []
        for idx, raw in enumerate(value):
            if isinstance(raw, WorldInfoEntry):
                entries.append(raw)
                continue
            try:
                entries.append(WorldInfoEntry.model_validate(raw))
            except ValidationError as e:
                logger.warning("Skipping malformed entry",
                               index=idx,
                               errors=e.error_count())
        return entries


class WorldInfoSettings(BaseModel):
    """Global activation settings"""
    depth: int = Field(default=2, ge=0, description="Number of recent messages scanned")
    min_activations: int = Field(default=0, ge=0)
    min_activations_depth_max: int = Field(default=0, ge=0)
    budget: int = Field(default=25, ge=0, le=100, description="Percentage of max context")
    budget_cap: int = Field(default=0, ge=0, description="Absolute token cap, 0 = uncapped")
    include_names: bool = Field(default=True, description="Prefix buffered messages with the sender name")
    recursive: bool = False
    max_recursion_steps: int = Field(default=0, ge=0)
    overflow_alert: bool = False
    case_sensitive: bool = False
    match_whole_words: bool = False


class ChatMessage(BaseModel):
    """A single chat transcript message"""
    name: str = Field(description="Sender name")
    is_user: bool = False
    is_system: bool = False
    content: str = Field(default="", description="Message text")


class Character(BaseModel):
    """An active participant"""
    name: str
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    personality: Optional[str] = None
    scenario: Optional[str] = None
    creator_notes: Optional[str] = None


class Persona(BaseModel):
    """The user's participant record"""
    name: str = "User"
    description: Optional[str] = None


class ActivatedEntry(BaseModel):
    """An entry that matched and passed eligibility during one run"""
    model_config = ConfigDict(frozen=True)

    book: str = Field(description="Name of the book the entry came from")
    book_index: int = Field(description="Position of the book in the merged input")
    entry: WorldInfoEntry
    discovery_index: int = Field(description="Activation sequence number, used for stable tie-breaking")
    pass_index: int = Field(default=0, description="Scan pass that activated the entry")
    scan_depth: int = Field(default=0, description="Chat window depth the entry matched at")

    @property
    def uid(self) -> Tuple[int, Union[int, str]]:
        return (self.book_index, self.entry.id)

    @property
    def priority(self) -> Tuple[int, int]:
        """Sort key: ascending order, then discovery order"""
        return (self.entry.order, self.discovery_index)

    def to_ref(self) -> "EntryRef":
        return EntryRef(
            book=self.book,
            id=self.entry.id,
            comment=self.entry.comment,
            order=self.entry.order,
            position=self.entry.position
        )


class EntryRef(BaseModel):
    """Reference to a triggered entry for itemized telemetry"""
    book: str
    id: Union[int, str]
    comment: str = ""
    order: int
    position: WorldInfoPosition


class DepthEntry(BaseModel):
    """Entries spliced into chat history at one depth"""
    depth: int
    role: WorldInfoRole = WorldInfoRole.SYSTEM
    entries: List[str] = Field(default_factory=list)


class ProcessedWorldInfo(BaseModel):
    """Result of one activation run"""
    world_info_before: str = ""
    world_info_after: str = ""
    an_before: List[str] = Field(default_factory=list)
    an_after: List[str] = Field(default_factory=list)
    em_before: List[str] = Field(default_factory=list)
    em_after: List[str] = Field(default_factory=list)
    depth_entries: List[DepthEntry] = Field(default_factory=list)
    outlet_entries: Dict[str, List[str]] = Field(default_factory=dict)
    triggered_entries: Dict[str, List[EntryRef]] = Field(default_factory=dict)
    overflowed: bool = Field(default=False, description="Set when overflow_alert is on and entries were cut")
    generation_id: Optional[str] = Field(None, description="Echoed tracing identifier")

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the result"""
        return {
            "generation_id": self.generation_id,
            "triggered": sum(len(refs) for refs in self.triggered_entries.values()),
            "books": sorted(self.triggered_entries.keys()),
            "depth_buckets": len(self.depth_entries),
            "outlets": sorted(self.outlet_entries.keys()),
            "overflowed": self.overflowed
        }
