"""Shared fixtures for the world info engine tests.

Mirrors a small one-on-one chat: the user greets Alice, Alice answers.
Token counts are the character length of the text.
"""

from typing import Any, Callable, Dict, List

import pytest

from domain.models.world_info import (
    ChatMessage,
    Character,
    Persona,
    WorldInfoBook,
    WorldInfoEntry,
    WorldInfoSettings,
    create_default_entry,
)
from domain.world_info import WorldInfoProcessor


async def length_tokenizer(text: str) -> int:
    return len(text)


@pytest.fixture
def character() -> Character:
    return Character(
        name="Alice",
        tags=["Assistant", "Helpful"],
        description="A helpful assistant.",
        personality="Cheerful and curious.",
        scenario="A quiet library.",
    )


@pytest.fixture
def persona() -> Persona:
    return Persona(name="User", description="The user.")


@pytest.fixture
def chat() -> List[ChatMessage]:
    return [
        ChatMessage(name="User", is_user=True, content="Hello world"),
        ChatMessage(name="Alice", is_user=False, content="Hi there!"),
    ]


@pytest.fixture
def settings() -> WorldInfoSettings:
    return WorldInfoSettings(
        depth=2,
        min_activations=0,
        min_activations_depth_max=0,
        budget=100,
        budget_cap=10000,
        include_names=False,
        recursive=True,
        overflow_alert=False,
        case_sensitive=False,
        match_whole_words=False,
        max_recursion_steps=5,
    )


@pytest.fixture
def make_entry() -> Callable[..., WorldInfoEntry]:
    """Build an entry from the editor defaults plus overrides"""

    def _make(uid: Any, **overrides: Any) -> WorldInfoEntry:
        return create_default_entry(uid).model_copy(update=overrides)

    return _make


@pytest.fixture
def make_processor(chat, character, persona, settings) -> Callable[..., WorldInfoProcessor]:
    """Build a processor over a single "Test Book" holding the given entries"""

    def _make(entries: List[WorldInfoEntry], **overrides: Any) -> WorldInfoProcessor:
        options: Dict[str, Any] = {
            "chat": chat,
            "characters": [character],
            "settings": settings,
            "books": [WorldInfoBook(name="Test Book", entries=entries)],
            "persona": persona,
            "max_context": 1000,
            "tokenizer": length_tokenizer,
            "generation_id": "test-gen-id",
        }
        options.update(overrides)
        return WorldInfoProcessor(**options)

    return _make
