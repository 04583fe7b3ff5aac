"""Tests for macro expansion and the tokenizer adapters."""

from datetime import datetime
import random

import pytest

from domain.models.world_info import Character, Persona
from domain.world_info.macros import MacroExpander
from domain.world_info.tokenizer import CachedTokenCounter, as_token_counter


@pytest.fixture
def macros() -> MacroExpander:
    characters = [
        Character(name="Alice", description="An elf", scenario="A forest"),
        Character(name="Carol"),
    ]
    return MacroExpander(characters, Persona(name="Bob", description="A ranger"))


class TestMacroExpander:

    def test_known_macros(self, macros):
        text = "{{char}}|{{user}}|{{description}}|{{scenario}}|{{persona}}|{{chars}}"
        assert macros.expand(text) == "Alice|Bob|An elf|A forest|A ranger|Alice, Carol"

    def test_unknown_macro_renders_empty(self, macros):
        assert macros.expand("[{{mystery}}]") == "[]"

    def test_text_without_macros_untouched(self, macros):
        assert macros.expand("plain {% not a tag") == "plain {% not a tag"

    def test_broken_template_left_as_is(self, macros):
        assert macros.expand("{{ char ") == "{{ char "

    def test_no_characters_falls_back(self):
        assert MacroExpander([]).expand("{{char}} and {{user}}") == "Character and User"

    def test_empty_text(self, macros):
        assert macros.expand("") == ""

    def test_nested_macros_resolve(self):
        expander = MacroExpander([Character(name="Alice", description="{{char}} is kind")], Persona(name="Bob"))

        assert expander.expand("{{description}}") == "Alice is kind"

    def test_self_referencing_macro_stops(self):
        expander = MacroExpander([Character(name="Alice", description="{{description}}!")])

        assert expander.expand("{{description}}") == "{{description}}" + "!" * 10

    def test_clock_macros(self):
        expander = MacroExpander([], now=datetime(2024, 3, 1, 9, 5))

        assert expander.expand("{{time}} {{date}} {{weekday}}") == "09:05 2024-03-01 Friday"

    def test_random_helper(self):
        expander = MacroExpander([], rng=random.Random("dice"))

        assert expander.expand("{{ random(4, 4) }}") == "4"
        assert 1 <= int(expander.expand("{{ random(1, 6) }}")) <= 6
        assert expander.expand("{{ random('a', 2) }}") == "0"


class TestTokenCounterAdapters:

    @pytest.mark.asyncio
    async def test_plain_async_callable(self):
        async def count(text):
            return 3

        assert await as_token_counter(count)("abc") == 3

    @pytest.mark.asyncio
    async def test_object_with_get_token_count(self):
        class Tokenizer:
            async def get_token_count(self, text):
                return len(text) * 2

        assert await as_token_counter(Tokenizer())("abc") == 6

    def test_unsupported_tokenizer(self):
        with pytest.raises(TypeError):
            as_token_counter(42)


class TestCachedTokenCounter:

    @pytest.mark.asyncio
    async def test_counts_are_memoized(self):
        calls = []

        async def count(text):
            calls.append(text)
            return len(text)

        cached = CachedTokenCounter(count, ttl=60)

        assert await cached("hello") == 5
        assert await cached("hello") == 5
        assert await cached.get_token_count("hi") == 2

        assert calls == ["hello", "hi"]
        assert await cached.get_stats() == {"total_keys": 2, "hits": 1, "misses": 2}

    @pytest.mark.asyncio
    async def test_expired_entries_are_recounted(self):
        calls = []

        async def count(text):
            calls.append(text)
            return len(text)

        cached = CachedTokenCounter(count, ttl=-1)

        await cached("hello")
        await cached("hello")

        assert calls == ["hello", "hello"]
        assert await cached.clear_expired() == 1

    @pytest.mark.asyncio
    async def test_storing_a_count_evicts_expired_ones(self):
        async def count(text):
            return len(text)

        cached = CachedTokenCounter(count, ttl=-1)

        await cached("first")
        await cached("second")

        assert list(cached.cache) == ["second"]

    @pytest.mark.asyncio
    async def test_usable_as_processor_tokenizer(self):
        async def count(text):
            return len(text)

        cached = CachedTokenCounter(count)

        assert await as_token_counter(cached)("abcd") == 4
