"""Tests for RecursionController pass handling."""

from typing import List
import random

from domain.models.world_info import ChatMessage, WorldInfoEntry, WorldInfoSettings
from domain.world_info.eligibility import EligibilityFilter
from domain.world_info.key_matcher import KeyMatcher
from domain.world_info.recursion import RecursionController
from domain.world_info.scan_buffer import ScanBuffer


def _entry(uid, key, content, **fields) -> WorldInfoEntry:
    return WorldInfoEntry(id=uid, key=key, content=content, **fields)


def _run(entries: List[WorldInfoEntry], chat_texts=("Hello world",), rng=None, **settings_fields):
    settings_fields.setdefault("include_names", False)
    settings = WorldInfoSettings(**settings_fields)
    chat = [ChatMessage(name="User", content=text) for text in chat_texts]
    controller = RecursionController(
        settings=settings,
        buffer=ScanBuffer(chat, settings, []),
        matcher=KeyMatcher(settings),
        eligibility=EligibilityFilter(len(chat), []),
        rng=rng,
    )
    return controller.run([("Book", 0, entry) for entry in entries])


def _ids(activated):
    return [item.entry.id for item in activated]


def test_first_pass_only_without_recursion():
    entries = [_entry(1, ["Hello"], "says apple"), _entry(2, ["apple"], "fruit")]

    assert _ids(_run(entries, recursive=False, max_recursion_steps=5)) == [1]


def test_zero_steps_limits_to_first_pass():
    entries = [_entry(1, ["Hello"], "says apple"), _entry(2, ["apple"], "fruit")]

    assert _ids(_run(entries, recursive=True, max_recursion_steps=0)) == [1]


def test_recursion_records_pass_index():
    entries = [_entry(1, ["Hello"], "says apple"), _entry(2, ["apple"], "fruit")]

    activated = _run(entries, recursive=True, max_recursion_steps=3)

    assert [(a.entry.id, a.pass_index) for a in activated] == [(1, 0), (2, 1)]


def test_prevent_recursion_keeps_content_out_of_buffer():
    entries = [_entry(1, ["Hello"], "says apple", prevent_recursion=True), _entry(2, ["apple"], "fruit")]

    assert _ids(_run(entries, recursive=True, max_recursion_steps=3)) == [1]


def test_exclude_recursion_blocks_recursive_activation():
    entries = [_entry(1, ["Hello"], "says apple"), _entry(2, ["apple"], "fruit", exclude_recursion=True)]

    assert _ids(_run(entries, recursive=True, max_recursion_steps=3)) == [1]


def test_delay_until_recursion_waits_for_level():
    entries = [
        _entry(1, ["Hello"], "plain"),
        _entry(2, ["Hello"], "level one", delay_until_recursion=True),
        _entry(3, ["Hello"], "level two", delay_until_recursion=2),
    ]

    activated = _run(entries, recursive=True, max_recursion_steps=5)

    assert [(a.entry.id, a.pass_index) for a in activated] == [(1, 0), (2, 1), (3, 2)]


def test_delay_until_recursion_never_fires_without_recursion():
    entries = [_entry(1, ["Hello"], "delayed", delay_until_recursion=True)]

    assert _run(entries, recursive=False) == []


def test_malformed_entries_are_skipped():
    entries = [
        _entry(1, ["Hello"], ""),
        _entry(2, [], "no keys"),
        _entry(3, ["Hello"], "outlet without name", position="outlet"),
        _entry(4, ["Hello"], "fine"),
    ]

    assert _ids(_run(entries)) == [4]


def test_min_activations_widens_scan_window():
    entries = [_entry(1, ["ancient"], "old lore")]
    chat = ("an ancient tale", "filler one", "filler two")

    assert _run(entries, chat_texts=chat, depth=1) == []

    activated = _run(entries, chat_texts=chat, depth=1, min_activations=1)
    assert _ids(activated) == [1]
    assert activated[0].scan_depth == 3


def test_min_activations_respects_depth_max():
    entries = [_entry(1, ["ancient"], "old lore")]
    chat = ("an ancient tale", "filler one", "filler two")

    assert _run(entries, chat_texts=chat, depth=1, min_activations=1, min_activations_depth_max=2) == []


def test_duplicate_ids_activate_once():
    entries = [_entry(1, ["Hello"], "first copy"), _entry(1, ["Hello"], "second copy")]

    activated = _run(entries)

    assert len(activated) == 1
    assert activated[0].entry.content == "first copy"


class _Rolls:
    """Stand-in for random.Random that hands out fixed rolls"""

    def __init__(self, *values):
        self.values = list(values)

    def random(self):
        return self.values.pop(0)


def test_failed_probability_roll_blocks_activation_and_recursion():
    entries = [
        _entry(1, ["Hello"], "says apple", use_probability=True, probability=0),
        _entry(2, ["apple"], "fruit"),
    ]

    assert _run(entries, recursive=True, max_recursion_steps=3) == []


def test_probability_ignored_unless_enabled():
    entries = [_entry(1, ["Hello"], "always", use_probability=False, probability=0)]

    assert _ids(_run(entries)) == [1]


def test_probability_rolled_once_per_entry():
    rolls = _Rolls(0.9, 0.0)
    entries = [
        _entry(1, ["Hello"], "says Hello again"),
        _entry(2, ["Hello"], "coin flip", use_probability=True, probability=50),
    ]

    activated = _run(entries, rng=rolls, recursive=True, max_recursion_steps=3)

    assert _ids(activated) == [1]
    assert rolls.values == [0.0]


def test_probability_rolls_are_reproducible_per_seed():
    entries = [_entry(i, ["Hello"], f"entry {i}", use_probability=True, probability=50) for i in range(20)]

    first = _run(entries, rng=random.Random("seed"))
    second = _run(entries, rng=random.Random("seed"))

    assert _ids(first) == _ids(second)
