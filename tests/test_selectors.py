"""
Unit tests for patch sampling and per-conversation message selection.
"""
from datetime import timedelta

import pytest

from shared.models.conversation import (
    ConversationListPayload,
    DecryptedConversation,
    MessageRecord,
)
from services.patch_ingest.MessageSelector import MEDIUM_WORDS, MessageSelector, emoji_ratio, word_count
from services.patch_ingest.PatchSelector import PatchSelector, sample_without_replacement

from conftest import NOW, make_patches, words

RECENT = NOW.timestamp() - 3600


def conversation(messages, chat_id="42", user_id="9"):
    return DecryptedConversation(chat_id=chat_id, user_id=user_id, messages=messages)


def message(msg_id, text, ts=RECENT):
    return MessageRecord(id=msg_id, from_id="7", text=text, timestamp=ts)


# ============================================================================
# PatchSelector
# ============================================================================

def test_sample_without_replacement_returns_all_when_population_is_small(rng):
    assert sample_without_replacement([1, 2, 3], 5, rng) == [1, 2, 3]


def test_sample_without_replacement_draws_distinct_items(rng):
    items = list(range(50))
    drawn = sample_without_replacement(items, 10, rng)
    assert len(drawn) == 10
    assert len(set(drawn)) == 10
    assert set(drawn) <= set(items)
    assert items == list(range(50))


def test_select_patches_stratified_250(helper_config, rng):
    """250 patches form groups of 100, 100 and 50; 30 are drawn from each."""
    patches = make_patches(250)
    selection = PatchSelector(helper_config, rng=rng).select(patches, group_size=100, per_group=30)

    assert selection.original_count == 250
    assert selection.selected_count == 90
    indices = [int(p.patch_id[1:]) for p in selection.selected]
    assert len(set(indices)) == 90
    assert all(i < 100 for i in indices[:30])
    assert all(100 <= i < 200 for i in indices[30:60])
    assert all(200 <= i < 250 for i in indices[60:])


def test_select_patches_short_tail_group(helper_config, rng):
    """A tail group smaller than the quota is taken whole."""
    selection = PatchSelector(helper_config, rng=rng).select(make_patches(120), group_size=100, per_group=30)
    assert selection.selected_count == 50
    assert [p.patch_id for p in selection.selected[30:]] == [f"p{i}" for i in range(100, 120)]


def test_select_patches_empty(helper_config, rng):
    selection = PatchSelector(helper_config, rng=rng).select([], group_size=100, per_group=30)
    assert selection.selected == []
    assert selection.selected_count == 0


# ============================================================================
# MessageSelector helpers
# ============================================================================

def test_emoji_ratio():
    assert emoji_ratio("") == 0.0
    assert emoji_ratio("plain text") == 0.0
    assert emoji_ratio("ab😀😀") == pytest.approx(0.5)


@pytest.mark.parametrize("char,counted", [
    ("\U0001f7e0", True),   # large orange circle
    ("\U0001f201", True),   # squared katakana koko
    ("\u231a", True),       # watch
    ("\U0001f321", False),  # thermometer, text by default
    ("\u2764", False),      # heavy black heart without VS16
    ("#", False),
])
def test_emoji_ratio_counts_emoji_presentation_only(char, counted):
    assert emoji_ratio(char) == (1.0 if counted else 0.0)


def test_word_count_splits_on_any_whitespace():
    assert word_count("  one\ttwo\nthree  ") == 3
    assert word_count("") == 0


# ============================================================================
# MessageSelector.select
# ============================================================================

def test_select_buckets_by_word_count(helper_config, rng):
    """Only 15-20 and 21-50 word messages are eligible."""
    selector = MessageSelector(helper_config, rng=rng)
    conv = conversation([
        message(1, words(14, "a")),
        message(2, words(15, "b")),
        message(3, words(20, "c")),
        message(4, words(21, "d")),
        message(5, words(50, "e")),
        message(6, words(51, "f")),
    ])

    chosen = selector.select(conv, timedelta(hours=16), now=NOW)

    assert [m.id for m in chosen] == [2, 3, 4, 5]


def test_select_caps_each_bucket_at_five(helper_config, rng):
    selector = MessageSelector(helper_config, rng=rng)
    medium = [message(i, words(16, f"m{i}x")) for i in range(8)]
    long = [message(100 + i, words(30, f"l{i}x")) for i in range(8)]

    chosen = selector.select(conversation(medium + long), timedelta(hours=16), now=NOW)

    assert len(chosen) == 10
    assert all(word_count(m.text) == 16 for m in chosen[:5])
    assert all(word_count(m.text) == 30 for m in chosen[5:])


def test_select_drops_emoji_heavy_messages(helper_config, rng):
    """Messages whose emoji ratio is 0.2 or more are dropped."""
    selector = MessageSelector(helper_config, rng=rng)

    def with_ratio(msg_id, ratio):
        # 100 code points, ratio * 100 of them emoji, 16 words
        emoji = int(ratio * 100)
        base = words(16, "w")
        filler = "x" * (100 - emoji - len(base) - 1)
        return message(msg_id, base + " " + filler + "😀" * emoji)

    conv = conversation([with_ratio(1, 0.3), with_ratio(2, 0.1), with_ratio(3, 0.2)])
    assert emoji_ratio(conv.messages[2].text) == pytest.approx(0.2)

    chosen = selector.select(conv, timedelta(hours=16), now=NOW)

    assert [m.id for m in chosen] == [2]


def test_select_deduplicates_by_text_latest_wins(helper_config, rng):
    selector = MessageSelector(helper_config, rng=rng)
    text = words(16)
    conv = conversation([message(1, text, ts=RECENT - 10), message(2, text, ts=RECENT), message(3, text, ts=RECENT - 5)])

    chosen = selector.select(conv, timedelta(hours=16), now=NOW)

    assert [m.id for m in chosen] == [2]


def test_select_applies_cutoff_window(helper_config, rng):
    """Messages at or before now - window, without timestamp or empty are skipped."""
    selector = MessageSelector(helper_config, rng=rng)
    cutoff = (NOW - timedelta(hours=16)).timestamp()
    conv = conversation([
        message(1, words(16, "a"), ts=cutoff),
        message(2, words(16, "b"), ts=cutoff + 1),
        message(3, words(16, "c"), ts=cutoff - 3600),
        MessageRecord(id=4, text=words(16, "d")),
        message(5, "   "),
    ])

    chosen = selector.select(conv, timedelta(hours=16), now=NOW)

    assert [m.id for m in chosen] == [2]


def test_select_skips_excluded_account(helper_config, rng):
    selector = MessageSelector(helper_config, rng=rng)
    conv = conversation([message(1, words(16))], chat_id="777")

    assert selector.select(conv, timedelta(hours=16), excluded_account_id="777", now=NOW) == []
    assert len(selector.select(conv, timedelta(hours=16), excluded_account_id="778", now=NOW)) == 1


def test_select_attaches_conversation_context(helper_config, rng):
    selector = MessageSelector(helper_config, rng=rng)
    chosen = selector.select(conversation([message(1, words(16))]), timedelta(hours=16), now=NOW, flat_offset=5)

    assert chosen[0].chat_id == "42"
    assert chosen[0].user_id == "9"
    assert chosen[0].flat_index == 5


# ============================================================================
# MessageSelector.select_patch
# ============================================================================

def test_select_patch_flat_index_spans_all_conversations(helper_config, rng):
    """Flat indices count every message of every conversation, skipped ones included."""
    selector = MessageSelector(helper_config, rng=rng)
    payload = ConversationListPayload(
        user_id="9",
        conversations=[
            conversation([message(1, "short"), message(2, words(16, "a"))], chat_id="10"),
            conversation([message(3, words(16, "b"))], chat_id="777"),
            conversation([message(4, "short"), message(5, "short"), message(6, words(30, "c"))], chat_id="12"),
        ],
    )

    selection = selector.select_patch(payload, timedelta(hours=16), excluded_account_id="777", now=NOW)

    assert selection.conversation_count == 3
    assert selection.message_count == 6
    assert sorted((m.id, m.flat_index) for m in selection.messages) == [(2, 1), (6, 5)]
    assert selection.index_map[2].conversation_index == 1
    assert selection.index_map[2].content_index == 0
    assert selection.index_map[5].conversation_index == 2
    assert selection.index_map[5].content_index == 2
    assert set(selection.index_map) == set(range(6))


def test_select_triple_duplicate_keeps_latest_and_buckets_eighteen_words(helper_config, rng):
    selector = MessageSelector(helper_config, rng=rng)
    text = words(18)
    conv = conversation([message(1, text, ts=RECENT - 20), message(2, text, ts=RECENT - 10), message(3, text, ts=RECENT)])

    chosen = selector.select(conv, timedelta(hours=16), now=NOW)

    assert [m.id for m in chosen] == [3]
    assert MEDIUM_WORDS[0] <= word_count(chosen[0].text) <= MEDIUM_WORDS[1]
