import random
import re
from datetime import datetime, timedelta, timezone

from services.patch_ingest.PatchSelector import sample_without_replacement
from shared.helper.HelperConfig import HelperConfig
from shared.models.conversation import (
    DecodedPayload,
    DecryptedConversation,
    MessagePosition,
    PatchMessageSelection,
    SelectedMessage,
)

# Emoji_Presentation=Yes code points (Unicode 16.0 emoji-data.txt)
EMOJI_PATTERN = re.compile(
    "["
    "\u231a\u231b\u23e9-\u23ec\u23f0\u23f3\u25fd\u25fe\u2614\u2615\u2648-\u2653\u267f\u2693\u26a1"
    "\u26aa\u26ab\u26bd\u26be\u26c4\u26c5\u26ce\u26d4\u26ea\u26f2\u26f3\u26f5\u26fa\u26fd\u2705"
    "\u270a\u270b\u2728\u274c\u274e\u2753-\u2755\u2757\u2795-\u2797\u27b0\u27bf\u2b1b\u2b1c\u2b50"
    "\u2b55\U0001f004\U0001f0cf\U0001f18e\U0001f191-\U0001f19a\U0001f1e6-\U0001f1ff\U0001f201"
    "\U0001f21a\U0001f22f\U0001f232-\U0001f236\U0001f238-\U0001f23a\U0001f250\U0001f251"
    "\U0001f300-\U0001f320\U0001f32d-\U0001f335\U0001f337-\U0001f37c\U0001f37e-\U0001f393"
    "\U0001f3a0-\U0001f3ca\U0001f3cf-\U0001f3d3\U0001f3e0-\U0001f3f0\U0001f3f4\U0001f3f8-\U0001f43e"
    "\U0001f440\U0001f442-\U0001f4fc\U0001f4ff-\U0001f53d\U0001f54b-\U0001f54e\U0001f550-\U0001f567"
    "\U0001f57a\U0001f595\U0001f596\U0001f5a4\U0001f5fb-\U0001f64f\U0001f680-\U0001f6c5\U0001f6cc"
    "\U0001f6d0-\U0001f6d2\U0001f6d5-\U0001f6d7\U0001f6dc-\U0001f6df\U0001f6eb\U0001f6ec"
    "\U0001f6f4-\U0001f6fc\U0001f7e0-\U0001f7eb\U0001f7f0\U0001f90c-\U0001f93a\U0001f93c-\U0001f945"
    "\U0001f947-\U0001f9ff\U0001fa70-\U0001fa7c\U0001fa80-\U0001fa89\U0001fa8f-\U0001fac6"
    "\U0001face-\U0001fadc\U0001fadf-\U0001fae9\U0001faf0-\U0001faf8"
    "]"
)
MAX_EMOJI_RATIO = 0.2

MEDIUM_WORDS = (15, 20)
LONG_WORDS = (21, 50)
PER_BUCKET = 5

DEFAULT_CUTOFF_WINDOW = timedelta(hours=16)


def emoji_ratio(text: str) -> float:
    """Share of emoji-presentation code points among all code points of the text."""
    if not text:
        return 0.0
    return len(EMOJI_PATTERN.findall(text)) / len(text)


def word_count(text: str) -> int:
    return len(text.split())


class MessageSelector:
    """
    Picks at most ten substantive, recent, distinct messages per conversation.

    Per conversation: drop the excluded account, keep recent non-empty messages,
    drop emoji-heavy ones, deduplicate by text (latest wins), bucket by word
    count (medium 15-20, long 21-50) and sample up to five per bucket.
    """

    def __init__(self, helper_config: HelperConfig, rng: random.Random | None = None):
        self.logging = helper_config.get_logger()
        self._rng = rng or random.Random()

    ##########################################
    ############### SELECTION ################
    ##########################################

    def select(
        self,
        conversation: DecryptedConversation,
        cutoff_window: timedelta = DEFAULT_CUTOFF_WINDOW,
        excluded_account_id: str | None = None,
        now: datetime | None = None,
        flat_offset: int = 0,
    ) -> list[SelectedMessage]:
        """Select the messages of one conversation worth embedding.

        Args:
            conversation (DecryptedConversation): The conversation to select from.
            cutoff_window (timedelta): Only messages sent after now - cutoff_window are kept.
            excluded_account_id (str | None): Conversation id that is never ingested.
            now (datetime | None): Reference time, defaults to the current UTC time.
            flat_offset (int): Flat index of the conversation's first message within its patch.

        Returns:
            list[SelectedMessage]: Up to ten messages, medium bucket first.
        """
        if excluded_account_id and str(conversation.chat_id) == str(excluded_account_id):
            self.logging.debug("Skipping excluded conversation %s", conversation.chat_id)
            return []

        now = now or datetime.now(timezone.utc)
        cutoff = (now - cutoff_window).timestamp()

        candidates = [
            SelectedMessage(
                **msg.model_dump(),
                chat_id=conversation.chat_id,
                user_id=conversation.user_id,
                flat_index=flat_offset + i,
            )
            for i, msg in enumerate(conversation.messages)
        ]

        recent = [
            m for m in candidates
            if m.text and m.text.strip() and m.timestamp is not None and m.timestamp > cutoff
        ]
        plain = [m for m in recent if emoji_ratio(m.text) < MAX_EMOJI_RATIO]

        latest_by_text: dict[str, SelectedMessage] = {}
        for m in plain:
            existing = latest_by_text.get(m.text)
            if existing is None or m.timestamp > existing.timestamp:
                latest_by_text[m.text] = m
        unique = list(latest_by_text.values())

        medium = [m for m in unique if MEDIUM_WORDS[0] <= word_count(m.text) <= MEDIUM_WORDS[1]]
        long = [m for m in unique if LONG_WORDS[0] <= word_count(m.text) <= LONG_WORDS[1]]

        chosen = sample_without_replacement(medium, PER_BUCKET, self._rng) + sample_without_replacement(long, PER_BUCKET, self._rng)
        self.logging.debug(
            "Conversation %s: %d messages, %d recent, %d without emoji spam, %d unique, selected %d",
            conversation.chat_id,
            len(candidates),
            len(recent),
            len(plain),
            len(unique),
            len(chosen),
        )
        return chosen

    def select_patch(
        self,
        payload: DecodedPayload,
        cutoff_window: timedelta = DEFAULT_CUTOFF_WINDOW,
        excluded_account_id: str | None = None,
        now: datetime | None = None,
    ) -> PatchMessageSelection:
        """Select messages from every conversation of a decoded patch.

        Flat indices run over every message of every conversation, including
        conversations that are skipped.

        Args:
            payload (DecodedPayload): The decoded patch.
            cutoff_window (timedelta): Recency window, see select().
            excluded_account_id (str | None): Conversation id that is never ingested.
            now (datetime | None): Reference time shared by all conversations.

        Returns:
            PatchMessageSelection: Selected messages and the flat index map.
        """
        now = now or datetime.now(timezone.utc)
        conversations = payload.get_conversations()

        selection = PatchMessageSelection(conversation_count=len(conversations))
        flat_index = 0
        for conversation_index, conversation in enumerate(conversations):
            for content_index in range(len(conversation.messages)):
                selection.index_map[flat_index + content_index] = MessagePosition(
                    conversation_index=conversation_index,
                    content_index=content_index,
                )
            selection.messages.extend(
                self.select(conversation, cutoff_window, excluded_account_id, now=now, flat_offset=flat_index)
            )
            flat_index += len(conversation.messages)

        selection.message_count = flat_index
        self.logging.info(
            "Selected %d of %d messages across %d conversations",
            len(selection.messages),
            flat_index,
            len(conversations),
        )
        return selection
