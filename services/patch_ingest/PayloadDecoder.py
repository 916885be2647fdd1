from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.models.conversation import (
    ConversationArrayPayload,
    ConversationListPayload,
    DecodedPayload,
    DecryptedConversation,
    MessageRecord,
    Reactions,
    SingleConversationPayload,
    UnrecognizedPayload,
)
from shared.models.patch import UnmaskedTags


def _is_epoch(value: Any) -> bool:
    # bool is an int subclass
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class PayloadDecoder:
    """
    Resolves a decrypted patch document into one DecodedPayload variant.

    Decrypted patches come in four historical shapes:
    - {"chats": [...], "userId"|"user": ...}      -> ConversationListPayload
    - {"chat_id": ..., "contents": [...]}          -> SingleConversationPayload
    - [{"chat_id": ..., "contents": [...]}, ...]   -> ConversationArrayPayload
    - anything else                                -> UnrecognizedPayload

    Decoding never raises. Malformed entries become empty messages so that
    message positions inside a conversation stay stable.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()

    ##########################################
    ################ DECODE ##################
    ##########################################

    def decode(self, raw: Any, unmasked: UnmaskedTags | None = None) -> DecodedPayload:
        """Decode a decrypted patch.

        Args:
            raw (Any): The decrypted JSON document.
            unmasked (UnmaskedTags | None): Clear-text ids recovered from the patch tags.

        Returns:
            DecodedPayload: The resolved variant.
        """
        unmasked = unmasked or UnmaskedTags()

        if isinstance(raw, dict) and isinstance(raw.get("chats"), list):
            user_id = self._pick_user_id(raw, unmasked)
            return ConversationListPayload(
                user_id=user_id,
                conversations=[self.to_conversation(chat, user_id) for chat in raw["chats"]],
            )

        if isinstance(raw, dict) and raw.get("chat_id") and raw.get("contents"):
            user_id = self._pick_user_id(raw, unmasked)
            chat_id = unmasked.chat_id or raw["chat_id"]
            return SingleConversationPayload(
                user_id=user_id,
                conversation=self.to_conversation({**raw, "chat_id": chat_id}, user_id),
            )

        if isinstance(raw, list):
            user_id = unmasked.user_id
            return ConversationArrayPayload(
                user_id=user_id,
                conversations=[self.to_conversation(chat, user_id) for chat in raw],
            )

        self.logging.warning("Unrecognized decrypted payload shape (%s), salvaging contents.", type(raw).__name__)
        contents = raw.get("contents") if isinstance(raw, dict) else None
        return UnrecognizedPayload(
            user_id=unmasked.user_id,
            conversation=self.to_conversation(
                {"chat_id": unmasked.chat_id or "0", "contents": contents if isinstance(contents, list) else []},
                unmasked.user_id,
            ),
        )

    ##########################################
    ################ HELPERS #################
    ##########################################

    @staticmethod
    def _pick_user_id(raw: dict, unmasked: UnmaskedTags) -> str:
        user_id = raw.get("userId") or raw.get("user") or unmasked.user_id or ""
        return str(user_id)

    @staticmethod
    def _first_dict(items: Any) -> dict:
        if isinstance(items, list) and items and isinstance(items[0], dict):
            return items[0]
        return {}

    def to_conversation(self, raw_chat: Any, user_id: str) -> DecryptedConversation:
        """Convert one raw chat object into a DecryptedConversation.

        A chat without a contents list yields a conversation without messages.
        """
        if not isinstance(raw_chat, dict):
            return DecryptedConversation(chat_id="", user_id=user_id)
        contents = raw_chat.get("contents")
        messages = [self.to_message(msg, i) for i, msg in enumerate(contents)] if isinstance(contents, list) else []
        chat_id = raw_chat.get("chat_id")
        return DecryptedConversation(
            chat_id="" if chat_id is None else str(chat_id),
            user_id=user_id,
            messages=messages,
        )

    @staticmethod
    def to_message(raw_msg: Any, position: int) -> MessageRecord:
        """Convert one raw message into a MessageRecord.

        Args:
            raw_msg (Any): Raw message ({"id", "fromId": {"userId"}, "date", "editDate", "message", "out", "reactions"}).
            position (int): Position inside the conversation, used as id for malformed entries.

        Returns:
            MessageRecord: The converted message. Malformed entries have empty text.
        """
        if not isinstance(raw_msg, dict):
            return MessageRecord(id=position)

        from_id = raw_msg.get("fromId")
        from_user = from_id.get("userId") if isinstance(from_id, dict) else None

        reactions = None
        raw_reactions = raw_msg.get("reactions")
        if isinstance(raw_reactions, dict):
            reaction = PayloadDecoder._first_dict(raw_reactions.get("recentReactions")).get("reaction")
            reaction = reaction if isinstance(reaction, dict) else {}
            count = PayloadDecoder._first_dict(raw_reactions.get("results")).get("count")
            reactions = Reactions(
                emoji=reaction.get("emoticon") or None,
                count=count if isinstance(count, int) and count else None,
            )

        text = raw_msg.get("message")
        timestamp = raw_msg.get("date")
        edit_timestamp = raw_msg.get("editDate")
        msg_id = raw_msg.get("id")
        return MessageRecord(
            id=msg_id if isinstance(msg_id, (int, str)) else position,
            from_id=str(from_user) if from_user is not None else None,
            text=text if isinstance(text, str) else "",
            timestamp=timestamp if _is_epoch(timestamp) else None,
            edit_timestamp=edit_timestamp if _is_epoch(edit_timestamp) else None,
            outbound=bool(raw_msg.get("out")),
            reactions=reactions,
        )
