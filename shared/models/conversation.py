"""Conversation models produced by decoding a decrypted patch payload."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class Reactions(BaseModel):
    emoji: str | None = None
    count: int | None = None


class MessageRecord(BaseModel):
    """
    A single chat message.

    Attributes:
        id:             Message id, unique within its conversation.
        from_id:        User id of the sender, if known.
        text:           Message text (may be empty for media-only messages).
        timestamp:      Send time as unix seconds.
        edit_timestamp: Last edit time as unix seconds, if edited.
        outbound:       True if the message was sent by the conversation owner.
        reactions:      First reaction summary, if any.
    """

    id: int | str
    from_id: str | None = None
    text: str = ""
    timestamp: float | None = None
    edit_timestamp: float | None = None
    outbound: bool = False
    reactions: Reactions | None = None


class DecryptedConversation(BaseModel):
    chat_id: str
    user_id: str = ""
    messages: list[MessageRecord] = []


class SelectedMessage(MessageRecord):
    """A MessageRecord chosen for embedding, with its conversation context.

    flat_index is the position of the message in the order-preserving
    concatenation of every message of every conversation in the patch.
    """

    chat_id: str
    user_id: str
    flat_index: int


class MessagePosition(BaseModel):
    conversation_index: int
    content_index: int


################ DECODED PAYLOAD ##################
# A decrypted patch arrives in one of several historical shapes. Each variant
# below is produced once by PayloadDecoder; downstream code only ever calls
# get_conversations().

class ConversationListPayload(BaseModel):
    """Payload carrying an explicit list of conversations ({"chats": [...]})."""

    kind: Literal["conversation_list"] = "conversation_list"
    user_id: str = ""
    conversations: list[DecryptedConversation] = []

    def get_conversations(self) -> list[DecryptedConversation]:
        return self.conversations


class SingleConversationPayload(BaseModel):
    """Payload that is one bare conversation ({"chat_id": ..., "contents": [...]})."""

    kind: Literal["single_conversation"] = "single_conversation"
    user_id: str = ""
    conversation: DecryptedConversation

    def get_conversations(self) -> list[DecryptedConversation]:
        return [self.conversation]


class ConversationArrayPayload(BaseModel):
    """Payload that is a raw JSON array of conversations."""

    kind: Literal["conversation_array"] = "conversation_array"
    user_id: str = ""
    conversations: list[DecryptedConversation] = []

    def get_conversations(self) -> list[DecryptedConversation]:
        return self.conversations


class UnrecognizedPayload(BaseModel):
    """Anything else. Whatever message list could be salvaged is wrapped into one conversation."""

    kind: Literal["unrecognized"] = "unrecognized"
    user_id: str = ""
    conversation: DecryptedConversation

    def get_conversations(self) -> list[DecryptedConversation]:
        return [self.conversation]


DecodedPayload = Annotated[
    Union[ConversationListPayload, SingleConversationPayload, ConversationArrayPayload, UnrecognizedPayload],
    Field(discriminator="kind"),
]


class PatchMessageSelection(BaseModel):
    """Messages selected from every conversation of one patch.

    index_map maps each flat index to the message's position in the decoded payload.
    """

    messages: list[SelectedMessage] = []
    index_map: dict[int, MessagePosition] = {}
    conversation_count: int = 0
    message_count: int = 0
