"""Message assembly for completion calls.

Renders the persona instruction, the replayed transcript and the current turn
(text, optionally with an image) into one ordered list of provider messages.
The wire shape of a message is produced in exactly one place: encode_content().
"""

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Literal, Sequence, Union

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from kumulus.agent.prompts import DEFAULT_IMAGE_PROMPT, SYSTEM_PROMPT
from kumulus.api.schemas import TurnRecord

Role = Literal["system", "user", "assistant"]

# Line breaks and tabs injected by transport encoding
_TRANSPORT_NOISE = re.compile(r"[\r\n\t]")


class DecodeError(ValueError):
    """The image payload is not valid base64."""
    pass


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    """Binary image sent inline as a data URI."""
    data: bytes
    media_type: str = "image/jpeg"

    @property
    def data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"


ContentPart = Union[TextPart, ImagePart]
MessageContent = Union[str, tuple[ContentPart, ...]]


@dataclass(frozen=True)
class ProviderMessage:
    """Role-tagged message. Content is plain text or a sequence of parts."""
    role: Role
    content: MessageContent


def normalize_prompt(prompt: str | None) -> str:
    """Return the prompt, or the default image instruction when it is blank."""
    if prompt is None or not prompt.strip():
        return DEFAULT_IMAGE_PROMPT
    return prompt


def decode_image(raw: str) -> bytes:
    """Decode an inline image payload.

    Accepts either bare base64 or a data URI; everything up to and including
    the first comma is dropped. The payload is trimmed, inner line breaks are
    removed and inner spaces (a '+' mangled by form encoding) are turned back
    into '+'.

    Args:
        raw: Base64 text, optionally prefixed with "data:<type>;base64,".

    Returns:
        Decoded image bytes.

    Raises:
        DecodeError: If the payload is empty or not valid base64.
    """
    payload = raw.split(",", 1)[1] if "," in raw else raw
    payload = _TRANSPORT_NOISE.sub("", payload.strip()).replace(" ", "+")
    if not payload:
        raise DecodeError("Image payload is empty.")

    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Image payload is not valid base64: {e}") from e


def build_messages(
    history: Sequence[TurnRecord],
    prompt: str,
    image_base64: str | None = None,
    system_prompt: str = SYSTEM_PROMPT,
) -> list[ProviderMessage]:
    """Build the ordered message list for the primary completion call.

    Args:
        history: Previous turns of the session, oldest first.
        prompt: Effective prompt text for the current turn.
        image_base64: Optional inline image for the current turn.
        system_prompt: Persona instruction placed first.

    Returns:
        system, then user/assistant per history turn, then the current user message.

    Raises:
        DecodeError: If the image payload cannot be decoded.
    """
    messages = [ProviderMessage("system", system_prompt)]

    # Historical images are never re-attached
    for turn in history:
        messages.append(ProviderMessage("user", turn.user_message))
        messages.append(ProviderMessage("assistant", turn.assistant_message))

    if image_base64:
        image = ImagePart(decode_image(image_base64))
        messages.append(ProviderMessage("user", (TextPart(prompt), image)))
    else:
        messages.append(ProviderMessage("user", prompt))

    return messages


def count_history_pairs(messages: Sequence[ProviderMessage]) -> int:
    """Number of replayed user/assistant pairs in an outgoing message list."""
    return sum(1 for m in messages if m.role == "assistant")


def encode_content(content: MessageContent) -> str | list[dict]:
    """Encode message content in the chat-completions wire shape."""
    if isinstance(content, str):
        return content

    parts = []
    for part in content:
        if isinstance(part, TextPart):
            parts.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            parts.append({"type": "image_url", "image_url": {"url": part.data_uri}})
        else:
            raise TypeError(f"Unsupported content part: {type(part).__name__}")
    return parts


def to_wire(message: ProviderMessage) -> dict:
    """Encode one message as {"role", "content"}."""
    return {"role": message.role, "content": encode_content(message.content)}


_LANGCHAIN_TYPES = {
    "system": SystemMessage,
    "user": HumanMessage,
    "assistant": AIMessage,
}


def to_langchain(messages: Sequence[ProviderMessage]) -> list[BaseMessage]:
    """Map provider messages onto LangChain message objects."""
    converted = []
    for message in messages:
        wire = to_wire(message)
        converted.append(_LANGCHAIN_TYPES[wire["role"]](content=wire["content"]))
    return converted
