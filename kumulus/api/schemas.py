"""Pydantic models for the API layer.

Defines request/response schemas for all endpoints. Wire names are camelCase
to match the browser client; Python attributes stay snake_case.
"""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AskRequest(BaseModel):
    """Incoming turn from the frontend. Every field is optional."""
    model_config = _CAMEL

    prompt: str | None = None
    session_id: str | None = None
    image_base64: str | None = Field(
        default=None,
        validation_alias=AliasChoices("imageBase64", "imageData", "image_base64"),
        serialization_alias="imageBase64",
    )

    @model_validator(mode="before")
    @classmethod
    def _case_insensitive_keys(cls, data):
        """Accept property names in any casing ("SessionId", "sessionid")."""
        if not isinstance(data, dict):
            return data
        known = {
            "prompt": "prompt",
            "sessionid": "sessionId",
            "session_id": "sessionId",
            "imagebase64": "imageBase64",
            "imagedata": "imageBase64",
            "image_base64": "imageBase64",
        }
        return {known.get(k.lower(), k) if isinstance(k, str) else k: v for k, v in data.items()}


class AskResponse(BaseModel):
    """Answer for one turn."""
    model_config = _CAMEL

    answer: str
    session_id: str


class TurnRecord(BaseModel):
    """One persisted user/assistant exchange."""
    session_id: str
    sequence_key: int
    user_message: str
    assistant_message: str
    title: str | None = None
    created_at: datetime


class SessionSummary(BaseModel):
    """One row of the session list."""
    model_config = _CAMEL

    id: str
    title: str
    last_update: datetime


class SessionMessage(BaseModel):
    """One exchange of a session transcript."""
    model_config = _CAMEL

    user_message: str
    ai_message: str
    timestamp: datetime
