"""
Pydantic models for inbound request bodies.

Depends on: config, errors
"""

from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from agentconnect.config import MAX_NAME_LENGTH, MAX_URL_LENGTH, MIN_TOKEN_LENGTH
from agentconnect.errors import ValidationFailure

NAME_REGEX = r"^[a-zA-Z0-9_-]+$"


class _Body(BaseModel):
    model_config = ConfigDict(extra="ignore")
    sender: str = Field(..., alias="from", min_length=1, max_length=MAX_NAME_LENGTH,
                        pattern=NAME_REGEX, description="Name of the calling agent")


class PairRequestBody(_Body):
    """Unauthenticated: the caller proposes a shared secret."""
    token: str = Field(..., min_length=MIN_TOKEN_LENGTH, max_length=512)
    webhook_url: str = Field(..., min_length=1, max_length=MAX_URL_LENGTH)


class PairAcceptBody(_Body):
    webhook_url: Optional[str] = Field(default=None, max_length=MAX_URL_LENGTH)


class MessageBody(_Body):
    message: str = Field(..., min_length=1)
    encrypted: bool = False
    message_type: Optional[str] = Field(default=None, description="'file' for file envelopes")
    timestamp: Optional[str] = None


class HeartbeatBody(_Body):
    pass


ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_body(model: Type[ModelT], data) -> ModelT:
    """Validate a decoded JSON body, turning schema errors into ValidationFailure."""
    if not isinstance(data, dict):
        raise ValidationFailure("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "body"
        if first.get("type") == "missing":
            raise ValidationFailure(f"Missing required field: {field}")
        raise ValidationFailure(f"Invalid field '{field}': {first.get('msg', 'invalid')}")
