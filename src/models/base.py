import datetime as dt
from typing import Annotated, Optional
from pydantic import BaseModel, Field, ConfigDict, BeforeValidator, AfterValidator, field_serializer
from pydantic.alias_generators import to_camel


def utcnow() -> dt.datetime:
    """Current UTC time as a naive datetime, the form MongoDB hands back."""
    return dt.datetime.now(dt.UTC).replace(tzinfo=None)


def to_naive_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(dt.UTC).replace(tzinfo=None)


# Standardizes MongoDB ObjectIds to strings
PyObjectId = Annotated[str, BeforeValidator(str)]

# Upstream timestamps arrive with offsets; stored documents are naive UTC
UtcDatetime = Annotated[dt.datetime, AfterValidator(to_naive_utc)]


class MongoBaseModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        alias_generator=to_camel,
        extra='ignore'
    )

    id: Optional[PyObjectId] = Field(None, alias="_id")
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: UtcDatetime = Field(default_factory=utcnow)

    # Datetimes stay native for MongoDB; only JSON output gets ISO strings
    @field_serializer("created_at", "updated_at", when_used="json")
    def serialize_dt(self, value: dt.datetime):
        return value.isoformat()
