import datetime as dt
from typing import Annotated, Optional
from pydantic import AfterValidator, BaseModel, Field, ConfigDict, BeforeValidator, field_serializer


def _as_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    # BSON datetimes come back naive; they are always UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


# Standardizes MongoDB ObjectIds to strings
PyObjectId = Annotated[str, BeforeValidator(str)]
UTCDateTime = Annotated[dt.datetime, AfterValidator(_as_utc)]


class MongoBaseModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
        use_enum_values=True,
        extra='forbid'
    )

    id: Optional[PyObjectId] = Field(None, alias="_id")
    created_at: UTCDateTime = Field(default_factory=utcnow)
    updated_at: UTCDateTime = Field(default_factory=utcnow)

    # ISO strings on the wire, native datetimes in the database
    @field_serializer("created_at", "updated_at", when_used="json")
    def serialize_dt(self, value: dt.datetime):
        return value.isoformat()
