"""
Typed records returned by ESP connectors
Known fields are typed; anything else a provider returns is kept in an opaque `extra` bag
"""
from datetime import datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DateLike = Union[datetime, str, int, float]


def _split_known(model_cls, data: Dict[str, Any]) -> Dict[str, Any]:
    """Move keys that are neither field names nor aliases into `extra`"""
    known = set()
    for name, field in model_cls.model_fields.items():
        known.add(name)
        if field.alias:
            known.add(field.alias)
    values = {k: v for k, v in data.items() if k in known}
    extra = dict(values.pop("extra", None) or {})
    extra.update({k: v for k, v in data.items() if k not in known})
    values["extra"] = extra
    return values


class Publication(BaseModel):
    """
    A remote list, segment, audience or publication

    Terminology varies per ESP (lists, segments, publications, products, sites);
    every connector returns this shape from fetch_publications().
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    subscriber_count: Optional[int] = Field(default=None, alias="subscriberCount")
    description: Optional[str] = None
    created_at: Optional[DateLike] = Field(default=None, alias="createdAt")
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        """Some providers return numeric IDs"""
        return str(v) if v is not None else v

    @classmethod
    def from_raw(cls, data: Dict[str, Any]) -> "Publication":
        return cls.model_validate(_split_known(cls, data))


class SubscriberRecord(BaseModel):
    """A subscriber as returned by an ESP, before mapping to the local schema"""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: Optional[str] = None
    status: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    subscribed_at: Optional[DateLike] = Field(default=None, alias="subscribedAt")
    unsubscribed_at: Optional[DateLike] = Field(default=None, alias="unsubscribedAt")
    extra: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v

    @classmethod
    def from_raw(cls, data: Dict[str, Any]) -> "SubscriberRecord":
        return cls.model_validate(_split_known(cls, data))
