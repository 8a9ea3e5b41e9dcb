from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class BroadcastIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    body: str = ""
    audience: Literal["all", "customer", "partner"] = "all"


class NotificationOut(BaseModel):
    id: str
    kind: str
    title: str
    body: str
    createdAt: str
    bookingId: Optional[str] = None
    status: Optional[str] = None


class NotificationsOut(BaseModel):
    items: List[NotificationOut]
    count: int
    cue: bool
