from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
    is_internal: bool = False

class CommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    user_id: int
    content: str
    is_internal: bool
    created_at: datetime
