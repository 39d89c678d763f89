from pydantic import BaseModel


class ChatInitModel(BaseModel):
    book_id: str
    user_id: str


class ChatMessageModel(BaseModel):
    text: str
