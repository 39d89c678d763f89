from pydantic import BaseModel, Field
from typing import Optional
from enum import Enum


class BookStatus(str, Enum):
    AVAILABLE = "Available"
    REQUESTED = "Requested"
    DONATED = "Donated"


class RequestStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    WITHDRAWN = "Withdrawn"


class BookCondition(str, Enum):
    NEW = "New"
    GOOD = "Good"
    ACCEPTABLE = "Acceptable"


class PostBookModel(BaseModel):
    title: str = Field(min_length=1)
    author: Optional[str] = None
    subject: Optional[str] = None
    class_level: Optional[str] = None
    location: Optional[str] = None
    contact: Optional[str] = None
    cover: Optional[str] = None  # URL handed back by the external image store
    isbn: Optional[str] = None
    genre: Optional[str] = None
    book_language: Optional[str] = None
    condition: BookCondition = BookCondition.GOOD


class UpdateBookModel(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    author: Optional[str] = None
    subject: Optional[str] = None
    class_level: Optional[str] = None
    location: Optional[str] = None
    contact: Optional[str] = None
    cover: Optional[str] = None
    isbn: Optional[str] = None
    genre: Optional[str] = None
    book_language: Optional[str] = None
    condition: Optional[BookCondition] = None
