from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional


class UserProfileModel(BaseModel):
    name: str = Field(min_length=1)
    email: Optional[EmailStr] = None
    bio: Optional[str] = ""
    location: Optional[str] = ""
    interests: List[str] = []
    photo: Optional[str] = ""
