from pydantic import BaseModel
from typing import Optional


class CurrentUser(BaseModel):
    """Signed-in supporter, passed explicitly to components that need it"""
    supporter_id: str
    email: Optional[str] = None
    full_name: Optional[str] = None

    class Config:
        frozen = True
