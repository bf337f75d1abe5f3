from typing import Optional
from pydantic import BaseModel


class UserIdentity(BaseModel):
    """The subset of a user account a session is built from."""
    id: str
    role: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


ADMIN_ROLE = "ADMIN"
