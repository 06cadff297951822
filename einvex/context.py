from dataclasses import dataclass
from typing import List, Optional


@dataclass
class UserContext:
    """
    Context object for carrying the requesting user through an import.

    Attributes:
        user_id: Unique identifier for the user
        tenant_id: Identifier of the tenant every read and write is scoped to
        user_email: Optional email address of the user
        roles: Optional list of user roles
    """
    user_id: str
    tenant_id: str
    user_email: Optional[str] = None
    roles: Optional[List[str]] = None

    def __post_init__(self):
        if not self.tenant_id:
            raise ValueError("tenant_id is required")

    def has_role(self, role: str) -> bool:
        """Check if user has a specific role."""
        return self.roles is not None and role in self.roles
