from dataclasses import dataclass

ROLE_ADMIN = "admin"
ROLE_OWNER = "owner"
ROLE_PROFESSIONAL = "professional"
ROLE_CLIENT = "client"

MANAGER_ROLES = {ROLE_ADMIN, ROLE_OWNER}


@dataclass(frozen=True)
class TenantContext:
    """Identity of the caller, trusted as given by the auth layer."""

    user_id: str
    tenant_id: str
    role: str

    @property
    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES

    def can_manage_professional(self, professional_id: str) -> bool:
        return self.is_manager or (self.role == ROLE_PROFESSIONAL and self.user_id == professional_id)
