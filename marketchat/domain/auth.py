from dataclasses import dataclass

from marketchat.domain.enums import UserRole


@dataclass(frozen=True, slots=True)
class AuthContext:
    """Authenticated caller, resolved once per request by the API layer."""

    user_id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_vendor(self) -> bool:
        return self.role == UserRole.VENDOR
