from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """The authenticated user on whose behalf a service call runs."""
    id: int
    role: str

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=user.id, role=user.role)
