from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    CLIENT = 'client'
    PROVIDER = 'provider'
    ADMIN = 'admin'


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as handed over by the identity collaborator."""

    id: int
    role: Role
