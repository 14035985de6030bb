from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ref(Generic[T]):
    """A foreign reference that is either just an id or an id with the loaded row.

    ``resolved`` is None when the referenced row is gone (or was never joined),
    so callers check ``missing`` instead of guessing what ``id`` holds.
    """

    id: int
    resolved: Optional[T] = None

    @property
    def missing(self) -> bool:
        return self.resolved is None
