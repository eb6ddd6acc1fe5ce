"""User enumeration for the background jobs."""

from collections.abc import Iterator

from sqlalchemy.orm import Session

from .models import User


class UserDirectory:
    """Enumerates the users known to the host, in the order the store returns them."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def iter_user_ids(self) -> Iterator[str]:
        rows = self._db.query(User.id).filter(User.is_active == True).order_by(User.id).all()  # noqa: E712
        for (user_id,) in rows:
            yield user_id

    def exists(self, user_id: str) -> bool:
        return self._db.get(User, user_id) is not None
