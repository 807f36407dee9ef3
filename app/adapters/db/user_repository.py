"""User persistence."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.adapters.db.models import User


class UserRepository:
    """Thin data access for the ``users`` table.

    Writes commit immediately. Unique-email violations surface as
    ``sqlalchemy.exc.IntegrityError`` and ``get_required`` raises
    ``sqlalchemy.exc.NoResultFound``; callers do not translate either.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_id(self, user_id: int) -> User | None:
        return self._session.get(User, user_id)

    def get_required(self, user_id: int) -> User:
        return self._session.execute(select(User).where(User.id == user_id)).scalar_one()

    def get_by_email(self, email: str) -> User | None:
        return self._session.execute(select(User).where(User.email == email)).scalar_one_or_none()

    def create(self, *, email: str, name: str, password_hash: str) -> User:
        user = User(email=email, name=name, password_hash=password_hash)
        self._session.add(user)
        self._session.commit()
        self._session.refresh(user)
        return user

    def update(self, user: User, **fields: object) -> User:
        for name, value in fields.items():
            setattr(user, name, value)
        self._session.commit()
        self._session.refresh(user)
        return user

    def delete(self, user: User) -> None:
        self._session.delete(user)
        self._session.commit()
