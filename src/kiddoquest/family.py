"""Child profiles and their ownership by parent accounts."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional, Sequence
from uuid import uuid4

from .exceptions import AuthorizationError, NotFoundError
from .models import CHILDREN, ChildProfile, Frequency, StreakState
from .store import DocumentStore, Transaction


def load_child(transaction: Transaction, child_id: str) -> ChildProfile:
    data = transaction.get(CHILDREN, child_id)
    if data is None:
        raise NotFoundError(f"Child '{child_id}' does not exist.")
    return ChildProfile.from_document(child_id, data)


def save_child(transaction: Transaction, child: ChildProfile) -> None:
    transaction.set(CHILDREN, child.id, child.to_document())


def require_owner(child: ChildProfile, parent_id: str) -> None:
    if child.parent_id != parent_id:
        raise AuthorizationError(f"Parent '{parent_id}' does not own child '{child.id}'.")


class FamilyDirectory:
    """Create and look up child profiles."""

    def __init__(
        self,
        store: DocumentStore,
        *,
        clock: Callable[[], datetime] = datetime.now,
        streak_period: Frequency = Frequency.DAILY,
    ) -> None:
        self._store = store
        self._clock = clock
        self._streak_period = streak_period

    def add_child(
        self,
        parent_id: str,
        name: str,
        *,
        avatar: str = "",
        child_id: Optional[str] = None,
    ) -> ChildProfile:
        child = ChildProfile(
            id=child_id or str(uuid4()),
            parent_id=parent_id,
            name=name,
            avatar=avatar,
            streak=StreakState(period=self._streak_period),
            created_at=self._clock(),
        )

        def _create(transaction: Transaction) -> ChildProfile:
            transaction.create(CHILDREN, child.id, child.to_document())
            return child

        return self._store.run_transaction(_create)

    def get(self, child_id: str) -> ChildProfile:
        data = self._store.get(CHILDREN, child_id)
        if data is None:
            raise NotFoundError(f"Child '{child_id}' does not exist.")
        return ChildProfile.from_document(child_id, data)

    def children_for_parent(self, parent_id: str) -> Sequence[ChildProfile]:
        return tuple(
            ChildProfile.from_document(doc_id, data)
            for doc_id, data in self._store.query(CHILDREN, {"parentId": parent_id})
        )

    def update_profile(
        self,
        child_id: str,
        parent_id: str,
        *,
        name: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> ChildProfile:
        def _update(transaction: Transaction) -> ChildProfile:
            child = load_child(transaction, child_id)
            require_owner(child, parent_id)
            if name is not None:
                child.name = name
            if avatar is not None:
                child.avatar = avatar
            child = ChildProfile.from_document(child.id, child.to_document())
            save_child(transaction, child)
            return child

        return self._store.run_transaction(_update)


__all__ = ["FamilyDirectory", "load_child", "require_owner", "save_child"]
