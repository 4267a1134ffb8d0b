"""Reward catalog and redemption engine."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence
from uuid import uuid4

from .exceptions import (
    AuthorizationError,
    InsufficientBalanceError,
    NotFoundError,
    StateConflictError,
)
from .family import load_child, require_owner, save_child
from .models import REDEMPTIONS, REWARDS, Redemption, Reward
from .points import PointsLike
from .store import DocumentStore, Transaction


def load_reward(transaction: Transaction, reward_id: str) -> Reward:
    data = transaction.get(REWARDS, reward_id)
    if data is None:
        raise NotFoundError(f"Reward '{reward_id}' does not exist.")
    return Reward.from_document(reward_id, data)


def _require_reward_owner(reward: Reward, parent_id: str) -> None:
    if reward.parent_id != parent_id:
        raise AuthorizationError(f"Parent '{parent_id}' does not own reward '{reward.id}'.")


class RewardCatalog:
    """Parent-managed rewards and which children may redeem them."""

    def __init__(self, store: DocumentStore, *, clock: Callable[[], datetime] = datetime.now) -> None:
        self._store = store
        self._clock = clock

    def create_reward(
        self,
        parent_id: str,
        title: str,
        cost: PointsLike,
        *,
        assigned_to: Iterable[str] = (),
        description: str = "",
    ) -> Reward:
        reward = Reward(
            id=str(uuid4()),
            parent_id=parent_id,
            title=title,
            cost=cost,
            description=description,
            assigned_to=frozenset(assigned_to),
            created_at=self._clock(),
        )

        def _create(transaction: Transaction) -> Reward:
            for child_id in sorted(reward.assigned_to):
                require_owner(load_child(transaction, child_id), parent_id)
            transaction.create(REWARDS, reward.id, reward.to_document())
            return reward

        return self._store.run_transaction(_create)

    def get(self, reward_id: str) -> Reward:
        data = self._store.get(REWARDS, reward_id)
        if data is None:
            raise NotFoundError(f"Reward '{reward_id}' does not exist.")
        return Reward.from_document(reward_id, data)

    def assign(self, reward_id: str, parent_id: str, child_id: str) -> Reward:
        def _assign(transaction: Transaction) -> Reward:
            reward = load_reward(transaction, reward_id)
            _require_reward_owner(reward, parent_id)
            require_owner(load_child(transaction, child_id), parent_id)
            reward.assigned_to = reward.assigned_to | {child_id}
            transaction.set(REWARDS, reward_id, reward.to_document())
            return reward

        return self._store.run_transaction(_assign)

    def deactivate(self, reward_id: str, parent_id: str) -> Reward:
        def _deactivate(transaction: Transaction) -> Reward:
            reward = load_reward(transaction, reward_id)
            _require_reward_owner(reward, parent_id)
            reward.active = False
            transaction.set(REWARDS, reward_id, reward.to_document())
            return reward

        return self._store.run_transaction(_deactivate)

    def rewards_for_child(self, child_id: str, *, include_inactive: bool = False) -> Sequence[Reward]:
        rewards = (
            Reward.from_document(doc_id, data)
            for doc_id, data in self._store.query(REWARDS, {"assignedTo": child_id})
        )
        return tuple(reward for reward in rewards if include_inactive or reward.active)


class RedemptionEngine:
    """Spend a child's XP balance on a reward.

    The balance check, the deduction and the redemption record share one
    transaction; a concurrent redemption that drained the balance first makes
    this one re-read and fail with :class:`InsufficientBalanceError`.
    """

    def __init__(self, store: DocumentStore, *, clock: Callable[[], datetime] = datetime.now) -> None:
        self._store = store
        self._clock = clock

    def redeem(self, reward_id: str, child_id: str, *, at: Optional[datetime] = None) -> Redemption:
        when = at or self._clock()
        redemption_id = str(uuid4())

        def _redeem(transaction: Transaction) -> Redemption:
            reward = load_reward(transaction, reward_id)
            if not reward.active:
                raise StateConflictError(f"Reward '{reward_id}' is no longer available.")
            if not reward.is_assigned(child_id):
                raise AuthorizationError(f"Reward '{reward_id}' is not offered to child '{child_id}'.")
            child = load_child(transaction, child_id)
            if child.current_xp < reward.cost:
                raise InsufficientBalanceError(
                    f"Reward '{reward.title}' costs {reward.cost} XP; child has {child.current_xp} XP."
                )
            child.current_xp -= reward.cost
            redemption = Redemption(
                id=redemption_id,
                reward_id=reward_id,
                child_id=child_id,
                cost_paid=reward.cost,
                redeemed_at=when,
                reward_title=reward.title,
            )
            save_child(transaction, child)
            transaction.create(REDEMPTIONS, redemption.id, redemption.to_document())
            return redemption

        return self._store.run_transaction(_redeem)

    def redemptions_for_child(self, child_id: str) -> Sequence[Redemption]:
        redemptions = [
            Redemption.from_document(doc_id, data)
            for doc_id, data in self._store.query(REDEMPTIONS, {"childId": child_id})
        ]
        return tuple(sorted(redemptions, key=lambda item: (item.redeemed_at, item.id)))


__all__ = ["RedemptionEngine", "RewardCatalog", "load_reward"]
