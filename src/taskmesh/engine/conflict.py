"""Conflict Resolver - Decides which of two concurrent change-sets is kept."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, Protocol, TypeVar

from loguru import logger

DEFAULT_THRESHOLD = 7

ChangeSet = TypeVar("ChangeSet")


class Strategy(StrEnum):
    """Which side of a conflict wins."""

    FAVOR_LOCAL = "favor_local"  # keep the producing party's changes ("ours")
    FAVOR_INCOMING = "favor_incoming"  # take the other side ("theirs")


def resolve(party_priority: float, threshold: float = DEFAULT_THRESHOLD) -> Strategy:
    """Priority above the threshold keeps local changes; otherwise incoming win."""
    if party_priority > threshold:
        return Strategy.FAVOR_LOCAL
    return Strategy.FAVOR_INCOMING


class ConflictPolicy(Protocol):
    """Pluggable decision rule for reconciling two change-sets."""

    def decide(self, party_priority: float) -> Strategy: ...


class ThresholdPolicy:
    """Fixed binary rule on the party's priority."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD) -> None:
        self.threshold = threshold

    def decide(self, party_priority: float) -> Strategy:
        return resolve(party_priority, self.threshold)


@dataclass(frozen=True)
class Resolution(Generic[ChangeSet]):
    """Outcome of reconciling two change-sets."""

    strategy: Strategy
    kept: ChangeSet
    discarded: ChangeSet
    party_priority: float


class ConflictResolver:
    """
    Applies a conflict policy to concrete change-sets.

    The policy only picks a side; the resolver hands back the kept and the
    discarded change-set so callers never re-derive the mapping.
    """

    def __init__(self, policy: ConflictPolicy | None = None) -> None:
        self.policy: ConflictPolicy = policy or ThresholdPolicy()

    def decide(self, party_priority: float) -> Strategy:
        return self.policy.decide(party_priority)

    def reconcile(
        self, local: ChangeSet, incoming: ChangeSet, party_priority: float
    ) -> Resolution[ChangeSet]:
        strategy = self.decide(party_priority)
        if strategy == Strategy.FAVOR_LOCAL:
            kept, discarded = local, incoming
        else:
            kept, discarded = incoming, local
        logger.info(f"Resolved conflict using {strategy} (party priority {party_priority})")
        return Resolution(strategy, kept, discarded, party_priority)
