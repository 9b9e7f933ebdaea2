from __future__ import annotations

from enum import StrEnum

from statemachine import State, StateMachine


class PartitionPhase(StrEnum):
    uninitialized = "uninitialized"
    partitioned = "partitioned"
    rebalanced = "rebalanced"
    destroyed = "destroyed"


class PartitionFSM(StateMachine):
    """Lifecycle of an allocator's region set.

    - uninitialized -> partitioned on the first build
    - partitioned <-> rebalanced while temporary weights are in effect (same topology)
    - any live state -> partitioned again on a significant viewport change
    - destroyed is terminal
    """

    uninitialized = State(PartitionPhase.uninitialized.value, value=PartitionPhase.uninitialized.value, initial=True)
    partitioned = State(PartitionPhase.partitioned.value, value=PartitionPhase.partitioned.value)
    rebalanced = State(PartitionPhase.rebalanced.value, value=PartitionPhase.rebalanced.value)
    destroyed = State(PartitionPhase.destroyed.value, value=PartitionPhase.destroyed.value, final=True)

    partition = uninitialized.to(partitioned) | partitioned.to(partitioned) | rebalanced.to(partitioned)
    rebalance = partitioned.to(rebalanced) | rebalanced.to(rebalanced)
    revert = rebalanced.to(partitioned)
    destroy = uninitialized.to(destroyed) | partitioned.to(destroyed) | rebalanced.to(destroyed)

    @property
    def phase(self) -> PartitionPhase:
        return PartitionPhase(str(self.current_state.value))
