"""
Lifecycle phases of a CRF instance.

The current phase is never stored. It is derived from the persisted status,
completion phase and verification flags against the optional phases the
form's configuration enables.
"""

from dataclasses import dataclass
from enum import Enum
from apps.core.models import CompletionPhase, CRFStatus, COMPLETE_STATUSES


class Phase(str, Enum):
    NOT_STARTED = 'not_started'
    DATA_ENTRY = 'data_entry'
    DATA_ENTRY_COMPLETE = 'data_entry_complete'
    DDE_VERIFIED = 'dde_verified'
    SDV_COMPLETE = 'sdv_complete'
    SIGNED = 'signed'
    LOCKED = 'locked'


BASE_PHASES = (Phase.NOT_STARTED, Phase.DATA_ENTRY, Phase.DATA_ENTRY_COMPLETE)


@dataclass(frozen=True)
class LifecycleState:
    status: str
    completion_phase: int
    sdv_verified: bool = False
    signed: bool = False
    frozen: bool = False

    @classmethod
    def from_crf(cls, crf):
        return cls(
            status=crf.status,
            completion_phase=crf.completion_phase,
            sdv_verified=crf.sdv_verified,
            signed=crf.signed,
            frozen=crf.frozen,
        )


def optional_phases(config):
    """Optional phases enabled by a resolved workflow configuration, in order."""
    enabled = []
    if config.requires_dde:
        enabled.append(Phase.DDE_VERIFIED)
    if config.requires_sdv:
        enabled.append(Phase.SDV_COMPLETE)
    if config.requires_signature:
        enabled.append(Phase.SIGNED)
    return enabled


def build_phase_list(config):
    return [*BASE_PHASES, *optional_phases(config), Phase.LOCKED]


def phase_reached(phase, state):
    if phase == Phase.LOCKED:
        return state.status == CRFStatus.LOCKED
    if phase == Phase.SIGNED:
        return state.signed or state.completion_phase >= CompletionPhase.SIGNED
    if phase == Phase.SDV_COMPLETE:
        return state.sdv_verified
    if phase == Phase.DDE_VERIFIED:
        return state.completion_phase >= CompletionPhase.DDE_VERIFIED
    if phase == Phase.DATA_ENTRY_COMPLETE:
        return (
            state.status in COMPLETE_STATUSES
            or state.completion_phase >= CompletionPhase.DATA_ENTRY_COMPLETE
        )
    if phase == Phase.DATA_ENTRY:
        return (
            state.status in COMPLETE_STATUSES
            or state.completion_phase >= CompletionPhase.DATA_ENTRY
        )
    return True


def derive_phase(state, config):
    """
    Get the current phase of a CRF.

    Walks the configured phase list from the terminal end and returns the
    first phase whose condition holds and whose configured predecessors all
    hold as well. A signature without the DDE verification that must precede
    it therefore does not advance the phase. Locked is taken from the status
    alone.
    """
    phases = build_phase_list(config)
    for index, phase in reversed(list(enumerate(phases))):
        if not phase_reached(phase, state):
            continue
        if phase == Phase.LOCKED or all(phase_reached(p, state) for p in phases[:index]):
            return phase
    return Phase.NOT_STARTED


def split_phases(state, config):
    """
    Partition the configured phases into completed and pending.

    Returns:
        (completed, pending) lists of Phase values; completed runs up to and
        including the current phase
    """
    phases = build_phase_list(config)
    current = derive_phase(state, config)
    index = phases.index(current)
    return phases[:index + 1], phases[index + 1:]
