"""
ParkFlow - Sensor Simulator Models
Immutable simulator configuration and runtime statistics.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional, Dict, FrozenSet
from datetime import datetime

from parkflow.models.parking import SpotStatus


class SimulatorConfig(BaseModel):
    """
    Snapshot of the simulator configuration.
    A running simulator never mutates its snapshot; updates build a new one.
    """
    model_config = ConfigDict(frozen=True)

    change_interval_seconds: float = Field(default=15.0, gt=0)
    # Recorded for clients; each tick with an eligible spot always flips one.
    change_probability: float = Field(default=0.3, ge=0, le=1)
    flip_targets: Dict[SpotStatus, SpotStatus] = Field(
        default_factory=lambda: {
            SpotStatus.FREE: SpotStatus.OCCUPIED,
            SpotStatus.OCCUPIED: SpotStatus.FREE,
        }
    )
    protected_statuses: FrozenSet[SpotStatus] = Field(
        default_factory=lambda: frozenset({SpotStatus.RESERVED, SpotStatus.MAINTENANCE})
    )
    recovery_delay_seconds: float = Field(default=120.0, ge=0)

    @model_validator(mode="after")
    def check_flip_targets(self) -> "SimulatorConfig":
        # Local import: the state machine module imports these models.
        from parkflow.services.spot_state_machine import can_transition

        for current, target in self.flip_targets.items():
            if not can_transition(current, target):
                raise ValueError(f"Flip {current.value} -> {target.value} is not an allowed transition")
        return self

    @property
    def eligible_statuses(self) -> FrozenSet[SpotStatus]:
        """Statuses the simulator may pick a spot from."""
        return frozenset(self.flip_targets) - self.protected_statuses

    def flip_target(self, current: SpotStatus) -> Optional[SpotStatus]:
        if current in self.protected_statuses:
            return None
        return self.flip_targets.get(current)


class SimulatorConfigUpdate(BaseModel):
    """Partial configuration update received over the API."""
    change_interval_seconds: Optional[float] = Field(default=None, gt=0)
    change_probability: Optional[float] = Field(default=None, ge=0, le=1)
    recovery_delay_seconds: Optional[float] = Field(default=None, ge=0)
    protected_statuses: Optional[FrozenSet[SpotStatus]] = None


class SimulatorStats(BaseModel):
    """Runtime view of the simulator."""
    is_running: bool
    active_jobs: int
    pending_recoveries: int
    ticks: int
    transitions: int
    errors: int
    started_at: Optional[datetime] = None
    config: SimulatorConfig
