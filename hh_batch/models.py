"""
Compartment model state, physical constants and time window configuration.
"""

from dataclasses import dataclass, fields, asdict
from typing import ClassVar, Dict, Hashable, List, Tuple

import numpy as np

from .errors import InvalidTimeWindow
from .sampling import ResultSampler, is_integer


@dataclass
class Model:
    """
    Base class for one simulated compartment.

    Subclasses declare the kernel-integrated state variables in
    ``STATE_FIELDS``; the stimulus current is always ``I``. The id is opaque
    and only used to label output, never to order it.
    """
    id: Hashable

    STATE_FIELDS: ClassVar[Tuple[str, ...]] = ()
    STIMULUS_FIELD: ClassVar[str] = 'I'

    @classmethod
    def input_fields(cls) -> Tuple[str, ...]:
        """Fields packed into input buffers: state variables, then stimulus."""
        return cls.STATE_FIELDS + (cls.STIMULUS_FIELD,)

    @property
    def state(self) -> Dict[str, float]:
        """State variables as a dictionary."""
        return {name: getattr(self, name) for name in self.STATE_FIELDS}

    @classmethod
    def from_state(cls, id: Hashable, state: Dict[str, float], I: float = 0.0) -> 'Model':
        """Create a model from a state dictionary and stimulus current."""
        values = {name: float(state[name]) for name in cls.STATE_FIELDS}
        values[cls.STIMULUS_FIELD] = float(I)
        return cls(id=id, **values)


@dataclass
class HHModel(Model):
    """
    Hodgkin-Huxley compartment.

    Potentials are relative to rest (1952 convention), so the resting
    membrane sits near V = 0 mV.
    """
    V: float
    n: float
    m: float
    h: float
    I: float = 0.0

    STATE_FIELDS: ClassVar[Tuple[str, ...]] = ('V', 'n', 'm', 'h')


@dataclass
class HHConstants:
    """
    Physical constants passed to the compute kernel as scalars.

    Defaults follow Hodgkin & Huxley 1952 with potentials shifted so that
    rest is 0 mV (mV, ms, mS/cm^2, uF/cm^2).
    """
    # Maximal conductances (mS/cm^2)
    g_K: float = 36.0
    g_Na: float = 120.0
    g_L: float = 0.3

    # Reversal potentials relative to rest (mV)
    E_K: float = -12.0
    E_Na: float = 115.0
    E_L: float = 10.613

    # Membrane capacitance (uF/cm^2)
    C_m: float = 1.0

    def to_dict(self) -> Dict[str, float]:
        """Convert constants to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, float]) -> 'HHConstants':
        """Create constants from dictionary."""
        return cls(**d)

    def kernel_args(self, dtype=np.float32) -> Tuple:
        """Scalars in kernel argument order (declaration order of the fields)."""
        return tuple(dtype(getattr(self, f.name)) for f in fields(self))


@dataclass(frozen=True)
class TimeWindow:
    """
    One bounded kernel invocation.

    Attributes:
        step_length: Simulated time per step (ms), > 0
        step_count: Number of integration steps, integer > 0
        sample_period: Retain every Nth step, integer >= 1
    """
    step_length: float
    step_count: int
    sample_period: int = 1

    def __post_init__(self):
        if not self.step_length > 0:
            raise InvalidTimeWindow(f"step_length must be > 0, got {self.step_length!r}")
        if not is_integer(self.step_count) or self.step_count < 1:
            raise InvalidTimeWindow(
                f"step_count must be an integer > 0, got {self.step_count!r}"
            )
        if not is_integer(self.sample_period) or self.sample_period < 1:
            raise InvalidTimeWindow(
                f"sample_period must be an integer >= 1, got {self.sample_period!r}"
            )

    @property
    def duration(self) -> float:
        """Simulated time covered by the window (ms)."""
        return self.step_length * self.step_count

    @property
    def sample_count(self) -> int:
        return ResultSampler.sample_count(self.step_count, self.sample_period)

    @property
    def trailing_steps(self) -> int:
        return ResultSampler.trailing_steps(self.step_count, self.sample_period)

    @property
    def is_aligned(self) -> bool:
        """True when the last executed step is also the last sampled step."""
        return self.trailing_steps == 0

    def split(self, n_windows: int) -> List['TimeWindow']:
        """
        Partition into ``n_windows`` equal consecutive windows.

        Raises:
            InvalidTimeWindow: If step_count is not divisible by n_windows
        """
        if not is_integer(n_windows) or n_windows < 1:
            raise InvalidTimeWindow(f"n_windows must be an integer >= 1, got {n_windows!r}")
        if self.step_count % n_windows != 0:
            raise InvalidTimeWindow(
                f"step_count {self.step_count} is not divisible into {n_windows} windows"
            )
        part = TimeWindow(self.step_length, self.step_count // n_windows, self.sample_period)
        return [part] * n_windows

    def to_dict(self) -> Dict:
        """Convert window to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict) -> 'TimeWindow':
        """Create window from dictionary."""
        return cls(**d)
