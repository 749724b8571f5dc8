import numpy as np
from dataclasses import dataclass, fields

from .errors import ConfigError

# frozen: a solver only sees new options through its Set* methods
@dataclass(frozen=True)
class SolverConfig:
    time_step: float = 1.0 / 60.0
    damping: float = 0.98       # y = (1+damping)*x_n - damping*x_{n-1}, 0 drops the velocity entirely
    num_iterations: int = 2     # local/global pairs per step, no convergence check
    gravity: tuple = (0.0, -9.8, 0.0)   # acceleration, f_ext += m_i * gravity
    external_force: object = None       # force, a 3-vector or a (N,3) array, None for zero
    parallel: bool = True       # parallel local step

    def __post_init__(self):
        self.Validate()

    def Validate(self):
        if not self.time_step > 0: raise ConfigError(f'time_step must be positive, got {self.time_step}')
        if not 0 <= self.damping < 1: raise ConfigError(f'damping must be in [0,1), got {self.damping}')
        if isinstance(self.num_iterations, bool) or not isinstance(self.num_iterations, (int, np.integer)) or self.num_iterations < 1:
            raise ConfigError(f'num_iterations must be a positive integer, got {self.num_iterations}')
        object.__setattr__(self, 'num_iterations', int(self.num_iterations))
        object.__setattr__(self, 'gravity', Vec3(self.gravity, 'gravity'))
        if self.external_force is not None:
            f = np.array(self.external_force, dtype=np.float64)
            if f.ndim not in (1, 2) or f.shape[-1] != 3 or not np.all(np.isfinite(f)):
                raise ConfigError(f'external_force must be a 3-vector or a (N,3) array, got shape {f.shape}')
            f.flags.writeable = False
            object.__setattr__(self, 'external_force', f)
        return self

    @classmethod
    def FromDict(cls, options):
        known = {f.name for f in fields(cls)}
        unknown = set(options) - known
        if unknown: raise ConfigError(f'unknown solver options: {sorted(unknown)}')
        return cls(**options)

def Vec3(v, name):
    v = np.array(v, dtype=np.float64).reshape(-1)
    if v.shape != (3,) or not np.all(np.isfinite(v)): raise ConfigError(f'{name} must be a finite 3-vector, got {v}')
    return tuple(float(c) for c in v)
