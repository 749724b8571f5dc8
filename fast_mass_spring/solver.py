# ref:
# 1. Fast Simulation of Mass-Spring Systems (Liu, Bargteil, O'Brien, Kavan 2013)
# min_x 1/2 (x-y)^T M (x-y) + h^2 E(x) is solved by block coordinate descent on (x,d):
#   local  step : d_c = closest point of constraint c to the current x          (parallel over c)
#   global step : (M + h^2 L) x = h^2 J d + M y + h^2 f_ext                      (one LLT solve)

import dataclasses
import logging
import numpy as np
import taichi as ti

from .cloth import Cloth
from .config import SolverConfig
from .errors import ConfigError, StaleFactorizationError
from .factorizer import SystemFactorizer
from .matrix import ComputeClothMatrices, MassMatrix

logger = logging.getLogger('fast_mass_spring')

ATTACHMENT, SPRING = 0, 1
EPS = 1e-12
# direction used for a spring whose two particles coincide, keeps d finite
FALLBACK_DIRECTION = (1.0, 0.0, 0.0)

@ti.data_oriented
class LocalStepProjector:
    """
    Constraint data and the d buffer live in one snode tree sized by (num_particles, num_constraints).
    Load() refills it for a cloth of the same sizes, Destroy() frees it.
    """
    def __init__(self, cloth: Cloth, parallel=True):
        self.vn, self.nc, self.parallel = cloth.num_particles, cloth.num_constraints, parallel
        n = max(self.nc, 1)   # taichi fields can not be empty
        self.kind = ti.field(ti.i32)
        self.idx = ti.Vector.field(2, ti.i32)
        self.rest = ti.field(ti.f64)
        self.target = ti.Vector.field(3, ti.f64)
        self.d = ti.Vector.field(3, ti.f64)
        self.x = ti.Vector.field(3, ti.f64)
        fb = ti.FieldsBuilder()
        fb.dense(ti.i, n).place(self.kind, self.idx, self.rest, self.target, self.d)
        fb.dense(ti.i, self.vn).place(self.x)
        self.snode_tree = fb.finalize()
        self.degenerate_count = 0   # springs that fell back to FALLBACK_DIRECTION in the last Project()
        self.Load(cloth)

    def Fits(self, cloth: Cloth):
        return self.snode_tree is not None and (cloth.num_particles, cloth.num_constraints) == (self.vn, self.nc)

    def Load(self, cloth: Cloth):
        assert self.Fits(cloth)
        n = max(self.nc, 1)
        kind = np.zeros(n, dtype=np.int32)
        idx = np.full((n, 2), -1, dtype=np.int32)
        rest = np.zeros(n)
        target = np.zeros((n, 3))
        c = 0
        for a in cloth.attachments:
            kind[c], idx[c, 0], target[c] = ATTACHMENT, a.particle_index, a.target_position
            c += 1
        for s in cloth.springs:
            kind[c], idx[c], rest[c] = SPRING, (s.particle_index_0, s.particle_index_1), s.rest_length
            c += 1
        self.kind.from_numpy(kind)
        self.idx.from_numpy(idx)
        self.rest.from_numpy(rest)
        self.target.from_numpy(target)
        return self

    def Destroy(self):
        if self.snode_tree is not None:
            self.snode_tree.destroy()
            self.snode_tree = None

    @ti.func
    def ProjectConstraint(self, c):
        degenerate = 0
        if self.kind[c] == ATTACHMENT:
            self.d[c] = self.target[c]
        else:
            delta = self.x[self.idx[c][0]] - self.x[self.idx[c][1]]
            norm = delta.norm()
            direction = ti.Vector([FALLBACK_DIRECTION[0], FALLBACK_DIRECTION[1], FALLBACK_DIRECTION[2]], dt=ti.f64)
            if norm > EPS: direction = delta / norm
            else:          degenerate = 1
            self.d[c] = self.rest[c] * direction
        return degenerate

    @ti.kernel
    def ProjectParallel(self) -> ti.i32:
        n = 0
        for c in range(self.nc): n += self.ProjectConstraint(c)
        return n

    @ti.kernel
    def ProjectSerial(self) -> ti.i32:
        n = 0
        ti.loop_config(serialize=True)
        for c in range(self.nc): n += self.ProjectConstraint(c)
        return n

    # positions (N,3) -> d (C,3), row c belongs to constraint c
    def Project(self, positions):
        if self.nc == 0: return np.zeros((0, 3))
        self.x.from_numpy(np.ascontiguousarray(positions, dtype=np.float64).reshape(self.vn, 3))
        self.degenerate_count = self.ProjectParallel() if self.parallel else self.ProjectSerial()
        if self.degenerate_count > 0:
            logger.debug('%d zero length springs projected along %s', self.degenerate_count, FALLBACK_DIRECTION)
        return self.d.to_numpy()[:self.nc]

class GlobalStepSolver:
    def __init__(self, J, h, factorizer: SystemFactorizer):
        self.h2_J = (h * h * J).tocsr()
        self.factorizer = factorizer

    # b = h^2 J d + inertial_term ,  x = A^-1 b
    def Solve(self, d, inertial_term):
        b = self.h2_J @ np.asarray(d).reshape(-1) + inertial_term
        return self.factorizer.Solve(b).reshape(-1, 3)

class FastMassSpringSolver:
    """
    Steps a Cloth with a fixed number of local/global iterations per time step.

    L, J and the factorization of M + h^2 L are built once by Rebuild(). SetTimeStep() and any change
    of the cloth topology or masses make them stale: Step() then raises StaleFactorizationError until
    Rebuild() is called again.
    """
    def __init__(self, cloth: Cloth, config: SolverConfig = None, **options):
        if config is not None and options: raise ConfigError('pass either a SolverConfig or keyword options, not both')
        self.m_cloth = cloth
        self.m_config = config if config is not None else SolverConfig.FromDict(options)
        self.factorizer = SystemFactorizer()
        self.projector, self.global_solver, self.matrix_m = None, None, None
        self.revision = None
        self.Rebuild()

    @property
    def cloth(self): return self.m_cloth
    @property
    def config(self): return self.m_config
    @property
    def time_step(self): return self.config.time_step
    @property
    def is_valid(self):
        return (self.factorizer.valid and self.factorizer.time_step == self.m_config.time_step
                and self.revision == self.m_cloth.revision)

    def Invalidate(self):
        self.factorizer.Invalidate()

    def Rebuild(self):
        cloth, h = self.m_cloth, self.config.time_step
        self.factorizer.Invalidate()
        self.CheckExternalForce(self.config.external_force)
        L, J = ComputeClothMatrices(cloth)
        self.matrix_m = MassMatrix(cloth.masses)
        self.factorizer.Rebuild(L, cloth.masses, h)
        if self.projector is not None and self.projector.Fits(cloth):
            self.projector.Load(cloth)
            self.projector.parallel = self.config.parallel
        else:
            if self.projector is not None: self.projector.Destroy()
            self.projector = LocalStepProjector(cloth, self.config.parallel)
        self.global_solver = GlobalStepSolver(J, h, self.factorizer)
        self.revision = cloth.revision
        logger.info('rebuilt solver: %d particles, %d springs, %d attachments',
                    cloth.num_particles, cloth.num_springs, cloth.num_attachments)
        return self

    def CheckExternalForce(self, f):
        if f is not None and f.ndim == 2 and f.shape[0] != self.m_cloth.num_particles:
            raise ConfigError(f'external_force has {f.shape[0]} rows, cloth has {self.m_cloth.num_particles} particles')

    def SetTimeStep(self, h):
        self.m_config = dataclasses.replace(self.m_config, time_step=h)
        self.Invalidate()
        return self

    def SetDamping(self, damping):
        self.m_config = dataclasses.replace(self.m_config, damping=damping)
        return self

    def SetNumIterations(self, num_iterations):
        self.m_config = dataclasses.replace(self.m_config, num_iterations=num_iterations)
        return self

    def SetGravity(self, gravity):
        self.m_config = dataclasses.replace(self.m_config, gravity=gravity)
        return self

    def SetExternalForce(self, external_force):
        config = dataclasses.replace(self.m_config, external_force=external_force)
        self.CheckExternalForce(config.external_force)
        self.m_config = config
        return self

    def ExternalForce(self):
        cloth = self.m_cloth
        f = cloth.masses[:, None] * np.array(self.config.gravity)[None, :]
        if self.config.external_force is not None: f = f + self.config.external_force
        return f

    # M y + h^2 f_ext ,  y = (1+damping) x_n - damping x_{n-1}
    def PreComputeInertialTerm(self):
        cloth, damping, h = self.m_cloth, self.config.damping, self.config.time_step
        y = (1 + damping) * cloth.positions - damping * cloth.prev_positions
        return self.matrix_m @ y.reshape(-1) + h * h * self.ExternalForce().reshape(-1)

    def Step(self):
        if not self.is_valid:
            raise StaleFactorizationError('solver matrices are stale (time step or cloth changed), call Rebuild()')
        cloth = self.m_cloth
        start = cloth.positions.copy()
        inertial_term = self.PreComputeInertialTerm()
        x = start
        for _ in range(self.config.num_iterations):
            d = self.projector.Project(x)
            x = self.global_solver.Solve(d, inertial_term)
        # prev <- x_n : positions from before the iterations, not an intermediate iterate
        cloth.prev_positions[:] = start
        cloth.positions[:] = x
        return self
