import taichi as ti

ti.init(arch=ti.cpu, default_fp=ti.f64)

from .errors import FastMassSpringError, ConfigError, FactorizationError, StaleFactorizationError
from .cloth import Spring, Attachment, Cloth, ClothFromMesh, GridClothBuilder
from .config import SolverConfig
from .matrix import MatrixBuilder, ComputeMatricesLJ, ComputeClothMatrices, MassMatrix
from .factorizer import SystemFactorizer
from .solver import LocalStepProjector, GlobalStepSolver, FastMassSpringSolver, FALLBACK_DIRECTION
from .frames import FixedFrameGenerator
