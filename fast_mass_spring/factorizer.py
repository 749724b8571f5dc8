import logging
import numpy as np
import scipy.sparse as sp
import taichi as ti
from scipy.sparse.csgraph import connected_components

from .errors import FactorizationError, StaleFactorizationError
from .matrix import MassMatrix

logger = logging.getLogger('fast_mass_spring')

@ti.kernel
def FillTriplets(builder: ti.types.sparse_matrix_builder(), row: ti.types.ndarray(), col: ti.types.ndarray(), val: ti.types.ndarray()):
    for n in range(row.shape[0]):
        builder[row[n], col[n]] += val[n]

# M + h^2 L is PD iff every connected component of the spring graph holds a massive particle or an attachment.
# Returns the lowest particle index of a component with neither, None if there is none.
def UnanchoredParticle(L, masses):
    P = sp.csr_matrix(L)[0::3, 0::3].tocoo()   # x-x entries, one row per particle
    off = P.row != P.col
    graph = sp.coo_matrix((np.ones(np.count_nonzero(off)), (P.row[off], P.col[off])), shape=P.shape)
    nc, labels = connected_components(graph, directed=False)
    diag = P.tocsr().diagonal()
    row_sum = np.asarray(P.tocsr().sum(axis=1)).ravel()   # springs cancel, attachment stiffness stays
    massive = np.bincount(labels, weights=(np.asarray(masses) > 0).astype(np.float64), minlength=nc)
    attached = np.bincount(labels, weights=row_sum, minlength=nc)
    scale = np.bincount(labels, weights=diag, minlength=nc)
    bad = np.flatnonzero((massive == 0) & (attached <= 1e-9 * scale))
    if len(bad) == 0: return None
    return int(np.flatnonzero(np.isin(labels, bad))[0])

class SystemFactorizer:
    """
    Owns the LLT factorization of  A = M + h^2 L.

    The factorization is only recomputed by Rebuild(). Invalidate() marks it stale and every Solve()
    on a stale cache raises StaleFactorizationError, so an outdated A is never used silently.
    """
    def __init__(self):
        self.solver = None
        self.system_matrix = None   # scipy csr copy of A, kept for inspection
        self.time_step = None      # h of the current factorization
        self.m_valid = False

    @property
    def valid(self): return self.m_valid

    def Invalidate(self):
        self.m_valid = False

    def Rebuild(self, L, masses, h):
        self.Invalidate()
        A = (MassMatrix(masses) + h * h * L).tocsr()
        n = A.shape[0]
        # rounding can leave tiny positive LLT pivots for a floating zero mass cluster
        i = UnanchoredParticle(L, masses)
        if i is not None:
            raise FactorizationError(f'system matrix is not positive definite: particle {i} has no mass, '
                                     f'attachment or spring anchoring it')
        coo = A.tocoo()
        builder = ti.linalg.SparseMatrixBuilder(n, n, max_num_triplets=coo.nnz, dtype=ti.f64)
        FillTriplets(builder, coo.row.astype(np.int32), coo.col.astype(np.int32), coo.data.astype(np.float64))
        tiA = builder.build()
        solver = ti.linalg.SparseSolver(dtype=ti.f64, solver_type="LLT")
        solver.analyze_pattern(tiA)
        solver.factorize(tiA)
        if not solver.info():
            raise FactorizationError('system matrix is not positive definite: LLT factorization failed')
        self.solver, self.system_matrix, self.time_step = solver, A, h
        self.m_valid = True
        logger.info('factorized system matrix %dx%d, nnz=%d, h=%g', n, n, A.nnz, h)
        return self

    def Solve(self, b):
        if not self.m_valid:
            raise StaleFactorizationError('factorization is stale, call Rebuild() before solving')
        return np.asarray(self.solver.solve(np.ascontiguousarray(b, dtype=np.float64)), dtype=np.float64)
