import numpy as np
import scipy.sparse as sp
from collections import defaultdict

from .errors import ConfigError

# Every matrix here is made of 3x3 blocks k*I3 : block (ri,ci) covers rows 3ri..3ri+2 and columns 3ci..3ci+2.
class MatrixBuilder:
    def __init__(self, row_block_cnt, col_block_cnt):
        self.rn, self.cn = 3 * row_block_cnt, 3 * col_block_cnt
        self.triplets = defaultdict(np.float64)
    def AddTriplet(self, ri, ci, value):
        self.triplets[(ri, ci)] += value
        return self
    def AddBlock(self, rbi, cbi, k):   # += k*I3 at block (rbi,cbi)
        for a in range(3): self.AddTriplet(3 * rbi + a, 3 * cbi + a, k)
        return self
    @property
    def scipy_coo_matrix(self):
        row, col, val = [], [], []
        for (ri, ci), v in self.triplets.items():
            row.append(ri)
            col.append(ci)
            val.append(v)
        return sp.coo_matrix((np.array(val, dtype=np.float64), (np.array(row, dtype=np.int64), np.array(col, dtype=np.int64))),
                             shape=(self.rn, self.cn))

def CheckConstraints(num_particles, attachments, springs):
    def Check(i, what):
        if not 0 <= i < num_particles: raise ConfigError(f'{what} references particle {i}, cloth has {num_particles}')
    for a in attachments: Check(a.particle_index, 'attachment')
    for s in springs:
        if s.particle_index_0 == s.particle_index_1:
            raise ConfigError(f'spring connects particle {s.particle_index_0} to itself')
        Check(s.particle_index_0, 'spring')
        Check(s.particle_index_1, 'spring')

# L = sum_c k_c (A_c A_c^T) ⊗ I3 ,  J = sum_c k_c (A_c S_c^T) ⊗ I3
# A_c : incidence vector of constraint c (1 at i, -1 at j for a spring), S_c : indicator of constraint c
# constraint index : attachments first, then springs
def ComputeMatricesLJ(num_particles, attachments, springs):
    CheckConstraints(num_particles, attachments, springs)
    nc = len(attachments) + len(springs)
    L, J = MatrixBuilder(num_particles, num_particles), MatrixBuilder(num_particles, nc)
    c = 0
    for a in attachments:
        i, k = a.particle_index, a.stiffness
        L.AddBlock(i, i, k)
        J.AddBlock(i, c, k)
        c += 1
    for s in springs:
        i, j, k = s.particle_index_0, s.particle_index_1, s.stiffness
        L.AddBlock(i, i, k).AddBlock(j, j, k).AddBlock(i, j, -k).AddBlock(j, i, -k)
        J.AddBlock(i, c, k).AddBlock(j, c, -k)
        c += 1
    return L.scipy_coo_matrix.tocsr(), J.scipy_coo_matrix.tocsr()

def ComputeClothMatrices(cloth):
    return ComputeMatricesLJ(cloth.num_particles, cloth.attachments, cloth.springs)

def MassMatrix(masses):
    return sp.diags(np.repeat(np.asarray(masses, dtype=np.float64), 3), format='csr')
