from types import SimpleNamespace

import numpy as np
import pytest

from fast_mass_spring import (Attachment, ConfigError, GridClothBuilder, MassMatrix, MatrixBuilder, Spring,
                              ComputeClothMatrices, ComputeMatricesLJ)

def Block(M, i, j):
    return M[3 * i:3 * i + 3, 3 * j:3 * j + 3]

def test_matrix_builder_blocks():
    m = MatrixBuilder(2, 3).AddBlock(1, 2, 4.0).AddBlock(1, 2, 1.0).AddTriplet(0, 0, 2.0).scipy_coo_matrix.toarray()
    assert m.shape == (6, 9)
    np.testing.assert_array_equal(Block(m, 1, 2), 5.0 * np.eye(3))
    assert m[0, 0] == 2.0
    assert np.count_nonzero(m) == 4

def test_single_spring_and_attachment():
    L, J = ComputeMatricesLJ(3, [Attachment(2, (1, 2, 3), 7.0)], [Spring(0, 1, 5.0, 1.0)])
    L, J = L.toarray(), J.toarray()
    assert L.shape == (9, 9) and J.shape == (9, 6)
    I = np.eye(3)
    np.testing.assert_array_equal(Block(L, 0, 0), 5 * I)
    np.testing.assert_array_equal(Block(L, 1, 1), 5 * I)
    np.testing.assert_array_equal(Block(L, 0, 1), -5 * I)
    np.testing.assert_array_equal(Block(L, 1, 0), -5 * I)
    np.testing.assert_array_equal(Block(L, 2, 2), 7 * I)
    # column block 0 is the attachment, column block 1 the spring
    np.testing.assert_array_equal(Block(J, 2, 0), 7 * I)
    np.testing.assert_array_equal(Block(J, 0, 1), 5 * I)
    np.testing.assert_array_equal(Block(J, 1, 1), -5 * I)
    assert np.count_nonzero(J) == 9

def test_l_symmetric_and_j_sparsity():
    builder = GridClothBuilder(resolution=5, structural_spring_stiffness=3.0, shear_spring_stiffness=0.7)
    cloth = builder.Build()
    cloth.AddAttachments([Attachment(builder.top_left_vertex_index, cloth.positions[builder.top_left_vertex_index], 50.0)])
    L, J = ComputeClothMatrices(cloth)
    L, J = L.toarray(), J.toarray()
    np.testing.assert_array_equal(L, L.T)
    constraints = list(cloth.attachments) + list(cloth.springs)
    for c, con in enumerate(constraints):
        rows = {con.particle_index} if isinstance(con, Attachment) else {con.particle_index_0, con.particle_index_1}
        for i in range(cloth.num_particles):
            blk = Block(J, i, c)
            if i in rows: assert np.count_nonzero(blk) == 3
            else:         assert not blk.any()
    # springs do not contribute to row sums, attachments do
    row_sums = (L @ np.ones(L.shape[0])).reshape(-1, 3)
    expected = np.zeros_like(row_sums)
    expected[builder.top_left_vertex_index] = 50.0
    np.testing.assert_allclose(row_sums, expected, atol=1e-12)

def test_duplicate_springs_accumulate():
    one, _ = ComputeMatricesLJ(2, [], [Spring(0, 1, 2.0, 1.0)])
    two, J = ComputeMatricesLJ(2, [], [Spring(0, 1, 2.0, 1.0), Spring(1, 0, 2.0, 1.0)])
    np.testing.assert_allclose(two.toarray(), 2 * one.toarray())
    assert J.shape == (6, 6)

def test_invalid_constraints():
    with pytest.raises(ConfigError): ComputeMatricesLJ(2, [], [Spring(0, 2, 1.0, 1.0)])
    with pytest.raises(ConfigError): ComputeMatricesLJ(2, [Attachment(2, (0, 0, 0), 1.0)], [])
    self_spring = SimpleNamespace(particle_index_0=1, particle_index_1=1, stiffness=1.0, rest_length=1.0)
    with pytest.raises(ConfigError): ComputeMatricesLJ(2, [], [self_spring])

def test_no_constraints():
    L, J = ComputeMatricesLJ(2, [], [])
    assert L.shape == (6, 6) and L.nnz == 0
    assert J.shape == (6, 0)

def test_mass_matrix():
    M = MassMatrix([1.0, 2.0]).toarray()
    np.testing.assert_array_equal(M, np.diag([1, 1, 1, 2, 2, 2]))
