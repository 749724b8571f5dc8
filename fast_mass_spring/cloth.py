import numpy as np
import trimesh
from dataclasses import dataclass

from .errors import ConfigError

@dataclass(frozen=True)
class Spring:
    particle_index_0: int
    particle_index_1: int
    stiffness: float
    rest_length: float

    def __post_init__(self):
        i, j = self.particle_index_0, self.particle_index_1
        if i == j: raise ConfigError(f'spring connects particle {i} to itself')
        if i < 0 or j < 0: raise ConfigError(f'negative particle index in spring ({i},{j})')
        if not self.stiffness > 0: raise ConfigError(f'spring ({i},{j}) stiffness must be positive, got {self.stiffness}')
        if not self.rest_length >= 0: raise ConfigError(f'spring ({i},{j}) rest length must be >= 0, got {self.rest_length}')

@dataclass(frozen=True)
class Attachment:
    particle_index: int
    target_position: tuple
    stiffness: float

    def __post_init__(self):
        target = tuple(float(c) for c in np.asarray(self.target_position, dtype=np.float64).reshape(-1))
        if len(target) != 3: raise ConfigError(f'attachment target must be a 3d point, got {self.target_position}')
        object.__setattr__(self, 'target_position', target)
        if self.particle_index < 0: raise ConfigError(f'negative particle index {self.particle_index} in attachment')
        if not self.stiffness > 0: raise ConfigError(f'attachment stiffness must be positive, got {self.stiffness}')

class Cloth:
    """
    Particles + constraints of a mass spring network.

    positions / prev_positions are (N,3) float64 arrays, row i is the 3-block of particle i and
    positions.reshape(-1) is the 3N vector the solver works on. They are updated in place by the solver.
    Constraint index order: attachments first, then springs, both in insertion order.
    """
    def __init__(self, masses, positions):
        masses = np.array(masses, dtype=np.float64).reshape(-1)
        positions = np.array(positions, dtype=np.float64)
        if masses.size == 0: raise ConfigError('cloth needs at least one particle')
        if positions.size != 3 * masses.size:
            raise ConfigError(f'{masses.size} masses but {positions.size} position components')
        if not np.all(np.isfinite(positions)): raise ConfigError('particle positions must be finite')
        if not np.all(masses >= 0): raise ConfigError('particle masses must be >= 0')
        masses.flags.writeable = False   # SetParticleMass only
        self.m_masses = masses
        self.positions = positions.reshape(-1, 3)
        self.prev_positions = self.positions.copy()
        self.m_springs, self.m_attachments = (), ()
        self.revision = 0   # bumped on every change that invalidates L, J or M

    @property
    def masses(self): return self.m_masses
    @property
    def num_particles(self): return len(self.m_masses)
    @property
    def num_springs(self): return len(self.m_springs)
    @property
    def num_attachments(self): return len(self.m_attachments)
    @property
    def num_constraints(self): return self.num_springs + self.num_attachments
    @property
    def springs(self): return self.m_springs
    @property
    def attachments(self): return self.m_attachments

    def CheckIndex(self, i):
        if not 0 <= i < self.num_particles:
            raise ConfigError(f'particle index {i} out of range [0,{self.num_particles})')

    def AddSprings(self, springs):
        springs = tuple(springs)
        for s in springs:
            self.CheckIndex(s.particle_index_0)
            self.CheckIndex(s.particle_index_1)
        self.m_springs += springs
        self.revision += 1
        return self

    def AddAttachments(self, attachments):
        attachments = tuple(attachments)
        for a in attachments: self.CheckIndex(a.particle_index)
        self.m_attachments += attachments
        self.revision += 1
        return self

    def SetParticleMass(self, i, mass):
        self.CheckIndex(i)
        if not mass >= 0: raise ConfigError(f'particle mass must be >= 0, got {mass}')
        masses = self.m_masses.copy()
        masses[i] = mass
        masses.flags.writeable = False
        self.m_masses = masses
        self.revision += 1
        return self

    def GetParticlePosition(self, i):
        return self.positions[i].copy()

    def SpringSegments(self):
        if self.num_springs == 0: return np.zeros((0, 2, 3))
        ij = np.array([(s.particle_index_0, s.particle_index_1) for s in self.m_springs])
        return self.positions[ij]

# one spring per unique edge, rest length = initial edge length, total mass split evenly
def ClothFromMesh(mesh: trimesh.Trimesh, mass, spring_stiffness):
    vn = len(mesh.vertices)
    cloth = Cloth(np.full(vn, mass / vn), mesh.vertices)
    cloth.AddSprings(Spring(int(i), int(j), spring_stiffness, float(l))
                     for (i, j), l in zip(mesh.edges_unique, mesh.edges_unique_length))
    return cloth

class GridClothBuilder:
    """
    Square grid cloth in the local xy plane, centered at the origin, then moved by a 4x4 transform.
    Vertex (i,j) has index i*resolution+j, i walks along x and j along y.
    Structural springs link 4-neighbours, shear springs link both diagonals.
    """
    def __init__(self, size=3.0, resolution=20, structural_spring_stiffness=10.0, shear_spring_stiffness=0.6,
                 mass=1.0, transform=None):
        if resolution < 2: raise ConfigError(f'grid resolution must be >= 2, got {resolution}')
        if not size > 0: raise ConfigError(f'grid size must be positive, got {size}')
        self.size, self.resolution = size, resolution
        self.structural_spring_stiffness = structural_spring_stiffness
        self.shear_spring_stiffness = shear_spring_stiffness
        self.mass = mass
        self.transform = np.eye(4) if transform is None else np.asarray(transform, dtype=np.float64)

    @property
    def down_left_vertex_index(self): return 0
    @property
    def top_left_vertex_index(self): return self.resolution - 1
    @property
    def down_right_vertex_index(self): return self.resolution * (self.resolution - 1)
    @property
    def top_right_vertex_index(self): return self.resolution * self.resolution - 1

    def Build(self):
        r = self.resolution
        cell = self.size / (r - 1)
        ii, jj = np.meshgrid(np.arange(r), np.arange(r), indexing='ij')
        local = np.stack([-0.5 * self.size + ii.ravel() * cell, -0.5 * self.size + jj.ravel() * cell, np.zeros(r * r)], axis=1)
        vertices = trimesh.transformations.transform_points(local, self.transform)
        cloth = Cloth(np.full(r * r, self.mass / (r * r)), vertices)

        def Link(a, b, k): return Spring(a, b, k, float(np.linalg.norm(vertices[a] - vertices[b])))
        springs = []
        for i in range(r):
            for j in range(r):
                idx = i * r + j
                if i + 1 < r: springs.append(Link(idx, (i + 1) * r + j, self.structural_spring_stiffness))
                if j + 1 < r: springs.append(Link(idx, i * r + j + 1, self.structural_spring_stiffness))
        for i in range(r - 1):
            for j in range(r):
                idx = i * r + j
                if j + 1 < r: springs.append(Link(idx, (i + 1) * r + j + 1, self.shear_spring_stiffness))
                if j > 0:     springs.append(Link(idx, (i + 1) * r + j - 1, self.shear_spring_stiffness))
        return cloth.AddSprings(springs)
