# -*- coding: utf-8 -*-

"""
Storage of the second derivatives of the energy.

The second derivatives are stored q point by q point, as in the abinit DDB:
each element is identified by (idir1, ipert1, idir2, ipert2), where
idir is the cartesian direction (0, 1, 2) and ipert the perturbation:

    0 <= ipert < N_atoms   : displacement of the atom ipert
    ipert == N_atoms + 1   : electric field
    ipert == N_atoms + 2   : uniaxial strain
    ipert == N_atoms + 3   : shear strain

Atomic elements are in Ha/bohr^2 (cartesian). At each q point the atomic
block is the Fourier transform of the real space force constants

    C_{ia, jb}(q) = sum_R Phi(i0a; jRb) exp(2 pi i q.R)

with q in crystal coordinates of the reciprocal lattice.
"""

import numpy as np
import warnings

import frozenphonons.Methods as Methods
import frozenphonons.Settings as Settings
from frozenphonons.Errors import QptNotFound, DimensionMismatch, MissingResponse
from frozenphonons.Units import A_TO_BOHR


__all__ = ["ForceConstantStore", "get_spring_model_fc"]


class ForceConstantStore(object):
    """
    FORCE CONSTANT STORE
    ====================

    Parameters
    ----------
        structure : Structure.Structure
            The unit cell the force constants refer to.
        normalized : bool
            If True the stored values are already divided by sqrt(m_i m_j)
            (masses in electron mass units).
        zion : ndarray(N_atoms)
            The ionic charges, added to the electronic part of the
            Born effective charges.
    """

    def __init__(self, structure = None, normalized = False, zion = None):
        self.structure = structure
        self.normalized = normalized
        self.zion = None
        if zion is not None:
            self.zion = np.array(zion, dtype = np.float64)

        self.q_points = []
        self.blocks = []

        if structure is not None and zion is not None:
            if len(self.zion) != structure.N_atoms:
                raise DimensionMismatch("Error, zion has {} elements, but the structure has {} atoms".format(len(self.zion), structure.N_atoms))

    @property
    def N_atoms(self):
        if self.structure is None:
            raise ValueError("Error, the force constant store has no structure attached.")
        return self.structure.N_atoms

    def is_normalized(self):
        return self.normalized

    def _get_block_index(self, q):
        return Methods.find_qpoint(self.q_points, q)

    def add_element(self, q, idir1, ipert1, idir2, ipert2, value):
        """
        Store one second derivative.
        If a q point within tolerance is already stored the element joins its block,
        and an element with the same indices is overwritten.
        """
        for idir in (idir1, idir2):
            if not idir in (0, 1, 2):
                raise ValueError("Error, the direction must be 0, 1 or 2 (given {})".format(idir))
        for ipert in (ipert1, ipert2):
            if ipert < 0:
                raise ValueError("Error, negative perturbation index {}".format(ipert))

        iq = self._get_block_index(q)
        if iq is None:
            self.q_points.append(np.array(q, dtype = np.float64))
            self.blocks.append({})
            iq = len(self.q_points) - 1

        self.blocks[iq][(int(idir1), int(ipert1), int(idir2), int(ipert2))] = np.complex128(value)

    def add_dynamical_matrix(self, q, matrix):
        """
        Store the full atomic block at q (3 N_atoms x 3 N_atoms).
        matrix[3*i + a, 3*j + b] is the element (a, i, b, j).
        """
        nat = self.N_atoms
        matrix = np.asarray(matrix)
        if matrix.shape != (3*nat, 3*nat):
            raise DimensionMismatch("Error, the dynamical matrix at q = {} has shape {}, expected {}".format(list(q), matrix.shape, (3*nat, 3*nat)))

        for i in range(nat):
            for j in range(nat):
                for a in range(3):
                    for b in range(3):
                        self.add_element(q, a, i, b, j, matrix[3*i + a, 3*j + b])

    def get_qpoints(self):
        """
        Return the stored q points as ndarray(nq, 3).
        """
        if len(self.q_points) == 0:
            return np.zeros((0, 3), dtype = np.float64)
        return np.array(self.q_points)

    def get_block(self, q):
        """
        Return the list of ((idir1, ipert1, idir2, ipert2), value) stored at q.
        """
        iq = self._get_block_index(q)
        if iq is None:
            raise QptNotFound("Block not found for q-pt [{:.8f}, {:.8f}, {:.8f}]".format(*q))
        return list(self.blocks[iq].items())

    def get_atomic_block(self, q):
        """
        GET THE ATOMIC BLOCK
        ====================

        Assemble the atom-atom part of the block at q.

        Results
        -------
            matrix : ndarray(3 N_atoms, 3 N_atoms, dtype = np.complex128)
                matrix[3*i + a, 3*j + b] is the element (a, i, b, j)
        """
        iq = self._get_block_index(q)
        if iq is None:
            raise QptNotFound("Block not found for q-pt [{:.8f}, {:.8f}, {:.8f}]".format(*q))

        nat = self.N_atoms
        block = self.blocks[iq]
        matrix = np.zeros((3*nat, 3*nat), dtype = np.complex128)
        for i in range(nat):
            for j in range(nat):
                for a in range(3):
                    for b in range(3):
                        key = (a, i, b, j)
                        if not key in block:
                            raise DimensionMismatch("Error, element (idir1={}, iatom1={}, idir2={}, iatom2={}) is missing at q = {}".format(a, i, b, j, list(q)))
                        matrix[3*i + a, 3*j + b] = block[key]
        return matrix

    def _get_gamma_block(self):
        iq = self._get_block_index(np.zeros(3))
        if iq is None:
            raise QptNotFound("Error, the Gamma point is not stored: no response function available")
        return self.blocks[iq]

    def get_born_charge(self, iatom):
        """
        BORN EFFECTIVE CHARGE
        =====================

        Z[a, b] is the polarization along a induced by the displacement
        of atom iatom along b.

        Results
        -------
            zeff : ndarray(3,3)
        """
        nat = self.N_atoms
        if iatom < 0 or iatom >= nat:
            raise ValueError("Error, atom index {} out of range (N_atoms = {})".format(iatom, nat))

        block = self._get_gamma_block()
        zeff = np.zeros((3,3), dtype = np.float64)
        for a in range(3):
            for b in range(3):
                key = (a, nat + 1, b, iatom)
                if not key in block:
                    raise MissingResponse("Error, the effective charge of atom {} is missing the element (idir1={}, idir2={}). Is the calculation polar?".format(iatom, a, b))
                zeff[a, b] = np.real(block[key]) / (2 * np.pi)

        if self.zion is not None:
            zeff += np.eye(3) * self.zion[iatom]
        return zeff

    def get_dielectric_tensor(self):
        """
        Return the electronic dielectric tensor (3x3).
        """
        nat = self.N_atoms
        block = self._get_gamma_block()
        volume = self.structure.get_volume() * A_TO_BOHR**3

        eps = np.eye(3, dtype = np.float64)
        for a in range(3):
            for b in range(3):
                key = (a, nat + 1, b, nat + 1)
                if not key in block:
                    raise MissingResponse("Error, the dielectric tensor is missing the element (idir1={}, idir2={}).".format(a, b))
                eps[a, b] -= np.real(block[key]) / (np.pi * volume)
        return eps

    def set_born_charge(self, iatom, zeff):
        """
        Store the Born effective charge of iatom (the inverse of get_born_charge).
        """
        nat = self.N_atoms
        zeff = np.array(zeff, dtype = np.float64)
        if self.zion is not None:
            zeff -= np.eye(3) * self.zion[iatom]
        for a in range(3):
            for b in range(3):
                self.add_element(np.zeros(3), a, nat + 1, b, iatom, zeff[a, b] * 2 * np.pi)

    def set_dielectric_tensor(self, eps):
        """
        Store the electronic dielectric tensor (the inverse of get_dielectric_tensor).
        """
        nat = self.N_atoms
        volume = self.structure.get_volume() * A_TO_BOHR**3
        value = -(np.array(eps, dtype = np.float64) - np.eye(3)) * np.pi * volume
        for a in range(3):
            for b in range(3):
                self.add_element(np.zeros(3), a, nat + 1, b, nat + 1, value[a, b])

    def info(self):
        """
        Return a summary of the stored q points.
        """
        lines = [" ** DDB Information ** ", "-> {} qpt found.".format(len(self.q_points))]
        for q, block in zip(self.q_points, self.blocks):
            lines.append("")
            lines.append("Q-pt: {:24.14e}{:24.14e}{:24.14e}".format(*q))
            lines.append("  # elements: {}".format(len(block)))
        return "\n".join(lines)

    def generate_from_supercell_fc(self, supercell, fc_supercell, qpoints, itau = None, verbose = False):
        r"""
        FORCE CONSTANTS FROM THE SUPERCELL
        ==================================

        Fourier transform the real space force constants of a supercell
        on the given commensurate q points:

        .. math::

            C_{ia,jb}(q) = \frac{1}{N} \sum_{R_i R_j} \Phi(i R_i a; j R_j b) e^{2\pi i q\cdot(R_j - R_i)}

        The store must have the unit cell structure attached.

        Parameters
        ----------
            supercell : Structure.Structure
                The supercell (its atoms must be replicas of the unit cell ones).
            fc_supercell : ndarray(3 nat_sc, 3 nat_sc)
                The real space force constants (Ha/bohr^2).
            qpoints : ndarray(nq, 3)
                The q points (crystal coordinates of the unit cell reciprocal lattice).
            itau : ndarray(nat_sc)
                The index of the unit cell atom of each supercell atom.
                If None it is computed from the positions.
        """
        unit_cell = self.structure
        nat = unit_cell.N_atoms
        nat_sc = supercell.N_atoms
        n_cells = nat_sc // nat

        fc_supercell = np.asarray(fc_supercell)
        if fc_supercell.shape != (3*nat_sc, 3*nat_sc) or n_cells * nat != nat_sc:
            raise DimensionMismatch("Error, the supercell force constants ({}) do not match {} atoms in {} cells".format(fc_supercell.shape, nat, n_cells))

        if itau is None:
            itau = get_itau(supercell, unit_cell)

        # The lattice vector of each atom in crystal coordinates
        R_cryst = Methods.cart_to_cryst(unit_cell.unit_cell, supercell.coords - unit_cell.coords[itau, :])
        R_cryst = np.rint(R_cryst)

        projector = np.zeros((nat, nat_sc), dtype = np.float64)
        projector[itau, np.arange(nat_sc)] = 1

        fc4 = fc_supercell.reshape((nat_sc, 3, nat_sc, 3))
        for q in np.asarray(qpoints, dtype = np.float64).reshape((-1, 3)):
            phase = np.exp(2j * np.pi * R_cryst.dot(q))
            weighted = np.einsum("i, iajb, j -> iajb", np.conj(phase), fc4, phase)
            dynq = np.einsum("ki, iajb, lj -> kalb", projector, weighted, projector) / n_cells

            if verbose:
                Settings.ParallelPrint("Fourier transform of the force constants at q = {}".format(list(q)))

            self.add_dynamical_matrix(q, dynq.reshape((3*nat, 3*nat)))


def get_itau(supercell, unit_cell, thr = 1e-4):
    """
    GET ITAU
    ========

    For each atom of the supercell returns the index of the corresponding
    atom in the unit cell (python indexing).
    Raises ValueError if an atom is not a replica of any atom of the unit cell.
    """
    itau = np.zeros(supercell.N_atoms, dtype = int)
    uc_cryst = Methods.cart_to_cryst(unit_cell.unit_cell, unit_cell.coords)
    sc_cryst = Methods.cart_to_cryst(unit_cell.unit_cell, supercell.coords)

    for i in range(supercell.N_atoms):
        delta = sc_cryst[i, :] - uc_cryst
        delta -= np.rint(delta)
        dist = np.linalg.norm(Methods.cryst_to_cart(unit_cell.unit_cell, delta), axis = 1)
        j = np.argmin(dist)
        if dist[j] > thr:
            raise ValueError("Error, the supercell atom {} ({}) is not a replica of any unit cell atom (distance {:.3e} A)".format(i, supercell.atoms[i], dist[j]))
        itau[i] = j
    return itau


def get_spring_model_fc(supercell, cutoff, spring, verbose = False):
    r"""
    SPRING MODEL
    ============

    Build the real space force constants of a central force model:
    each pair of atoms closer than cutoff is connected by a spring of constant k.

    .. math::

        \Phi_{ia,jb} = - k \hat r_a \hat r_b \qquad \Phi_{ia,ib} = - \sum_{j\neq i} \Phi_{ia,jb}

    All the periodic images closer than cutoff are included.

    Parameters
    ----------
        supercell : Structure.Structure
            The structure (with unit cell).
        cutoff : float
            The interaction range (Angstrom).
        spring : float or callable
            The spring constant in Ha/bohr^2.
            If callable, it is called as spring(atom_i, atom_j, distance) with the
            chemical labels and the distance in Angstrom.

    Results
    -------
        fc : ndarray(3 nat, 3 nat)
            The force constants (Ha/bohr^2), they satisfy the acoustic sum rule.
    """
    nat = supercell.N_atoms
    fc = np.zeros((3*nat, 3*nat), dtype = np.float64)

    shifts = np.array([[x, y, z] for x in range(-1, 2) for y in range(-1, 2) for z in range(-1, 2)], dtype = np.float64)
    shifts_cart = shifts.dot(supercell.unit_cell)

    # The images must be enough to cover the cutoff sphere
    heights = supercell.get_volume() / np.linalg.norm(np.cross(supercell.unit_cell[[1, 2, 0], :], supercell.unit_cell[[2, 0, 1], :]), axis = 1)
    if cutoff > np.min(heights):
        warnings.warn("Warning, the cutoff {} A is larger than the supercell height {} A, some interactions are missing.".format(cutoff, np.min(heights)))

    n_springs = 0
    for i in range(nat):
        for j in range(nat):
            r_vectors = supercell.coords[j, :] + shifts_cart - supercell.coords[i, :]
            distances = np.linalg.norm(r_vectors, axis = 1)
            for r_vec, d in zip(r_vectors, distances):
                if d < 1e-8 or d > cutoff:
                    continue

                if callable(spring):
                    k = spring(supercell.atoms[i], supercell.atoms[j], d)
                else:
                    k = spring

                r_hat = r_vec / d
                phi = k * np.outer(r_hat, r_hat)
                fc[3*i: 3*i+3, 3*j: 3*j+3] -= phi
                fc[3*i: 3*i+3, 3*i: 3*i+3] += phi
                n_springs += 1

    if verbose:
        Settings.ParallelPrint("Spring model: {} springs within {} A".format(n_springs // 2, cutoff))

    return fc
