# -*- coding: utf-8 -*-

import numpy as np
import warnings

import frozenphonons.Methods as Methods
import frozenphonons.Settings as Settings
from frozenphonons.Errors import QptNotFound, DimensionMismatch, ASRUncorrectable
from frozenphonons.Units import AMU_TO_EMASS, HA_TO_CM


__all__ = ["PhononSolver"]

# Components of the eigen displacements smaller than this are set to zero
__ZERO_COMPONENT__ = 1e-7
__EPSILON__ = 1e-6


class PhononSolver(object):
    """
    PHONON SOLVER
    =============

    Diagonalize the dynamical matrix of each q point stored in a ForceConstantStore.
    No interpolation is performed: the block of each q point is already the
    Fourier transform of the force constants.

    Parameters
    ----------
        verbose : bool
            If True, print the frequencies of each diagonalized q point.
    """

    def __init__(self, verbose = False):
        self.verbose = verbose
        # asr[3*i + a, b] = sum_j Phi_Gamma[3*i + a, 3*j + b]
        self.asr = None

    def _get_raw_block(self, q, store):
        """
        Return the atomic block at q in Ha/bohr^2 (not mass normalized).
        """
        matrix = store.get_atomic_block(q)
        if store.is_normalized():
            masses = np.repeat(store.structure.get_masses_array(), 3) * AMU_TO_EMASS
            matrix *= np.sqrt(np.outer(masses, masses))
        return matrix

    def compute_asr(self, store):
        """
        ACOUSTIC SUM RULE
        =================

        Compute the correction that cancels the force acting on each atom
        when the whole crystal is rigidly translated.
        It is evaluated from the Gamma block and subtracted from the diagonal
        blocks of every q point.

        Results
        -------
            asr : ndarray(3 N_atoms, 3)
        """
        nat = store.N_atoms
        try:
            gamma = self._get_raw_block(np.zeros(3), store)
        except QptNotFound as e:
            raise ASRUncorrectable("Error, the acoustic sum rule needs the Gamma point") from e
        except DimensionMismatch as e:
            raise ASRUncorrectable("Error, the Gamma block is incomplete, cannot impose the acoustic sum rule") from e

        asr = np.einsum("iajb -> iab", gamma.reshape((nat, 3, nat, 3))).reshape((3*nat, 3))
        if not np.all(np.isfinite(asr)):
            raise ASRUncorrectable("Error, the Gamma block contains invalid values")

        self.asr = asr
        return asr

    def apply_asr(self, matrix):
        """
        Subtract the acoustic sum rule correction from the diagonal blocks of matrix.
        """
        if self.asr is None:
            return matrix

        nat = matrix.shape[0] // 3
        if self.asr.shape != (3*nat, 3):
            raise ASRUncorrectable("Error, the correction was computed for {} atoms, the matrix has {}".format(self.asr.shape[0] // 3, nat))

        new_matrix = matrix.copy()
        for i in range(nat):
            new_matrix[3*i: 3*i+3, 3*i: 3*i+3] -= self.asr[3*i: 3*i+3, :]
        return new_matrix

    def solve(self, q, store):
        """
        DIAGONALIZE AT Q
        ================

        Parameters
        ----------
            q : ndarray(3)
                The q point (crystal coordinates).
            store : ForceConstants.ForceConstantStore
                The force constants.

        Results
        -------
            frequencies : ndarray(3 N_atoms)
                The frequencies in Ha, sorted. Imaginary frequencies are negative.
            displacements : ndarray(3 N_atoms, 3 N_atoms, dtype = np.complex128)
                displacements[i, :] is the eigen displacement of the mode i,
                normalized as sum_a m_a |e_a|^2 = 1 (m in amu).
        """
        nat = store.N_atoms
        masses_amu = np.repeat(store.structure.get_masses_array(), 3)
        masses = masses_amu * AMU_TO_EMASS

        try:
            matrix = self.apply_asr(self._get_raw_block(q, store))
        except QptNotFound as e:
            raise QptNotFound("Cannot diagonalize the dynamical matrix at q = {}: {}".format(list(q), e)) from e

        dyn = matrix / np.sqrt(np.outer(masses, masses))
        dyn = 0.5 * (dyn + np.conj(dyn.T))

        # At q points equivalent to -q the matrix can be made real,
        # so that the eigenvectors are real
        if Methods.is_time_reversal_invariant(q) and np.max(np.abs(np.imag(dyn))) < __EPSILON__ * max(np.max(np.abs(dyn)), 1e-30):
            eigvals, pol_vects = np.linalg.eigh(np.real(dyn))
            pol_vects = pol_vects.astype(np.complex128)
        else:
            eigvals, pol_vects = np.linalg.eigh(dyn)

        # Imaginary frequencies are returned as negative
        frequencies = np.sign(eigvals) * np.sqrt(np.abs(eigvals))
        sorting_mask = np.argsort(frequencies)
        frequencies = frequencies[sorting_mask]
        pol_vects = pol_vects[:, sorting_mask]

        displacements = np.zeros((3*nat, 3*nat), dtype = np.complex128)
        for i in range(3*nat):
            disp = pol_vects[:, i] / np.sqrt(masses_amu)
            disp[np.abs(disp) < __ZERO_COMPONENT__] = 0

            norm = np.sqrt(np.sum(masses_amu * np.abs(disp)**2))
            if norm < __EPSILON__:
                warnings.warn("Warning, the mode {} at q = {} has zero norm.".format(i, list(q)))
                continue
            if abs(norm - 1) > __EPSILON__:
                warnings.warn("Warning, normalization of the mode {} at q = {} is {:.8f}".format(i, list(q), norm))
            displacements[i, :] = disp / norm

        if self.verbose:
            Settings.ParallelPrint("q = {:10.6f} {:10.6f} {:10.6f}".format(*q))
            Settings.ParallelPrint("  frequencies [cm-1]: " + " ".join(["{:.4f}".format(w * HA_TO_CM) for w in frequencies]))

        return frequencies, displacements

    def solve_all(self, store):
        """
        Diagonalize every q point of the store.

        Results
        -------
            q_points : ndarray(nq, 3)
            frequencies : ndarray(nq, 3 N_atoms)
            displacements : ndarray(nq, 3 N_atoms, 3 N_atoms)
        """
        q_points = store.get_qpoints()
        nat = store.N_atoms
        frequencies = np.zeros((len(q_points), 3*nat), dtype = np.float64)
        displacements = np.zeros((len(q_points), 3*nat, 3*nat), dtype = np.complex128)

        for iq, q in enumerate(q_points):
            frequencies[iq, :], displacements[iq, :, :] = self.solve(q, store)

        return q_points, frequencies, displacements
