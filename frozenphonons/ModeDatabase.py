# -*- coding: utf-8 -*-

"""
The database of the phonon modes.

For each q point it keeps the energies and the eigen displacements of all
the modes. Condensed selections (the modes frozen into a structure) are plain
dictionaries

    {(qx, qy, qz) : [Mode, Mode, ...]}

that can be built with add_to_selection.
"""

import numpy as np
import warnings

import frozenphonons.Methods as Methods
import frozenphonons.Settings as Settings
from frozenphonons.Phonons import PhononSolver
from frozenphonons.Errors import QptNotFound, ModeNotFound, ASRUncorrectable, DimensionMismatch, IncompatibleMerge


__all__ = ["Mode", "ModeDatabase", "add_to_selection", "get_selection_qpoints"]


class Mode(object):
    """
    A mode frozen into a structure.

    Parameters
    ----------
        index : int
            The index of the mode at its q point.
        amplitude : float
            The amplitude that multiplies the eigen displacement.
        energy : float
            The energy of the mode (Ha), negative for imaginary frequencies.
        phase : float
            The phase (radians).
    """
    def __init__(self, index, amplitude = 0., energy = 0., phase = 0.):
        self.index = int(index)
        self.amplitude = amplitude
        self.energy = energy
        self.phase = phase

    def __eq__(self, other):
        if isinstance(other, Mode):
            return self.index == other.index
        return NotImplemented

    def __hash__(self):
        return hash(self.index)

    def __repr__(self):
        return "Mode(index={}, amplitude={}, energy={}, phase={})".format(self.index, self.amplitude, self.energy, self.phase)


def add_to_selection(selection, q, mode, thr = Methods.__EPSILON_Q__):
    """
    Add mode to the selection at the q point q.

    If a key of the selection is within thr from q the mode joins that key.
    A mode with the same index already present at that q point is replaced.

    Results
    -------
        key : tuple
            The key of the selection that received the mode.
    """
    key = None
    for k in selection.keys():
        if Methods.same_qpoint(k, q, thr):
            key = k
            break

    if key is None:
        key = tuple(float(x) for x in q)
        selection[key] = []

    modes = selection[key]
    if mode in modes:
        modes[modes.index(mode)] = mode
    else:
        modes.append(mode)
    return key


def get_selection_qpoints(selection):
    """
    Return the q points of the selection as ndarray(nq, 3).
    """
    return np.array([list(k) for k in selection.keys()], dtype = np.float64).reshape((-1, 3))


class ModeDatabase(object):
    """
    MODE DATABASE
    =============

    Attributes
    ----------
        N_atoms : int
            Number of atoms in the unit cell.
        n_modes : int
            Number of modes per q point (3 N_atoms).
        q_points : ndarray(nq, 3)
        energies : ndarray(nq, n_modes)
            The energies (Ha).
        modes : ndarray(nq, n_modes, 3 N_atoms)
            modes[iq, i, :] is the eigen displacement of mode i.
        selected : int
            The index of the selected q point (None if nothing is selected).
    """

    def __init__(self, N_atoms = 0):
        self.N_atoms = N_atoms
        self.n_modes = 3 * N_atoms
        self.q_points = np.zeros((0, 3), dtype = np.float64)
        self.energies = np.zeros((0, self.n_modes), dtype = np.float64)
        self.modes = np.zeros((0, self.n_modes, 3*N_atoms), dtype = np.complex128)
        self.selected = None

    @property
    def nq(self):
        return len(self.q_points)

    def compute_from_store(self, store, asr = True, verbose = False):
        """
        COMPUTE THE MODES
        =================

        Diagonalize the dynamical matrix at every q point of the store.
        If the acoustic sum rule cannot be imposed a warning is raised
        and the modes are computed without the correction.

        Parameters
        ----------
            store : ForceConstants.ForceConstantStore
                The force constants.
            asr : bool
                If True, impose the acoustic sum rule.
            verbose : bool
                Print the frequencies.
        """
        solver = PhononSolver(verbose = verbose)
        if asr:
            try:
                solver.compute_asr(store)
            except ASRUncorrectable as e:
                warnings.warn("Warning, the acoustic sum rule is not imposed: {}".format(e))

        q_points = store.get_qpoints()
        if len(q_points) == 0:
            warnings.warn("Warning, the force constant store has no q point.")

        nat = store.N_atoms
        energies = np.zeros((len(q_points), 3*nat), dtype = np.float64)
        modes = np.zeros((len(q_points), 3*nat, 3*nat), dtype = np.complex128)
        for iq, q in enumerate(q_points):
            try:
                energies[iq, :], modes[iq, :, :] = solver.solve(q, store)
            except DimensionMismatch as e:
                raise DimensionMismatch("Error while computing the modes at q = {}: {}".format(list(q), e)) from e

        self.N_atoms = nat
        self.n_modes = 3 * nat
        self.q_points = q_points
        self.energies = energies
        self.modes = modes
        self.selected = None

        if verbose:
            Settings.ParallelPrint("Computed the phonon modes at {} q points".format(len(q_points)))

    def read_external(self, q_points, energies, modes):
        """
        Load modes computed elsewhere.

        Parameters
        ----------
            q_points : ndarray(nq, 3)
            energies : ndarray(nq, n_modes)
            modes : ndarray(nq, n_modes, 3 N_atoms)
        """
        q_points = np.array(q_points, dtype = np.float64).reshape((-1, 3))
        energies = np.array(energies, dtype = np.float64)
        modes = np.array(modes, dtype = np.complex128)

        nq = len(q_points)
        if modes.ndim != 3 or modes.shape[0] != nq or modes.shape[2] % 3 != 0:
            raise DimensionMismatch("Error, the modes must have shape (nq, n_modes, 3 N_atoms), given {} with {} q points".format(modes.shape, nq))
        if energies.shape != modes.shape[:2]:
            raise DimensionMismatch("Error, the energies have shape {}, expected {}".format(energies.shape, modes.shape[:2]))

        self.N_atoms = modes.shape[2] // 3
        self.n_modes = modes.shape[1]
        self.q_points = q_points
        self.energies = energies
        self.modes = modes
        self.selected = None

    def has_qpoint(self, q):
        return Methods.find_qpoint(self.q_points, q) is not None

    def get_qpoint_index(self, q):
        iq = Methods.find_qpoint(self.q_points, q)
        if iq is None:
            raise QptNotFound("Q-point [{:.8f}, {:.8f}, {:.8f}] not found in the mode database".format(*q))
        return iq

    def select_qpoint(self, q):
        """
        Select the q point q for the get_selected_* methods and return its index.
        """
        self.selected = self.get_qpoint_index(q)
        return self.selected

    def _check_indices(self, iq, imode):
        if iq is None or iq < 0 or iq >= self.nq:
            raise QptNotFound("Q-point index {} out of range ({} q points stored)".format(iq, self.nq))
        if imode < 0 or imode >= self.n_modes:
            raise ModeNotFound("Mode {} out of range at q = {} ({} modes)".format(imode, list(self.q_points[iq]), self.n_modes))

    def get_mode(self, iq, imode):
        """
        Return the eigen displacement (3 N_atoms complex) of the mode imode at the q point iq.
        """
        self._check_indices(iq, imode)
        return self.modes[iq, imode, :]

    def get_energy(self, iq, imode):
        self._check_indices(iq, imode)
        return self.energies[iq, imode]

    def get_selected_mode(self, imode):
        if self.selected is None:
            raise QptNotFound("Error, no q point selected")
        return self.get_mode(self.selected, imode)

    def get_selected_energy(self, imode):
        if self.selected is None:
            raise QptNotFound("Error, no q point selected")
        return self.get_energy(self.selected, imode)

    def merge(self, other):
        """
        MERGE TWO DATABASES
        ===================

        Add the q points of other that are not already present.
        The stored q points are kept as they are.
        """
        if self.nq == 0:
            self.read_external(other.q_points, other.energies, other.modes)
            return self

        if other.N_atoms != self.N_atoms or other.n_modes != self.n_modes:
            raise IncompatibleMerge("Error, cannot merge a database with {} atoms and {} modes into one with {} atoms and {} modes".format(other.N_atoms, other.n_modes, self.N_atoms, self.n_modes))

        new_q = [iq for iq in range(other.nq) if not self.has_qpoint(other.q_points[iq])]
        if len(new_q):
            self.q_points = np.concatenate((self.q_points, other.q_points[new_q, :]))
            self.energies = np.concatenate((self.energies, other.energies[new_q, :]))
            self.modes = np.concatenate((self.modes, other.modes[new_q, :, :]))
        return self

    def __iadd__(self, other):
        return self.merge(other)

    def get_gamma_selection(self, amplitude = 0., skip_acoustic = True, thr = 1e-6):
        """
        Return a selection with all the modes at Gamma.
        The acoustic modes (|energy| < thr) are excluded if skip_acoustic.
        """
        iq = self.get_qpoint_index(np.zeros(3))
        selection = {}
        for imode in range(self.n_modes):
            energy = self.energies[iq, imode]
            if skip_acoustic and abs(energy) < thr:
                continue
            add_to_selection(selection, np.zeros(3), Mode(imode, amplitude, energy))
        return selection

    def get_all_selection(self, amplitude = 0.):
        """
        Return a selection with all the modes of all the q points.
        """
        selection = {}
        for iq in range(self.nq):
            for imode in range(self.n_modes):
                add_to_selection(selection, self.q_points[iq], Mode(imode, amplitude, self.energies[iq, imode]))
        return selection
