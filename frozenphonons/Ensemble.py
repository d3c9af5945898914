# -*- coding: utf-8 -*-

"""
Generation of ensembles of structures displaced along the phonon modes.

The amplitudes of the modes are drawn according to the harmonic
distribution at the given temperature, so that the ensemble samples the
thermal fluctuations of the crystal. A random strain of the lattice can be
added on top of the displacements.

The building of the trajectory can run in background: build_trajectory
returns a concurrent.futures.Future and the generation can be stopped
with cancel().
"""

import numpy as np
import time
import threading
import warnings
import concurrent.futures

import frozenphonons.Methods as Methods
import frozenphonons.Settings as Settings
from frozenphonons.Structure import Structure
from frozenphonons.Supercell import Supercell
from frozenphonons.ModeDatabase import Mode, add_to_selection
from frozenphonons.Errors import DimensionMismatch
from frozenphonons.Units import KELVIN_TO_HA, AMU_TO_EMASS, BOHR_TO_ANGSTROM


__all__ = ["SeedConfiguration", "StrainSampler", "Trajectory", "EnsembleGenerator",
           "bose_einstein"]

__SEED_TYPES__ = ["none", "time", "random", "user"]
__STATISTICS__ = ["classical", "quantum"]
__RANDOM_TYPES__ = ["normal", "uniform"]
__INSTABLE__ = ["ignore", "absolute", "constant"]

# Modes with smaller energy (Ha) are not displaced (acoustic modes at Gamma)
__EPSILON_ENERGY__ = 1e-6
# Below this temperature (K) no mode is displaced
__EPSILON_T__ = 1e-3


def bose_einstein(energy, temperature):
    """
    Occupation number of a boson of the given energy.
    Both energy and temperature must be in the same units.
    """
    if temperature <= 0:
        return 0.
    return 1. / np.expm1(energy / temperature)


class SeedConfiguration(object):
    """
    How the random number generator of the ensemble is initialized.

    Parameters
    ----------
        seed_type : string
            "none" : always the same default seed (0).
            "time" : the current time.
            "random" : a seed from the operating system entropy.
            "user" : the seed given as argument (reproducible runs).
        seed : int
            The seed for the "user" type.
    """
    def __init__(self, seed_type = "random", seed = 42):
        if not seed_type in __SEED_TYPES__:
            raise ValueError("Error, seed type '{}' not recognized, use one of {}".format(seed_type, __SEED_TYPES__))
        self.seed_type = seed_type
        self.seed = seed

    def get_seed(self):
        if self.seed_type == "none":
            return 0
        elif self.seed_type == "time":
            return time.time_ns()
        elif self.seed_type == "user":
            return self.seed
        return np.random.SeedSequence().entropy

    def get_rng(self):
        """
        Return a new numpy.random.Generator initialized as requested.
        """
        return Settings.get_numpy_rng(self.get_seed())


class StrainSampler(object):
    """
    RANDOM STRAIN
    =============

    Draw random strain tensors made of up to three components:

        isotropic   : delta * I
        tetragonal  : diag(1/sqrt(1+delta) - 1, 1/sqrt(1+delta) - 1, delta)
        shear       : [[0, delta, 0], [delta, 0, 0], [0, 0, delta^2/(1-delta^2)]]

    The tetragonal and the shear components are rotated on a direction
    picked at random among the enabled ones.

    Parameters
    ----------
        bounds : dict
            The keys are "iso_max", "iso_min", "tetra_max", "tetra_min",
            "shear_max", "shear_min". A component is drawn only if its max is given,
            the min defaults to -max.
        tetra_dirs : string
            The enabled directions of the tetragonal strain, e.g. "xz".
            If empty the tetragonal axis is z.
        shear_dirs : list of strings
            The enabled planes of the shear strain among "xy", "xz", "yz".
            If empty the shear plane is xy.
        random_type : string
            "uniform" : uniform between min and max.
            "normal" : gaussian with mean (max + min) / 2 and standard deviation (max - min) / 6.
    """

    def __init__(self, bounds = None, tetra_dirs = "", shear_dirs = (), random_type = "normal"):
        if bounds is None:
            bounds = {}
        if not random_type in __RANDOM_TYPES__:
            raise ValueError("Error, random type '{}' not recognized, use one of {}".format(random_type, __RANDOM_TYPES__))

        allowed = ["iso_max", "iso_min", "tetra_max", "tetra_min", "shear_max", "shear_min"]
        for key in bounds:
            if not key in allowed:
                raise ValueError("Error, strain bound '{}' not recognized, use one of {}".format(key, allowed))

        for d in tetra_dirs:
            if not d in "xyz":
                raise ValueError("Error, tetragonal direction '{}' not recognized".format(d))
        shear_dirs = list(shear_dirs)
        for d in shear_dirs:
            if not d in ["xy", "xz", "yz"]:
                raise ValueError("Error, shear plane '{}' not recognized".format(d))

        self.bounds = dict(bounds)
        self.tetra_dirs = list(tetra_dirs)
        self.shear_dirs = shear_dirs
        self.random_type = random_type

    def get_bounds(self, kind):
        """
        Return (min, max) of the component kind ("iso", "tetra", "shear") or None if disabled.
        """
        key_max = kind + "_max"
        if not key_max in self.bounds:
            return None
        b_max = self.bounds[key_max]
        b_min = self.bounds.get(kind + "_min", -b_max)
        return b_min, b_max

    def is_active(self):
        return any(self.get_bounds(kind) is not None for kind in ["iso", "tetra", "shear"])

    def _draw(self, rng, bounds):
        b_min, b_max = bounds
        if self.random_type == "uniform":
            return rng.uniform(b_min, b_max)
        return rng.normal((b_max + b_min) / 2, (b_max - b_min) / 6)

    @staticmethod
    def get_rotation(direction):
        """
        The permutation matrix that brings z (or the xy plane) on direction.
        """
        if direction in ["x", "yz"]:
            return np.array([[0, 0, 1], [0, 1, 0], [1, 0, 0]], dtype = np.float64)
        elif direction in ["y", "xz"]:
            return np.array([[1, 0, 0], [0, 0, 1], [0, 1, 0]], dtype = np.float64)
        return np.eye(3)

    def _rotate(self, rng, strain, directions):
        if len(directions) == 0:
            return strain
        rot = self.get_rotation(directions[rng.integers(len(directions))])
        return rot.dot(strain.dot(rot))

    def get_strain_matrix(self, rng, iso = 0., tetra = 0., shear = 0.):
        """
        Combine the three components in a strain tensor.
        """
        strain = np.zeros((3,3), dtype = np.float64)
        if abs(iso) > 1e-10:
            strain += np.eye(3) * iso
        if abs(tetra) > 1e-10:
            value = 1. / np.sqrt(1 + tetra) - 1
            strain += self._rotate(rng, np.diag([value, value, tetra]), self.tetra_dirs)
        if abs(shear) > 1e-10:
            strain_shear = np.array([[0, shear, 0], [shear, 0, 0], [0, 0, shear**2 / (1 - shear**2)]], dtype = np.float64)
            strain += self._rotate(rng, strain_shear, self.shear_dirs)
        return strain

    def sample(self, rng):
        """
        Draw one strain tensor.
        """
        amplitudes = {}
        for kind in ["iso", "tetra", "shear"]:
            bounds = self.get_bounds(kind)
            amplitudes[kind] = 0. if bounds is None else self._draw(rng, bounds)
        return self.get_strain_matrix(rng, **amplitudes)


class Trajectory(object):
    """
    TRAJECTORY
    ==========

    A buffer of ntime frames of the same atoms, allocated once.
    The frames are filled by index; n_filled counts the frames written so far.

    Attributes
    ----------
        coords : ndarray(ntime, N_atoms, 3)
            Cartesian coordinates (Angstrom).
        unit_cells : ndarray(ntime, 3, 3)
        spins : ndarray(ntime, N_atoms) or None
        selections : list
            The modes frozen in each frame (dict q point -> list of Mode).
        strains : ndarray(ntime, 3, 3)
            The strain applied to each frame.
    """
    def __init__(self, ntime, structure):
        self.ntime = ntime
        self.N_atoms = structure.N_atoms
        self.atoms = [atm for atm in structure.atoms]
        self.masses = dict(structure.masses)
        self.coords = np.zeros((ntime, self.N_atoms, 3), dtype = np.float64)
        self.unit_cells = np.zeros((ntime, 3, 3), dtype = np.float64)
        self.spins = None
        if structure.spins is not None:
            self.spins = np.zeros((ntime, self.N_atoms), dtype = np.float64)
        self.selections = [{} for i in range(ntime)]
        self.strains = np.zeros((ntime, 3, 3), dtype = np.float64)
        self.n_filled = 0

    @classmethod
    def from_structures(cls, structures):
        """
        Build a trajectory from a list of Structure (or ase.Atoms).
        """
        structures = list(structures)
        if len(structures) == 0:
            raise ValueError("Error, the list of structures is empty.")

        frames = []
        for s in structures:
            if not isinstance(s, Structure):
                atoms = s
                s = Structure()
                s.generate_from_ase_atoms(atoms)
            frames.append(s)

        traj = cls(len(frames), frames[0])
        for i, s in enumerate(frames):
            traj.set_frame(i, s)
        return traj

    def __len__(self):
        return self.n_filled

    def set_frame(self, itime, structure, selection = None, strain = None):
        if itime < 0 or itime >= self.ntime:
            raise IndexError("Error, frame {} out of range ({} frames)".format(itime, self.ntime))
        if structure.N_atoms != self.N_atoms:
            raise DimensionMismatch("Error, the frame {} has {} atoms, the trajectory {}".format(itime, structure.N_atoms, self.N_atoms))

        self.coords[itime, :, :] = structure.coords
        self.unit_cells[itime, :, :] = structure.unit_cell
        if self.spins is not None and structure.spins is not None:
            self.spins[itime, :] = structure.spins
        if selection is not None:
            self.selections[itime] = selection
        if strain is not None:
            self.strains[itime, :, :] = strain

        if itime >= self.n_filled:
            self.n_filled = itime + 1

    def get_structure(self, itime):
        """
        Return the frame itime as a Structure.
        """
        if itime < 0 or itime >= self.n_filled:
            raise IndexError("Error, frame {} not available ({} frames filled)".format(itime, self.n_filled))
        s = Structure(self.N_atoms)
        s.coords[:,:] = self.coords[itime, :, :]
        s.atoms = [atm for atm in self.atoms]
        s.set_unit_cell(self.unit_cells[itime, :, :])
        s.masses = dict(self.masses)
        if self.spins is not None:
            s.spins = self.spins[itime, :].copy()
        return s

    def get_structures(self):
        return [self.get_structure(i) for i in range(self.n_filled)]

    def get_ase_atoms(self):
        return [s.get_ase_atoms() for s in self.get_structures()]


class EnsembleGenerator(object):
    """
    ENSEMBLE GENERATOR
    ==================

    Parameters
    ----------
        unit_cell : Structure.Structure
            The reference unit cell.
        db : ModeDatabase.ModeDatabase
            The phonon modes of the unit cell.
        seed : SeedConfiguration
            The initialization of the random numbers.
        statistics : string
            "classical" or "quantum" occupation of the modes.
        random_type : string
            "normal" (standard deviation 1/3) or "uniform" (in [-1, 1])
            distribution of the random factor of each amplitude.
        instable : string
            What to do with imaginary frequencies:
            "ignore" the mode is not displaced,
            "absolute" the absolute value of the frequency is used,
            "constant" the mode is displaced by instable_amplitude.
        instable_amplitude : float
            The amplitude of the unstable modes for the "constant" policy.
        verbose : bool
    """

    def __init__(self, unit_cell, db, seed = None, statistics = "classical", random_type = "normal",
                 instable = "absolute", instable_amplitude = 1., verbose = False):
        if db.N_atoms != unit_cell.N_atoms:
            raise DimensionMismatch("Error, the mode database has {} atoms, the unit cell {}".format(db.N_atoms, unit_cell.N_atoms))
        if not statistics in __STATISTICS__:
            raise ValueError("Error, statistics '{}' not recognized, use one of {}".format(statistics, __STATISTICS__))
        if not random_type in __RANDOM_TYPES__:
            raise ValueError("Error, random type '{}' not recognized, use one of {}".format(random_type, __RANDOM_TYPES__))
        if not instable in __INSTABLE__:
            raise ValueError("Error, instable policy '{}' not recognized, use one of {}".format(instable, __INSTABLE__))

        if seed is None:
            seed = SeedConfiguration()

        self.unit_cell = unit_cell
        self.db = db
        self.seed = seed
        self.statistics = statistics
        self.random_type = random_type
        self.instable = instable
        self.instable_amplitude = instable_amplitude
        self.verbose = verbose

        self.rng = seed.get_rng()
        self.state = "idle"
        self.trajectory = None

        self._cancel_event = threading.Event()
        self._executor = None

    def reset_rng(self):
        """
        Initialize again the random numbers from the seed configuration.
        """
        self.rng = self.seed.get_rng()

    def _random_factor(self):
        if self.random_type == "uniform":
            return self.rng.uniform(-1., 1.)
        return self.rng.normal(0., 1. / 3.)

    def get_sigma(self, energy, temperature):
        """
        The amplitude of a mode of the given energy (Ha) before the random factor.
        temperature is in K.
        """
        T_Ha = temperature * KELVIN_TO_HA
        if self.statistics == "classical":
            X = T_Ha / energy
        else:
            X = bose_einstein(energy, T_Ha) + 0.5
        return np.sqrt(X / (energy * AMU_TO_EMASS)) * BOHR_TO_ANGSTROM

    def thermal_amplitudes(self, temperature, ntime, dim):
        """
        THERMAL AMPLITUDES
        ==================

        Draw the amplitudes of the modes of each q point commensurate with the
        supercell (only the half of the grid with non negative indices).

        Parameters
        ----------
            temperature : float
                The temperature (K).
            ntime : int
                The number of frames.
            dim : list of 3 int
                The supercell.

        Results
        -------
            selections : list of dict
                For each frame, q point -> list of Mode.
        """
        selections = [{} for i in range(ntime)]
        if temperature < __EPSILON_T__:
            return selections

        q_points = []
        for q in Methods.get_half_qpoint_grid(dim):
            if not self.db.has_qpoint(q):
                warnings.warn("Warning, q point {} is not in the mode database, ignored.".format(list(q)))
                continue
            q_points.append((q, self.db.get_qpoint_index(q)))

        if self.verbose:
            Settings.ParallelPrint("Q-pts list:")
            for q, iq in q_points:
                Settings.ParallelPrint("  {:10.6f} {:10.6f} {:10.6f}".format(*q))

        for itime in range(ntime):
            selection = selections[itime]
            for q, iq in q_points:
                modes = []
                for imode in range(self.db.n_modes):
                    energy = self.db.get_energy(iq, imode)
                    if energy < 0:
                        if self.instable == "ignore":
                            continue
                        elif self.instable == "constant":
                            modes.append(Mode(imode, self.instable_amplitude, energy))
                            continue
                        energy = -energy
                    if energy < __EPSILON_ENERGY__:
                        continue

                    amplitude = self.get_sigma(energy, temperature) * self._random_factor()
                    modes.append(Mode(imode, amplitude, self.db.get_energy(iq, imode)))
                selection[tuple(float(x) for x in q)] = modes
        return selections

    def get_strain_sampler(self, strain_bounds):
        if strain_bounds is None:
            return None
        if isinstance(strain_bounds, StrainSampler):
            return strain_bounds
        return StrainSampler(strain_bounds, random_type = self.random_type)

    def sample_strains(self, strain_bounds, ntime):
        """
        Draw ntime strain tensors (zero if strain_bounds is None).
        strain_bounds is a dict of bounds (see StrainSampler) or a StrainSampler.
        """
        strains = np.zeros((ntime, 3, 3), dtype = np.float64)
        sampler = self.get_strain_sampler(strain_bounds)
        if sampler is None or not sampler.is_active():
            return strains
        for itime in range(ntime):
            strains[itime, :, :] = sampler.sample(self.rng)
        return strains

    def _check_not_running(self):
        if self.state in ["sampling", "building"]:
            raise RuntimeError("Error, a trajectory is already being generated (state '{}')".format(self.state))

    def cancel(self):
        """
        Stop the building of the trajectory after the current frame.
        The frames already built are kept (see Trajectory.n_filled).
        """
        self._cancel_event.set()

    def is_cancelled(self):
        return self._cancel_event.is_set()

    def shutdown(self, wait = True):
        """
        Release the background worker.
        """
        if self._executor is not None:
            self._executor.shutdown(wait = wait)
            self._executor = None

    def _build_frames(self, get_frame, trajectory, selections, strains, callback):
        """
        Fill the trajectory: get_frame(itime) returns the undistorted frame itime,
        the strain and then the modes are applied on it.
        """
        try:
            for itime in range(trajectory.ntime):
                if self._cancel_event.is_set():
                    self.state = "cancelled"
                    break

                frame = get_frame(itime)
                # Strain first, then the displacements: x = (1 + eta)(R + tau) + u
                frame.apply_strain(strains[itime])
                for q, modes in selections[itime].items():
                    for mode in modes:
                        frame.make_displacement(q, self.db, mode.index, mode.amplitude, mode.phase)

                trajectory.set_frame(itime, frame, selections[itime], strains[itime])

                if self.verbose:
                    Settings.ParallelPrint("Frame {} / {} built".format(itime + 1, trajectory.ntime))
            else:
                self.state = "done"
        except Exception:
            self.state = "idle"
            raise

        if callback is not None:
            callback(trajectory)
        return trajectory

    def _run(self, get_frame, reference, selections, strains, background, callback):
        trajectory = Trajectory(len(selections), reference)
        self.trajectory = trajectory

        self.state = "building"
        if background:
            if self._executor is None:
                self._executor = concurrent.futures.ThreadPoolExecutor(max_workers = 1)
            return self._executor.submit(self._build_frames, get_frame, trajectory, selections, strains, callback)
        return self._build_frames(get_frame, trajectory, selections, strains, callback)

    def _start(self, ntime):
        if ntime < 1:
            raise ValueError("Error, the number of frames must be positive (given {})".format(ntime))
        self._check_not_running()
        self._cancel_event.clear()
        self.state = "sampling"

    def build_trajectory(self, temperature, dim, strain_bounds = None, ntime = 1, background = False, callback = None):
        """
        BUILD A THERMAL TRAJECTORY
        ==========================

        Each frame is the reference supercell, strained and displaced along
        the phonon modes with random thermal amplitudes.

        Parameters
        ----------
            temperature : float
                The temperature (K).
            dim : list of 3 int
                The supercell.
            strain_bounds : dict or StrainSampler
                The random strain (None for no strain).
            ntime : int
                The number of frames.
            background : bool
                If True the frames are built by a background worker and
                a concurrent.futures.Future is returned.
            callback : callable
                Called with the trajectory when the building ends (also if cancelled).

        Results
        -------
            trajectory : Trajectory (or Future resolving to it)
        """
        self._start(ntime)
        try:
            reference = Supercell(self.unit_cell, dim)
            selections = self.thermal_amplitudes(temperature, ntime, dim)
            strains = self.sample_strains(strain_bounds, ntime)
        except Exception:
            self.state = "idle"
            raise

        return self._run(lambda itime: reference.copy(), reference, selections, strains, background, callback)

    def add_noise(self, frames, temperature, strain_bounds = None, background = False, callback = None):
        """
        ADD THERMAL NOISE
        =================

        Add random thermal displacements (and strain) to an existing trajectory.
        The first frame is mapped on the unit cell, the others share its mapping.

        Parameters
        ----------
            frames : Trajectory or list of Structure
            temperature : float
                The temperature (K).
            strain_bounds : dict or StrainSampler

        Results
        -------
            trajectory : a new Trajectory (or a Future resolving to it)
        """
        if not isinstance(frames, Trajectory):
            frames = Trajectory.from_structures(frames)
        structures = frames.get_structures()

        self._start(len(structures))
        try:
            first = Supercell()
            first.set_structure(structures[0])
            first.find_reference(self.unit_cell, verbose = self.verbose)

            selections = self.thermal_amplitudes(temperature, len(structures), first.dim)
            strains = self.sample_strains(strain_bounds, len(structures))
        except Exception:
            self.state = "idle"
            raise

        def get_frame(itime):
            frame = Supercell()
            frame.set_structure(structures[itime])
            frame.set_reference(first)
            return frame

        return self._run(get_frame, first, selections, strains, background, callback)

    def animate_modes(self, selection, ntime, background = False, callback = None):
        """
        ANIMATE THE MODES
        =================

        Build ntime frames where the modes of the selection oscillate:
        in the frame itime the phase of each mode is increased by itime pi / ntime.
        The supercell is the smallest one commensurate with the selected q points.

        Results
        -------
            trajectory : Trajectory (or Future resolving to it)
        """
        if len(selection) == 0:
            ntime = 1
        self._start(ntime)

        q_min = np.ones(3, dtype = np.float64)
        for q in selection.keys():
            for i in range(3):
                if abs(q[i]) > Methods.__EPSILON_Q__ and abs(q[i]) < abs(q_min[i]):
                    q_min[i] = abs(q[i])

        try:
            reference = Supercell(self.unit_cell, qpoint = q_min)
        except Exception:
            self.state = "idle"
            raise

        dtheta = np.pi / ntime
        selections = []
        for itime in range(ntime):
            frame_selection = {}
            for q, modes in selection.items():
                for mode in modes:
                    add_to_selection(frame_selection, q, Mode(mode.index, mode.amplitude, mode.energy, mode.phase + itime * dtheta))
            selections.append(frame_selection)
        strains = np.zeros((ntime, 3, 3), dtype = np.float64)

        return self._run(lambda itime: reference.copy(), reference, selections, strains, background, callback)

    def decompose(self, frames, selection, normalization = "none", modulus = True, rescale = False):
        """
        DECOMPOSE A TRAJECTORY
        ======================

        Project each frame on the modes of the selection and extract its strain.
        The first frame is mapped on the unit cell, the others share its mapping.
        The frames are distributed with Settings.GoParallel.

        Parameters
        ----------
            frames : Trajectory or list of Structure
            selection : dict
                q point -> list of Mode
            normalization, modulus, rescale :
                See Supercell.project_on_modes

        Results
        -------
            amplitudes : ndarray(n_frames, n_selected_modes)
            strains : ndarray(n_frames, 3, 3)
        """
        if not isinstance(frames, Trajectory):
            frames = Trajectory.from_structures(frames)
        structures = frames.get_structures()

        first = Supercell()
        first.set_structure(structures[0])
        first.find_reference(self.unit_cell, verbose = self.verbose)

        def project(itime):
            frame = Supercell()
            frame.set_structure(structures[itime])
            frame.set_reference(first)
            amplitudes = frame.project_on_modes(self.unit_cell, self.db, selection, normalization, modulus, rescale)
            return amplitudes, frame.get_strain(self.unit_cell)

        results = Settings.GoParallel(project, list(range(len(structures))))

        n_modes = sum(len(modes) for modes in selection.values())
        amplitudes = np.zeros((len(structures), n_modes), dtype = np.float64)
        strains = np.zeros((len(structures), 3, 3), dtype = np.float64)
        for itime, (amp, strain) in enumerate(results):
            amplitudes[itime, :] = amp
            strains[itime, :, :] = strain
        return amplitudes, strains
