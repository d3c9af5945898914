# -*- coding: utf-8 -*-

import numpy as np
import warnings

try:
    import scipy.fft
    __FFT__ = True
except ImportError:
    __FFT__ = False

import frozenphonons.Methods as Methods
import frozenphonons.Settings as Settings
from frozenphonons.Structure import Structure
from frozenphonons.Errors import QptNotFound, MappingFailure, FFTUnavailable, DimensionMismatch


__all__ = ["Supercell"]

__NORMALIZATIONS__ = ["none", "qpoint", "all"]
__EPSILON__ = 1e-10


class Supercell(Structure):
    """
    SUPERCELL
    =========

    A N1 x N2 x N3 supercell of a reference unit cell.

    Each atom is mapped on an atom of the reference unit cell (base_atom)
    and on the integer lattice translation of the cell it belongs to (cell_coords).
    The mapping is what allows to freeze phonons into the supercell and to
    project a distorted supercell back on the phonon modes.

    Parameters
    ----------
        unit_cell_structure : Structure.Structure
            The unit cell to be replicated.
        dim : list of 3 int
            The size of the supercell.
        qpoint : ndarray(3)
            Alternative to dim: build the smallest supercell commensurate with
            qpoint (each nonzero component must be 1/n).
    """

    def __init__(self, unit_cell_structure = None, dim = None, qpoint = None):
        Structure.__init__(self)

        self.dim = np.ones(3, dtype = int)
        self.base_atom = None
        self.cell_coords = None
        self.reference = None

        if unit_cell_structure is None:
            if dim is not None or qpoint is not None:
                raise ValueError("Error, to build a supercell the unit cell structure is required.")
            return

        if qpoint is not None:
            if dim is not None:
                raise ValueError("Error, specify either dim or qpoint, not both.")
            dim = Methods.get_commensurate_dim(qpoint)
        if dim is None:
            dim = [1, 1, 1]

        supercell, itau, cells = unit_cell_structure.generate_supercell(dim, get_itau = True)
        self.set_structure(supercell)
        self.dim = np.array(dim, dtype = int)
        self.base_atom = itau
        self.cell_coords = cells
        self.reference = unit_cell_structure.copy()

    def set_structure(self, structure):
        """
        Copy the atoms and the cell of structure.
        The mapping on the reference is removed.
        """
        self.N_atoms = structure.N_atoms
        self.coords = structure.coords.copy()
        self.atoms = [atm for atm in structure.atoms]
        self.unit_cell = structure.unit_cell.copy()
        self.has_unit_cell = structure.has_unit_cell
        self.masses = dict(structure.masses)
        self.spins = None
        if structure.spins is not None:
            self.spins = structure.spins.copy()

        self.base_atom = None
        self.cell_coords = None
        self.reference = None

    def copy(self):
        aux = Supercell()
        aux.set_structure(self)
        aux.dim = self.dim.copy()
        if self.has_reference():
            aux.base_atom = self.base_atom.copy()
            aux.cell_coords = self.cell_coords.copy()
            aux.reference = self.reference.copy()
        return aux

    def has_reference(self):
        return self.base_atom is not None and self.cell_coords is not None

    def _check_reference(self):
        if not self.has_reference():
            raise MappingFailure("Error, the supercell is not mapped on a reference: call find_reference or set_reference first.")

    def get_reference_supercell_cell(self, unit_cell = None):
        """
        Return the lattice of the undistorted supercell (rows are the vectors).
        """
        if unit_cell is None:
            unit_cell = self.reference
        return unit_cell.unit_cell * self.dim[:, np.newaxis]

    def find_reference(self, unit_cell, verbose = False):
        """
        MAP ON THE REFERENCE
        ====================

        For each atom find the atom of the reference unit cell and the lattice
        translation that bring it closest to its position. The positions are compared
        in the undistorted supercell (fractional coordinates), so that a strained
        supercell is mapped as well.

        The candidate translations are the neighbours of the one obtained projecting
        the position on the lattice vectors.

        Parameters
        ----------
            unit_cell : Structure.Structure
                The reference unit cell.
            verbose : bool
                Print the largest distance from the ideal position.
        """
        nat_uc = unit_cell.N_atoms

        ratio = np.linalg.norm(self.unit_cell, axis = 1) / np.linalg.norm(unit_cell.unit_cell, axis = 1)
        dim = np.rint(ratio).astype(int)
        if np.any(dim < 1):
            raise MappingFailure("Error, the supercell is smaller than the unit cell (ratio {})".format(list(ratio)))
        if np.any(np.abs(ratio - dim) > 0.25):
            warnings.warn("Warning, the supercell lattice is not a multiple of the unit cell one (ratio {}), using {}".format(list(ratio), list(dim)))

        n_cells = np.prod(dim)
        if nat_uc * n_cells != self.N_atoms:
            raise MappingFailure("Error, the supercell has {} atoms, expected {} x {} x {} x {} = {}".format(self.N_atoms, dim[0], dim[1], dim[2], nat_uc, nat_uc * n_cells))

        if set(self.atoms) != set(unit_cell.atoms):
            raise MappingFailure("Error, the supercell species {} differ from the unit cell ones {}".format(sorted(set(self.atoms)), sorted(set(unit_cell.atoms))))

        # Positions in units of the unit cell lattice vectors
        u_sc = self.get_xcoords() * dim
        f_uc = unit_cell.get_xcoords()

        shifts = np.array([[x, y, z] for x in range(-1, 2) for y in range(-1, 2) for z in range(-1, 2)], dtype = np.float64)

        delta = u_sc[:, np.newaxis, :] - f_uc[np.newaxis, :, :]
        cells = np.floor(delta)[:, :, np.newaxis, :] + shifts[np.newaxis, np.newaxis, :, :]
        r = delta[:, :, np.newaxis, :] - cells

        # Minimum image in the reference supercell
        n_images = np.rint(r / dim)
        r -= n_images * dim
        cells += n_images * dim

        distances = np.linalg.norm(Methods.cryst_to_cart(unit_cell.unit_cell, r), axis = -1)

        same_species = np.array(self.atoms)[:, np.newaxis] == np.array(unit_cell.atoms)[np.newaxis, :]
        distances[~same_species, :] = np.inf

        distances = distances.reshape((self.N_atoms, -1))
        best = np.argmin(distances, axis = 1)
        min_dist = distances[np.arange(self.N_atoms), best]

        base_atom = best // len(shifts)
        best_cells = cells.reshape((self.N_atoms, -1, 3))[np.arange(self.N_atoms), best, :]
        cell_coords = np.rint(best_cells).astype(int) % dim

        # Each atom of the reference must be found once in every cell
        counts = np.bincount(base_atom, minlength = nat_uc)
        wrong = np.arange(nat_uc)[counts != n_cells]
        if len(wrong):
            raise MappingFailure("Error, the reference atoms {} are found {} times, expected {}".format(list(wrong), list(counts[wrong]), n_cells))

        site_index = ((base_atom * dim[0] + cell_coords[:, 0]) * dim[1] + cell_coords[:, 1]) * dim[2] + cell_coords[:, 2]
        sites, site_counts = np.unique(site_index, return_counts = True)
        if len(sites) != self.N_atoms:
            duplicated = sites[site_counts > 1][0]
            atoms = np.arange(self.N_atoms)[site_index == duplicated]
            raise MappingFailure("Error, the atoms {} are mapped on the same site (atom {}, cell {})".format(list(atoms), base_atom[atoms[0]], list(cell_coords[atoms[0]])))

        self.dim = dim
        self.base_atom = base_atom
        self.cell_coords = cell_coords
        self.reference = unit_cell.copy()

        if verbose:
            Settings.ParallelPrint("Supercell {} x {} x {} mapped, largest distance from the reference site: {:.6f} A".format(dim[0], dim[1], dim[2], np.max(min_dist)))

    def set_reference(self, other):
        """
        Use the mapping of other (a Supercell with the same atoms).
        """
        if not other.has_reference():
            raise MappingFailure("Error, the supercell given as reference is not mapped.")
        if other.N_atoms != self.N_atoms:
            raise MappingFailure("Error, the reference supercell has {} atoms, this one {}".format(other.N_atoms, self.N_atoms))
        if other.atoms != self.atoms:
            for i, (a, b) in enumerate(zip(other.atoms, self.atoms)):
                if a != b:
                    raise MappingFailure("Error, the atom {} is {} in the reference supercell and {} here".format(i, a, b))

        self.dim = other.dim.copy()
        self.base_atom = other.base_atom
        self.cell_coords = other.cell_coords
        self.reference = other.reference

    def make_displacement(self, q, db, imode, amplitude, phase = 0.):
        """
        FREEZE A PHONON
        ===============

        Add to each atom the displacement of the mode imode at q

            A Re(e_a exp(i theta)),    theta = 2 pi q.R + phase

        where R is the cell of the atom and a its reference atom.

        Parameters
        ----------
            q : ndarray(3)
                The q point (crystal coordinates).
            db : ModeDatabase.ModeDatabase
                The phonon modes.
            imode : int
                The index of the mode.
            amplitude : float
                The amplitude of the displacement.
            phase : float
                The phase (radians).
        """
        self._check_reference()
        try:
            iq = db.get_qpoint_index(q)
        except QptNotFound as e:
            raise QptNotFound("Cannot freeze the mode {} in the supercell: {}".format(imode, e)) from e

        mode = db.get_mode(iq, imode).reshape((-1, 3))
        if len(mode) != self.reference.N_atoms:
            raise DimensionMismatch("Error, the mode has {} atoms, the reference unit cell {}".format(len(mode), self.reference.N_atoms))

        theta = 2 * np.pi * self.cell_coords.dot(np.asarray(q, dtype = np.float64)) + phase
        e = mode[self.base_atom, :]
        self.coords += amplitude * (np.real(e) * np.cos(theta)[:, np.newaxis] - np.imag(e) * np.sin(theta)[:, np.newaxis])

    def get_displacement(self, unit_cell = None):
        """
        GET THE DISPLACEMENTS
        =====================

        The displacement of each atom from its ideal position
        (reference atom translated by its cell). The current positions are
        first brought on the lattice of the undistorted supercell through their
        fractional coordinates, so the strain does not contribute.

        Parameters
        ----------
            unit_cell : Structure.Structure
                The reference unit cell (default: the one used for the mapping).

        Results
        -------
            disp : ndarray(N_atoms, 3)
                Minimum image displacements (Angstrom).
        """
        self._check_reference()
        if unit_cell is None:
            unit_cell = self.reference
        if unit_cell.N_atoms * np.prod(self.dim) != self.N_atoms:
            raise DimensionMismatch("Error, the unit cell has {} atoms, incompatible with the {} atoms of the {} supercell".format(unit_cell.N_atoms, self.N_atoms, list(self.dim)))

        ref_cell = self.get_reference_supercell_cell(unit_cell)
        positions = Methods.cryst_to_cart(ref_cell, self.get_xcoords())
        ideal = unit_cell.coords[self.base_atom, :] + Methods.cryst_to_cart(unit_cell.unit_cell, self.cell_coords)

        disp_cryst = Methods.cart_to_cryst(ref_cell, positions - ideal)
        disp_cryst -= np.rint(disp_cryst)
        return Methods.cryst_to_cart(ref_cell, disp_cryst)

    def get_strain(self, unit_cell = None):
        """
        Return the strain tensor of the current lattice with respect to the reference
        supercell: cell = ref_cell (I + eta), eta symmetric.
        """
        self._check_reference()
        ref_cell = self.get_reference_supercell_cell(unit_cell)
        deformation = np.linalg.inv(ref_cell).dot(self.unit_cell)
        return 0.5 * (deformation + deformation.T) - np.eye(3)

    def apply_strain(self, strain):
        """
        Deform the lattice as cell (I + strain), keeping the fractional coordinates.
        """
        strain = np.asarray(strain, dtype = np.float64)
        if strain.shape != (3,3):
            raise ValueError("Error, the strain must be a 3x3 matrix, given shape {}".format(strain.shape))
        self.change_unit_cell(self.unit_cell.dot(np.eye(3) + strain))

    def fft(self, displacements):
        """
        FOURIER TRANSFORM OF THE DISPLACEMENTS
        ======================================

        Real to complex transform over the N1 x N2 x N3 grid of cells,
        for every (reference atom, cartesian direction), divided by N1 N2 N3.

        Results
        -------
            fft_grid : ndarray(nat_uc, 3, N1, N2, N3 // 2 + 1, dtype = np.complex128)
        """
        if not __FFT__:
            raise FFTUnavailable("Error, scipy.fft is required to project on the phonon modes.")
        self._check_reference()

        displacements = np.asarray(displacements, dtype = np.float64).reshape((-1, 3))
        if len(displacements) != self.N_atoms:
            raise DimensionMismatch("Error, {} displacements given for {} atoms".format(len(displacements), self.N_atoms))

        nat_uc = self.N_atoms // np.prod(self.dim)
        grid = np.zeros((nat_uc, 3, self.dim[0], self.dim[1], self.dim[2]), dtype = np.float64)
        grid[self.base_atom, :, self.cell_coords[:, 0], self.cell_coords[:, 1], self.cell_coords[:, 2]] = displacements

        return scipy.fft.rfftn(grid, axes = (2, 3, 4)) / np.prod(self.dim)

    def _get_bin(self, index, fft_grid):
        """
        Return the field (3 nat_uc) at the grid point index, doubled if
        index and -index are different points.
        """
        nzh = self.dim[2] // 2 + 1
        if index[2] < nzh:
            field = fft_grid[:, :, index[0], index[1], index[2]]
        else:
            # Hermitian symmetry of the transform of a real field
            minus = (-index) % self.dim
            field = np.conj(fft_grid[:, :, minus[0], minus[1], minus[2]])

        field = field.reshape(-1)
        if np.any((2 * index) % self.dim != 0):
            field = 2 * field
        return field

    def filter_displacement(self, q, displacements = None, fft_grid = None):
        """
        FILTER AT Q
        ===========

        Return the complex displacement field (3 nat_uc) carried by the q point q.
        For a frozen mode A e exp(i phase) the result is A e exp(i phase).

        Parameters
        ----------
            q : ndarray(3)
                The q point, it should be commensurate with the supercell.
            displacements : ndarray(N_atoms, 3)
                The displacements (ignored if fft_grid is given).
            fft_grid : ndarray
                The output of fft, to avoid recomputing it.
        """
        if fft_grid is None:
            if displacements is None:
                displacements = self.get_displacement()
            fft_grid = self.fft(displacements)

        index = Methods.check_commensurate(q, self.dim)
        return self._get_bin(index, fft_grid)

    def project_on_modes(self, unit_cell, db, selection, normalization = "none", modulus = True, rescale = False):
        """
        PROJECT ON THE PHONON MODES
        ===========================

        Project the displacements on the modes of the selection.

        Parameters
        ----------
            unit_cell : Structure.Structure
                The reference unit cell (None for the one of the mapping).
            db : ModeDatabase.ModeDatabase
                The phonon modes.
            selection : dict
                q point -> list of ModeDatabase.Mode
            normalization : string
                "none" : no normalization of the displacements.
                "qpoint" : the field filtered at each q point is normalized.
                "all" : the whole displacement field is normalized.
                A mode frozen at a q point different from -q also fills -q,
                so its squared projection is 2 instead of 1.
            modulus : bool
                If True the squared modulus of the projection is returned,
                otherwise its real part.
            rescale : bool
                Multiply back the result by the norm (squared norm if modulus).

        Results
        -------
            amplitudes : list
                One value per mode, in the order of the selection.
        """
        if not normalization in __NORMALIZATIONS__:
            raise ValueError("Error, normalization '{}' not recognized, use one of {}".format(normalization, __NORMALIZATIONS__))

        if unit_cell is None:
            unit_cell = self.reference
        masses = np.repeat(unit_cell.get_masses_array(), 3)

        displacements = self.get_displacement(unit_cell)
        fft_grid = self.fft(displacements)

        norm = 1.
        if normalization == "all":
            masses_sc = unit_cell.get_masses_array()[self.base_atom]
            norm = np.sqrt(np.sum(masses_sc[:, np.newaxis] * displacements**2) / np.prod(self.dim))

        results = []
        for q, modes in selection.items():
            try:
                iq = db.get_qpoint_index(q)
            except QptNotFound as e:
                raise QptNotFound("Cannot project on the modes at q = {}: {}".format(list(q), e)) from e

            filtered = self.filter_displacement(q, fft_grid = fft_grid)
            if normalization == "qpoint":
                norm = np.sqrt(np.sum(masses * np.abs(filtered)**2))

            for mode in modes:
                e = db.get_mode(iq, mode.index)
                if norm < __EPSILON__:
                    projection = 0.
                else:
                    projection = np.sum(masses * np.conj(e) * filtered) / norm

                if modulus:
                    value = np.abs(projection)**2
                    if rescale:
                        value *= norm**2
                else:
                    value = np.real(projection)
                    if rescale:
                        value *= norm
                results.append(float(value))

        return results

    def spectrum(self, unit_cell = None, remove_translation = True):
        """
        SPECTRUM OF THE DISPLACEMENTS
        =============================

        For each point of the grid stored by the real transform, the
        mass weighted squared norm of the filtered displacements.

        Parameters
        ----------
            unit_cell : Structure.Structure
                The reference unit cell (None for the one of the mapping).
            remove_translation : bool
                Remove the rigid translation of the whole supercell before the
                transform (so that the result does not depend on the origin).

        Results
        -------
            spectrum : ndarray(N1 * N2 * (N3 // 2 + 1), 4)
                (qx, qy, qz, sum_a m_a |u_a(q)|^2), values below 1e-10 are set to 0.
        """
        if unit_cell is None:
            unit_cell = self.reference
        masses = np.repeat(unit_cell.get_masses_array(), 3)

        displacements = self.get_displacement(unit_cell)
        if remove_translation:
            masses_sc = unit_cell.get_masses_array()[self.base_atom]
            displacements -= masses_sc.dot(displacements) / np.sum(masses_sc)

        fft_grid = self.fft(displacements)

        nx, ny, nz = self.dim
        nzh = nz // 2 + 1
        amplitudes = np.zeros((nx * ny * nzh, 4), dtype = np.float64)
        for qx in range(nx):
            for qy in range(ny):
                for qz in range(nzh):
                    field = self._get_bin(np.array([qx, qy, qz]), fft_grid)
                    norm2 = np.sum(masses * np.abs(field)**2)
                    if norm2 < __EPSILON__:
                        norm2 = 0.
                    amplitudes[(qx * ny + qy) * nzh + qz, :] = [qx / nx, qy / ny, qz / nz, norm2]
        return amplitudes
