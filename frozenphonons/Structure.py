# -*- coding: utf-8 -*-

import numpy as np

import ase
import ase.data

import frozenphonons.Methods as Methods


__all__ = ["Structure"]


class Structure:
    def __init__(self, nat=0):
        self.N_atoms=nat
        # Coordinates are always express in chartesian axis (Angstrom)
        self.coords = np.zeros((self.N_atoms, 3), dtype = np.float64)
        self.atoms = ["H"] * nat
        self.unit_cell = np.zeros((3,3))
        self.has_unit_cell = False
        self.masses = {}
        # Collinear spin of each atom (None if not magnetic)
        self.spins = None

    def get_volume(self):
        """
        Returns the volume of the unit cell (Angstrom^3)
        """
        ERR_MSG = """
Error, to compute the volume the structure must have a unit cell initialized:
(i.e. the has_unit_cell attribute must be True)."""

        if not self.has_unit_cell:
            raise ValueError(ERR_MSG)

        return np.abs(np.linalg.det(self.unit_cell))

    def generate_from_ase_atoms(self, atoms, get_masses = True):
        """
        This subroutines generate the current structure
        from the ASE Atoms object

        Parameters
        ----------
            atoms : the ASE Atoms object
            get_masses : bool
                If true, also build the masses.
                Note that massess are saved in amu, as in ASE.
        """

        self.unit_cell = np.array(atoms.get_cell(), dtype = np.float64)
        self.has_unit_cell = True
        self.atoms = atoms.get_chemical_symbols()
        self.N_atoms = len(self.atoms)
        self.coords = np.array(atoms.positions, dtype = np.float64)

        magmoms = atoms.get_initial_magnetic_moments()
        if np.any(np.abs(magmoms) > 0):
            self.spins = np.array(magmoms, dtype = np.float64)
        else:
            self.spins = None

        if get_masses:
            self.masses = {}
            mass = atoms.get_masses()
            for i, ma in enumerate(mass):
                if not self.atoms[i] in self.masses:
                    self.masses[self.atoms[i]] = ma

    def build_masses(self, only_missing = False):
        """
        Use the ASE database to build the masses (amu).
        Labels that are not chemical symbols (e.g. "Fe1") use the
        leading symbol.

        Parameters
        ----------
            only_missing : bool
                If True, the masses already set are kept and only the
                labels without a mass are taken from ASE.
        """
        if not only_missing:
            self.masses = {}
        for atm in set(self.atoms):
            if atm in self.masses:
                continue
            symbol = atm
            while symbol and not symbol in ase.data.atomic_numbers:
                symbol = symbol[:-1]
            if not symbol:
                raise ValueError("Error, unable to get the mass of atom '{}'".format(atm))
            self.masses[atm] = ase.data.atomic_masses[ase.data.atomic_numbers[symbol]]

    def copy(self):
        """
        This method simply returns a copy of the current structure

        Results
        -------
            - aux : Structure
                A copy of the self structure.
        """

        aux = Structure()
        aux.N_atoms = self.N_atoms
        aux.coords = self.coords.copy()
        aux.atoms = [atm for atm in self.atoms]
        aux.unit_cell = self.unit_cell.copy()
        aux.has_unit_cell = self.has_unit_cell
        aux.masses = dict(self.masses)
        if self.spins is not None:
            aux.spins = self.spins.copy()
        return aux

    def set_masses(self, masses):
        """
        Set up the masses of the system, a dictionary symbol -> mass in amu.

        Ex. masses = {'H' : 1.008, 'O' : 15.999}
        """
        self.masses = dict(masses)

    def get_masses_array(self):
        """
        Convert the masses of the current structure
        in a numpy array of size N_atoms (amu).
        The masses that are not initialized are taken from ASE,
        the ones already set are kept.

        Results
        -------
            masses : ndarray (size self.N_atoms)
                The array containing the mass for each atom of the system.
        """
        missing = [atm for atm in self.atoms if not atm in self.masses]
        if len(missing):
            self.build_masses(only_missing = True)

        return np.array([self.masses[atm] for atm in self.atoms], dtype = np.float64)

    def set_unit_cell(self, unit_cell):
        self.unit_cell = np.array(unit_cell, dtype = np.float64)
        self.has_unit_cell = True

    def change_unit_cell(self, unit_cell):
        """
        This method change the unit cell of the structure keeping fixed the crystal coordinates.

        NOTE: the unit_cell argument will be copied, so if the unit_cell variable is modified, this will not
        affect the unit cell of this structure.

        Parameters
        ----------
            unit_cell : numpy ndarray (3x3)
                The new unit cell
        """
        if not self.has_unit_cell:
            raise ValueError("Error, the structure must already have a unit cell initialized.")

        crys_coord = self.get_xcoords()
        self.unit_cell = np.array(unit_cell, dtype = np.float64)
        self.set_from_xcoords(crys_coord)

    def get_xcoords(self):
        """
        Returns the crystalline coordinates
        """
        if not self.has_unit_cell:
            raise ValueError("Error: the specified structure has not the unit cell.")

        return Methods.covariant_coordinates(self.unit_cell, self.coords)

    def set_from_xcoords(self, xcoords):
        """
        Set the cartesian coordinates from crystalline
        """
        if not self.has_unit_cell:
            raise ValueError("Error: the specified structure has not the unit cell.")

        self.coords[:,:] = Methods.cryst_to_cart(self.unit_cell, xcoords)

    def get_ase_atoms(self):
        """
        This method returns the ase atoms structure, ready for computations.

        Results
        -------
            - atoms : ase.Atoms()
                  The ase.Atoms class containing the self structure.
        """

        atm = ase.Atoms(self.atoms, positions = self.coords.copy())
        if len(self.masses) == len(set(self.atoms)):
            atm.set_masses(self.get_masses_array())

        if self.spins is not None:
            atm.set_initial_magnetic_moments(self.spins)

        if self.has_unit_cell:
            atm.set_cell(self.unit_cell)
            atm.pbc[:] = True

        return atm

    def generate_supercell(self, dim, get_itau = False):
        """
        This method generate a supercell of specified dimension, replicating the system
        on the n-th neighbours unit cells.

        The atoms are ordered by cell (i, j, k), with k running fastest,
        then by the atom of the unit cell.

        Parameters
        ----------
            - dim : list, size(3), integer
                  A list that specifies the number of cells for each dimension.
            - get_itau : bool
                If true also the itau array (index of the atom in the unit cell)
                and the cell coordinates of each atom are returned.

        Results
        -------
            - supercell : Structure
                  This structure is the supercell of the system.
        """

        if len(dim) != 3:
            raise ValueError("ERROR, dim must have 3 integers.")

        if not self.has_unit_cell:
            raise ValueError("ERROR, the specified system has not the unit cell.")

        dim = [int(x) for x in dim]
        if min(dim) < 1:
            raise ValueError("ERROR, the supercell must be at least 1x1x1, given {}".format(dim))

        total_dim = np.prod(dim)
        new_N_atoms = self.N_atoms * total_dim

        # cells[i] = (i_x, i_y, i_z), with i_z running faster
        cells = np.array(np.meshgrid(np.arange(dim[0]), np.arange(dim[1]), np.arange(dim[2]), indexing = "ij")).reshape((3, -1)).T
        cell_coords = np.repeat(cells, self.N_atoms, axis = 0)
        itau = np.tile(np.arange(self.N_atoms), total_dim)

        supercell = Structure(new_N_atoms)
        supercell.coords[:,:] = self.coords[itau, :] + cell_coords.dot(self.unit_cell)
        supercell.atoms = [self.atoms[x] for x in itau]
        supercell.masses = dict(self.masses)
        if self.spins is not None:
            supercell.spins = self.spins[itau].copy()

        supercell.has_unit_cell = True
        for i in range(3):
            supercell.unit_cell[i, :] = self.unit_cell[i,:] * dim[i]

        if get_itau:
            return supercell, itau, cell_coords
        return supercell
