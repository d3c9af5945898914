import numpy as np

__INFO__ = """
Here all the conversion between common units are stored.

The default units are Angstrom for the positions, Hartree for the energies
and the atomic mass unit (1/12 of C12 nucleus) for the masses.

However, force constants are stored in Ha/bohr^2 (to mantain the abinit compatibility)
and the dynamical matrix is diagonalized with masses in electron mass units,
so that the frequencies come out in Hartree.
"""

A_TO_BOHR = np.float64(1.8897261254578281)
BOHR_TO_ANGSTROM = 1 / A_TO_BOHR
HA_TO_EV = np.float64(27.211386245988)
K_B = np.float64(8.617333262e-05) # eV / K
HA_TO_KELVIN = HA_TO_EV / K_B
KELVIN_TO_HA = 1 / HA_TO_KELVIN
AMU_TO_EMASS = np.float64(1822.888486209)
HA_TO_CM = np.float64(219474.6313632)
