# -*- coding: utf-8 -*-

import numpy as np

import warnings

__EPSILON__ = 1e-6
__EPSILON_Q__ = 1e-6


__all__ = ["covariant_coordinates", "cryst_to_cart", "cart_to_cryst",
           "same_qpoint", "find_qpoint", "is_time_reversal_invariant",
           "get_commensurate_dim", "get_half_qpoint_grid", "check_commensurate"]


def covariant_coordinates(basis, vectors):
    """
    Covariant Coordinates
    =====================

    This method returns the covariant coordinates of the given vector in the chosen basis.
    Covariant coordinates are the coordinates expressed as:
        .. math::

            \\vec v = \\sum_i \\alpha_i \\vec e_i


    where :math:`\\vec e_i` are the basis vectors. Note: the :math:`\\alpha_i` are not the
    projection of the vector :math:`\\vec v` on :math:`\\vec e_i` if the basis is not orthogonal.


    Parameters
    ----------
        - basis : ndarray(size = (N,N))
            The basis. each :math:`\\vec e_i` is a row.
        - vector : ndarray(size = (N_vectors, N))
            The vectors expressed in cartesian coordinates.
            It coould be just one ndarray(size=N)

    Results
    -------
        - cov_vector : Nx float
            The :math:`\\alpha_i` values.

    """

    metric_tensor = basis.dot(basis.T)
    imt = np.linalg.inv(metric_tensor)

    contra_vect = np.asarray(vectors).dot(basis.T)
    return contra_vect.dot(imt)

def cryst_to_cart(unit_cell, cryst_vectors):
    """
    Convert a vector from crystalline to cartesian.
    Many vectors counld be pased toghether, in that case the last axis must be the one with the vector.

    Parameters
    ----------
        unit_cell : ndarray((3,3))
            The unit cell vectors.
            The i-th cell vector is unit_cell[i, :]
        cryst_vectors : ndarray((N_vectors, 3)) or ndarray(3)
            The vector(s) in crystalline coordinates

    Results
    -------
        cart_vectors : ndarray((N_vectors, 3)) or ndarray(3)
            The vector(s) in cartesian coordinates
    """

    return np.asarray(cryst_vectors).dot(unit_cell)

def cart_to_cryst(unit_cell, cart_vectors):
    """
    Convert a vector from cartesian to crystalline.
    Same conventions as cryst_to_cart.
    """
    return covariant_coordinates(unit_cell, cart_vectors)


def same_qpoint(q1, q2, thr = __EPSILON_Q__):
    """
    True if the two q points (crystal coordinates) are the same within thr.
    No periodic image is considered: q and q + G are different points of the table.
    """
    return np.linalg.norm(np.asarray(q1, dtype = np.float64) - np.asarray(q2, dtype = np.float64)) < thr


def find_qpoint(q_list, q, thr = __EPSILON_Q__):
    """
    Return the index of q inside q_list (within thr), or None if it is missing.
    If more than one q point matches, the last one is returned.
    """
    if len(q_list) == 0:
        return None

    distances = np.linalg.norm(np.asarray(q_list, dtype = np.float64) - np.asarray(q, dtype = np.float64), axis = 1)
    good = np.arange(len(distances))[distances < thr]
    if len(good) == 0:
        return None
    return good[-1]


def is_time_reversal_invariant(q, thr = __EPSILON_Q__):
    """
    Check if -q is equivalent to q, i.e. 2q is a reciprocal lattice vector.
    The q point must be in crystal coordinates.
    """
    two_q = 2 * np.asarray(q, dtype = np.float64)
    return (np.abs(two_q - np.rint(two_q)) < thr).all()


def get_commensurate_dim(q, thr = 1e-10):
    """
    GET THE SUPERCELL OF A Q POINT
    ==============================

    Each nonzero component of q (crystal coordinates) must be the inverse of an integer.
    The integer gives the size of the supercell along that direction.

    Results
    -------
        dim : ndarray(3, dtype = int)
    """

    dim = np.ones(3, dtype = int)
    for i in range(3):
        qi = np.abs(q[i])
        if qi > __EPSILON__:
            n = np.rint(1. / qi)
            if np.abs(n - 1. / qi) > thr:
                raise ValueError("Error, unable to find the supercell multiple for direction {} (q = {})".format(i, list(q)))
            dim[i] = int(n)
    return dim


def get_half_qpoint_grid(dim):
    """
    Return the q points (i/N1, j/N2, k/N3) with 0 <= i <= N1/2 (same for j, k).
    Every axis is cut independently, so this is not the full irreducible half
    of the grid: on a 4x4 grid (1/4, 3/4, 0) is missing, and so is its partner
    (3/4, 1/4, 0). The thermal ensembles draw their modes on this subset.
    """
    q_list = []
    for qx in range(dim[0] // 2 + 1):
        for qy in range(dim[1] // 2 + 1):
            for qz in range(dim[2] // 2 + 1):
                q_list.append(np.array([qx / dim[0], qy / dim[1], qz / dim[2]], dtype = np.float64))
    return q_list


def check_commensurate(q, dim, thr = __EPSILON_Q__):
    """
    Return the index of the grid bin nearest to q and warn if q is not commensurate
    with the (N1, N2, N3) grid.
    """
    scaled = np.asarray(q, dtype = np.float64) * np.asarray(dim)
    index = np.rint(scaled).astype(int)
    if (np.abs(scaled - index) > thr).any():
        warnings.warn("Warning, q point {} is not commensurate with the supercell {}, using the nearest one.".format(list(q), list(dim)))
    return index % np.asarray(dim, dtype = int)
