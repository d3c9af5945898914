# -*- coding: utf-8 -*-
"""
Freeze phonons into supercells and project them back on the modes.
"""
import frozenphonons as FP
import frozenphonons.Structure
import frozenphonons.ForceConstants
import frozenphonons.ModeDatabase
import frozenphonons.Supercell
from frozenphonons.ModeDatabase import Mode, add_to_selection
from frozenphonons.Errors import FFTUnavailable, DimensionMismatch, QptNotFound

import numpy as np
import pytest


def get_model():
    """
    Spring model of a CsCl-like crystal, with the modes
    on the q points of a 2x2x4 grid.
    """
    uc = FP.Structure.Structure(2)
    uc.atoms = ["Na", "Cl"]
    uc.coords[1, :] = 1.5
    uc.set_unit_cell(np.eye(3) * 3)
    uc.build_masses()

    dim = [2, 2, 4]
    sc = uc.generate_supercell(dim)
    fc = FP.ForceConstants.get_spring_model_fc(sc, 3.2, 0.01)
    qpoints = [[i / dim[0], j / dim[1], k / dim[2]] for i in range(dim[0]) for j in range(dim[1]) for k in range(dim[2])]

    store = FP.ForceConstants.ForceConstantStore(uc)
    store.generate_from_supercell_fc(sc, fc, qpoints)

    db = FP.ModeDatabase.ModeDatabase()
    db.compute_from_store(store)
    return uc, db


def get_grid_selection(dim, n_modes):
    selection = {}
    for i in range(dim[0]):
        for j in range(dim[1]):
            for k in range(dim[2]):
                for imode in range(n_modes):
                    add_to_selection(selection, [i / dim[0], j / dim[1], k / dim[2]], Mode(imode))
    return selection


def test_frozen_gamma_mode():
    uc, db = get_model()

    AMPLITUDE = 0.05
    sc = FP.Supercell.Supercell(uc, [2, 2, 2])
    sc.make_displacement(np.zeros(3), db, 3, AMPLITUDE)

    selection = get_grid_selection([2, 2, 2], db.n_modes)
    results = np.array(sc.project_on_modes(uc, db, selection))

    # The Gamma point is the first key of the selection
    assert len(results) == 8 * 6
    assert np.abs(results[3] - AMPLITUDE**2) < 1e-6
    others = np.delete(results, 3)
    assert np.max(others) < 1e-6


def test_round_trip():
    uc, db = get_model()

    AMPLITUDE = 0.03
    cases = [([0.5, 0, 0], [2, 1, 1]),
             ([0.5, 0.5, 0.5], [2, 2, 2]),
             ([0, 0, 0.25], [1, 1, 4]),
             ([0, 0, 0.75], [1, 1, 4])]

    for q, dim in cases:
        for imode in [0, 2, 5]:
            sc = FP.Supercell.Supercell(uc, dim)
            sc.make_displacement(q, db, imode, AMPLITUDE)

            selection = {tuple(q) : [Mode(imode)]}
            square = sc.project_on_modes(uc, db, selection)[0]
            real = sc.project_on_modes(uc, db, selection, modulus = False)[0]

            assert np.abs(square - AMPLITUDE**2) < 1e-10, "q = {}, mode {}: {}".format(q, imode, square)
            assert np.abs(real - AMPLITUDE) < 1e-10, "q = {}, mode {}: {}".format(q, imode, real)


def test_phase():
    uc, db = get_model()

    AMPLITUDE = 0.02
    PHASE = np.pi / 3
    q = [0, 0, 0.25]

    sc = FP.Supercell.Supercell(uc, [1, 1, 4])
    sc.make_displacement(q, db, 4, AMPLITUDE, PHASE)

    filtered = sc.filter_displacement(q)
    mode = db.get_mode(db.get_qpoint_index(q), 4)
    assert np.max(np.abs(filtered - AMPLITUDE * mode * np.exp(1j * PHASE))) < 1e-10

    selection = {tuple(q) : [Mode(4)]}
    assert np.abs(sc.project_on_modes(uc, db, selection)[0] - AMPLITUDE**2) < 1e-10
    assert np.abs(sc.project_on_modes(uc, db, selection, modulus = False)[0] - AMPLITUDE * np.cos(PHASE)) < 1e-10

    # The frozen wave also fills the -q bin, that carries half of the norm
    assert np.abs(sc.project_on_modes(uc, db, selection, normalization = "all")[0] - 2) < 1e-8


def test_normalizations():
    uc, db = get_model()

    AMPLITUDE = 0.05
    sc = FP.Supercell.Supercell(uc, [2, 2, 2])
    sc.make_displacement(np.zeros(3), db, 5, AMPLITUDE)
    sc.make_displacement([0.5, 0, 0], db, 4, AMPLITUDE / 2)

    selection = {(0., 0., 0.) : [Mode(5)], (0.5, 0., 0.) : [Mode(4)], (0., 0.5, 0.) : [Mode(4)]}

    res = sc.project_on_modes(uc, db, selection, normalization = "qpoint")
    assert np.max(np.abs(np.array(res) - [1, 1, 0])) < 1e-10

    res = sc.project_on_modes(uc, db, selection, normalization = "qpoint", rescale = True)
    assert np.max(np.abs(np.array(res) - [AMPLITUDE**2, AMPLITUDE**2 / 4, 0])) < 1e-10

    # The two modes share the whole mass weighted norm
    res = sc.project_on_modes(uc, db, selection, normalization = "all")
    assert np.abs(res[0] + res[1] - 1) < 1e-10
    assert np.abs(res[0] / res[1] - 4) < 1e-8

    res = sc.project_on_modes(uc, db, selection, normalization = "all", modulus = False, rescale = True)
    assert np.max(np.abs(np.array(res) - [AMPLITUDE, AMPLITUDE / 2, 0])) < 1e-10

    with pytest.raises(ValueError):
        sc.project_on_modes(uc, db, selection, normalization = "mode")

    with pytest.raises(QptNotFound):
        sc.project_on_modes(uc, db, {(0.25, 0., 0.) : [Mode(0)]})


def test_spectrum_translation():
    uc, db = get_model()

    sc = FP.Supercell.Supercell(uc, [2, 2, 2])
    sc.make_displacement([0, 0, 0], db, 0, 0.1)
    sc.make_displacement([0, 0, 0], db, 3, 0.02)
    sc.make_displacement([0.5, 0, 0], db, 4, 0.04)
    sc.make_displacement([0.5, 0.5, 0.5], db, 5, 0.03)

    spectrum = sc.spectrum()
    assert spectrum.shape == (8, 4)

    # Rows ordered as (qx, qy, qz) with qz fastest
    assert np.max(np.abs(spectrum[4, :3] - [0.5, 0, 0])) < 1e-12
    expected = np.zeros(8)
    expected[0] = 0.02**2
    expected[4] = 0.04**2
    expected[7] = 0.03**2
    assert np.max(np.abs(spectrum[:, 3] - expected)) < 1e-10

    # Rigidly translate the crystal
    shifted = FP.Supercell.Supercell()
    shifted.set_structure(sc)
    shifted.coords += np.array([0.3, -0.2, 0.7])
    shifted.find_reference(uc)

    assert np.max(np.abs(shifted.spectrum() - spectrum)) < 1e-10

    raw = shifted.spectrum(remove_translation = False)
    assert raw[0, 3] > spectrum[0, 3] + 1e-3


def test_fft_errors(monkeypatch):
    uc, db = get_model()
    sc = FP.Supercell.Supercell(uc, [2, 2, 2])

    with pytest.raises(DimensionMismatch):
        sc.fft(np.zeros((3, 3)))

    with pytest.warns(UserWarning):
        sc.filter_displacement([0.3, 0, 0])

    monkeypatch.setattr(FP.Supercell, "__FFT__", False)
    with pytest.raises(FFTUnavailable):
        sc.spectrum()


if __name__ == "__main__":
    test_frozen_gamma_mode()
    test_round_trip()
    test_phase()
    test_normalizations()
    test_spectrum_translation()
    test_fft_errors(pytest.MonkeyPatch())
