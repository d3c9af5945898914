# -*- coding: utf-8 -*-
import frozenphonons as FP
import frozenphonons.Structure
import frozenphonons.ForceConstants
import frozenphonons.ModeDatabase
from frozenphonons.ModeDatabase import Mode, add_to_selection
from frozenphonons.Errors import QptNotFound, ModeNotFound, IncompatibleMerge, DimensionMismatch

import numpy as np
import pytest


def get_database(qpoints):
    uc = FP.Structure.Structure(2)
    uc.atoms = ["Na", "Cl"]
    uc.coords[1, :] = 1.5
    uc.set_unit_cell(np.eye(3) * 3)
    uc.build_masses()

    sc = uc.generate_supercell([2, 2, 2])
    fc = FP.ForceConstants.get_spring_model_fc(sc, 3.2, 0.01)
    store = FP.ForceConstants.ForceConstantStore(uc)
    store.generate_from_supercell_fc(sc, fc, qpoints)

    db = FP.ModeDatabase.ModeDatabase()
    db.compute_from_store(store)
    return db


def test_lookup():
    db = get_database([[0, 0, 0], [0.5, 0, 0], [0.5, 0.5, 0.5]])

    assert db.nq == 3
    assert db.N_atoms == 2
    assert db.n_modes == 6

    assert db.get_qpoint_index([0.5, 0, 1e-8]) == 1
    assert db.has_qpoint([0.5, 0.5, 0.5])
    assert not db.has_qpoint([0, 0.5, 0])
    with pytest.raises(QptNotFound):
        db.get_qpoint_index([0, 0.5, 0])

    db.select_qpoint([0.5, 0, 0])
    assert db.selected == 1
    assert db.get_selected_energy(5) == db.energies[1, 5]
    assert np.all(db.get_selected_mode(0) == db.modes[1, 0, :])

    with pytest.raises(ModeNotFound):
        db.get_mode(0, 6)
    with pytest.raises(IndexError):
        db.get_energy(0, -1)
    with pytest.raises(QptNotFound):
        db.get_mode(3, 0)

    empty = FP.ModeDatabase.ModeDatabase(2)
    with pytest.raises(QptNotFound):
        empty.get_selected_mode(0)


def test_merge():
    db1 = get_database([[0, 0, 0], [0.5, 0, 0]])
    db2 = get_database([[0.5, 0, 0], [0, 0, 0.5], [0.5, 0.5, 0.5]])

    energies = db1.energies.copy()
    db1 += db2
    assert db1.nq == 4
    assert np.all(db1.energies[:2, :] == energies)
    assert db1.has_qpoint([0, 0, 0.5])

    # Merging into an empty database copies the other
    empty = FP.ModeDatabase.ModeDatabase()
    empty.merge(db2)
    assert empty.nq == 3
    assert empty.N_atoms == 2

    other = FP.ModeDatabase.ModeDatabase()
    other.read_external([[0, 0, 0]], np.ones((1, 3)), np.ones((1, 3, 3)))
    assert other.N_atoms == 1
    with pytest.raises(IncompatibleMerge):
        db1.merge(other)

    with pytest.raises(DimensionMismatch):
        other.read_external([[0, 0, 0]], np.ones((1, 2)), np.ones((1, 3, 3)))
    with pytest.raises(DimensionMismatch):
        other.read_external([[0, 0, 0], [0.5, 0, 0]], np.ones((1, 3)), np.ones((1, 3, 3)))


def test_selections():
    db = get_database([[0, 0, 0], [0.5, 0, 0]])

    # The acoustic modes are excluded
    gamma = db.get_gamma_selection(amplitude = 0.1)
    assert len(gamma) == 1
    modes = list(gamma.values())[0]
    assert [m.index for m in modes] == [3, 4, 5]
    assert all(m.amplitude == 0.1 for m in modes)

    assert len(db.get_gamma_selection(skip_acoustic = False)[(0., 0., 0.)]) == 6

    everything = db.get_all_selection()
    assert sum(len(m) for m in everything.values()) == 12

    selection = {}
    key = add_to_selection(selection, [0.5, 0, 0], Mode(2, 0.1))
    assert add_to_selection(selection, [0.5, 1e-8, 0], Mode(3, 0.2)) == key
    assert len(selection) == 1

    # The same mode is replaced
    add_to_selection(selection, [0.5, 0, 0], Mode(2, 0.3, phase = np.pi))
    assert len(selection[key]) == 2
    assert selection[key][0].amplitude == 0.3
    assert selection[key][0].phase == np.pi

    add_to_selection(selection, [0, 0, 0.5], Mode(0))
    q_points = FP.ModeDatabase.get_selection_qpoints(selection)
    assert q_points.shape == (2, 3)
    assert np.all(q_points[1] == [0, 0, 0.5])


if __name__ == "__main__":
    test_lookup()
    test_merge()
    test_selections()
