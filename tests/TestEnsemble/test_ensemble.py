# -*- coding: utf-8 -*-
import frozenphonons as FP
import frozenphonons.Structure
import frozenphonons.ForceConstants
import frozenphonons.ModeDatabase
import frozenphonons.Ensemble
from frozenphonons.ModeDatabase import Mode
from frozenphonons.Ensemble import EnsembleGenerator, SeedConfiguration, StrainSampler
from frozenphonons.Errors import DimensionMismatch

import numpy as np
import pytest


def get_model():
    uc = FP.Structure.Structure(2)
    uc.atoms = ["Na", "Cl"]
    uc.coords[1, :] = 1.5
    uc.set_unit_cell(np.eye(3) * 3)
    uc.build_masses()

    dim = [2, 2, 2]
    sc = uc.generate_supercell(dim)
    fc = FP.ForceConstants.get_spring_model_fc(sc, 3.2, 0.01)
    qpoints = [[i / 2, j / 2, k / 2] for i in range(2) for j in range(2) for k in range(2)]

    store = FP.ForceConstants.ForceConstantStore(uc)
    store.generate_from_supercell_fc(sc, fc, qpoints)

    db = FP.ModeDatabase.ModeDatabase()
    db.compute_from_store(store)
    return uc, db


def get_amplitudes(selection):
    return [m.amplitude for modes in selection.values() for m in modes]


def test_seed():
    uc, db = get_model()

    gen1 = EnsembleGenerator(uc, db, SeedConfiguration("user", 7))
    gen2 = EnsembleGenerator(uc, db, SeedConfiguration("user", 7))
    gen3 = EnsembleGenerator(uc, db, SeedConfiguration("user", 8))

    t1 = gen1.build_trajectory(300, [2, 2, 2], ntime = 3)
    t2 = gen2.build_trajectory(300, [2, 2, 2], ntime = 3)
    t3 = gen3.build_trajectory(300, [2, 2, 2], ntime = 3)

    assert gen1.state == "done"
    assert len(t1) == 3
    assert np.all(t1.coords == t2.coords)
    assert np.max(np.abs(t1.coords - t3.coords)) > 1e-6

    # The same frames after the generator is reset
    gen1.reset_rng()
    assert np.all(gen1.build_trajectory(300, [2, 2, 2], ntime = 3).coords == t1.coords)

    assert SeedConfiguration("none").get_seed() == 0
    assert SeedConfiguration("user", 5).get_seed() == 5
    with pytest.raises(ValueError):
        SeedConfiguration("clock")


def test_statistics():
    uc, db = get_model()

    energy = db.energies[0, 3]
    classical = EnsembleGenerator(uc, db, SeedConfiguration("user", 1), statistics = "classical")
    quantum = EnsembleGenerator(uc, db, SeedConfiguration("user", 1), statistics = "quantum")

    # At high temperature the two statistics give the same fluctuations,
    # at low temperature the zero point motion dominates
    assert np.abs(quantum.get_sigma(energy, 1e5) / classical.get_sigma(energy, 1e5) - 1) < 1e-3
    assert quantum.get_sigma(energy, 1) > 10 * classical.get_sigma(energy, 1)

    assert FP.Ensemble.bose_einstein(1., 0) == 0
    assert np.abs(FP.Ensemble.bose_einstein(1e-3, 1.) - (1e3 - 0.5)) < 1e-3

    T = 1e4
    N_TIME = 2000
    sel_c = classical.thermal_amplitudes(T, N_TIME, [1, 1, 1])
    sel_q = quantum.thermal_amplitudes(T, N_TIME, [1, 1, 1])

    # Only the optical modes at Gamma are displaced
    assert [m.index for m in sel_c[0][(0., 0., 0.)]] == [3, 4, 5]

    amp_c = np.array([get_amplitudes(s) for s in sel_c])
    amp_q = np.array([get_amplitudes(s) for s in sel_q])

    # Same random numbers
    assert np.max(np.abs(amp_q / amp_c - 1)) < 1e-3

    # The normal distribution has standard deviation 1/3
    sigma = classical.get_sigma(energy, T)
    assert np.abs(np.mean(amp_c**2) / (sigma**2 / 9) - 1) < 0.1

    other = EnsembleGenerator(uc, db, SeedConfiguration("user", 2), statistics = "quantum")
    amp_o = np.array([get_amplitudes(s) for s in other.thermal_amplitudes(T, N_TIME, [1, 1, 1])])
    assert np.abs(np.var(amp_o) / np.var(amp_c) - 1) < 0.1

    uniform = EnsembleGenerator(uc, db, SeedConfiguration("user", 3), random_type = "uniform")
    amp_u = np.array([get_amplitudes(s) for s in uniform.thermal_amplitudes(T, 100, [1, 1, 1])])
    assert np.max(np.abs(amp_u)) <= sigma

    # Below the threshold nothing is displaced
    assert all(len(s) == 0 for s in classical.thermal_amplitudes(1e-4, 3, [2, 2, 2]))
    frozen = classical.build_trajectory(0, [2, 2, 2], ntime = 2)
    reference = uc.generate_supercell([2, 2, 2])
    assert np.max(np.abs(frozen.coords[1] - reference.coords)) < 1e-12


def test_instable_modes():
    uc = FP.Structure.Structure(1)
    uc.atoms = ["Si"]
    uc.set_unit_cell(np.eye(3) * 2)
    uc.build_masses()
    mass = uc.get_masses_array()[0]

    db = FP.ModeDatabase.ModeDatabase()
    db.read_external([[0, 0, 0]], [[-1e-3, 1e-3, 2e-3]], [np.eye(3) / np.sqrt(mass)])

    sel = EnsembleGenerator(uc, db, instable = "ignore").thermal_amplitudes(300, 1, [1, 1, 1])[0]
    assert [m.index for m in sel[(0., 0., 0.)]] == [1, 2]

    sel = EnsembleGenerator(uc, db, instable = "constant", instable_amplitude = 0.5).thermal_amplitudes(300, 1, [1, 1, 1])[0]
    modes = sel[(0., 0., 0.)]
    assert modes[0].index == 0
    assert modes[0].amplitude == 0.5
    assert modes[0].energy == -1e-3

    sel = EnsembleGenerator(uc, db, instable = "absolute").thermal_amplitudes(300, 1, [1, 1, 1])[0]
    assert [m.index for m in sel[(0., 0., 0.)]] == [0, 1, 2]

    with pytest.raises(ValueError):
        EnsembleGenerator(uc, db, instable = "random")

    # The q points missing from the database are skipped
    with pytest.warns(UserWarning):
        sel = EnsembleGenerator(uc, db).thermal_amplitudes(300, 1, [2, 1, 1])[0]
    assert list(sel.keys()) == [(0., 0., 0.)]

    uc2, db2 = get_model()
    with pytest.raises(DimensionMismatch):
        EnsembleGenerator(uc, db2)


def test_strain_sampler():
    rng = np.random.default_rng(0)

    sampler = StrainSampler({"iso_max" : 0.01}, random_type = "uniform")
    assert sampler.get_bounds("iso") == (-0.01, 0.01)
    assert sampler.get_bounds("tetra") is None
    for i in range(100):
        strain = sampler.sample(rng)
        assert np.all(np.abs(strain - np.eye(3) * strain[0, 0]) < 1e-15)
        assert np.abs(strain[0, 0]) <= 0.01

    sampler = StrainSampler({"tetra_max" : 0.02, "tetra_min" : 0.01}, tetra_dirs = "x", random_type = "uniform")
    for i in range(10):
        strain = sampler.sample(rng)
        delta = strain[0, 0]
        assert delta >= 0.01 and delta <= 0.02
        assert np.abs(strain[1, 1] - (1 / np.sqrt(1 + delta) - 1)) < 1e-15
        assert np.abs(strain[2, 2] - strain[1, 1]) < 1e-15

    # Default shear plane xy
    sampler = StrainSampler()
    assert not sampler.is_active()
    strain = sampler.get_strain_matrix(rng, shear = 0.1)
    assert strain[0, 1] == 0.1 and strain[1, 0] == 0.1
    assert np.abs(strain[2, 2] - 0.01 / 0.99) < 1e-15
    assert np.all(sampler.get_strain_matrix(rng, tetra = 1e-12) == 0)

    sampler = StrainSampler(shear_dirs = ["yz"])
    strain = sampler.get_strain_matrix(rng, shear = 0.1)
    assert strain[1, 2] == 0.1 and strain[2, 1] == 0.1
    assert strain[0, 1] == 0

    with pytest.raises(ValueError):
        StrainSampler({"volume_max" : 0.1})
    with pytest.raises(ValueError):
        StrainSampler(tetra_dirs = "w")


def test_decompose():
    uc, db = get_model()
    gen = EnsembleGenerator(uc, db, SeedConfiguration("user", 3))

    traj = gen.build_trajectory(300, [2, 2, 2], ntime = 3)
    amplitudes, strains = gen.decompose(traj, traj.selections[0], modulus = False)

    # 7 q points with 6 modes, the optical modes at Gamma
    assert amplitudes.shape == (3, 7 * 6 + 3)
    for i in range(3):
        assert np.max(np.abs(amplitudes[i, :] - get_amplitudes(traj.selections[i]))) < 1e-8
    assert np.max(np.abs(strains)) < 1e-12

    # The strain of each frame is recovered
    bounds = {"iso_max" : 0.01, "shear_max" : 0.02}
    traj = gen.build_trajectory(300, [2, 2, 2], strain_bounds = bounds, ntime = 3)
    amplitudes, strains = gen.decompose(traj.get_structures(), traj.selections[0])
    assert np.max(np.abs(strains - traj.strains)) < 1e-10
    assert np.max(np.abs(traj.strains)) > 1e-5

    with pytest.raises(ValueError):
        gen.build_trajectory(300, [2, 2, 2], ntime = 0)


def test_background():
    uc, db = get_model()
    gen = EnsembleGenerator(uc, db, SeedConfiguration("user", 11))

    results = []
    future = gen.build_trajectory(300, [2, 2, 2], ntime = 4, background = True, callback = results.append)
    traj = future.result(timeout = 120)

    assert gen.state == "done"
    assert len(traj) == 4
    assert gen.trajectory is traj
    assert results[0] is traj

    # The same frames of a serial run
    gen_serial = EnsembleGenerator(uc, db, SeedConfiguration("user", 11))
    assert np.all(gen_serial.build_trajectory(300, [2, 2, 2], ntime = 4).coords == traj.coords)

    gen.shutdown()


def test_cancel(monkeypatch):
    uc, db = get_model()
    gen = EnsembleGenerator(uc, db, SeedConfiguration("user", 11))

    # Stop the generation as soon as the first frame is written
    set_frame = FP.Ensemble.Trajectory.set_frame
    def set_frame_and_cancel(self, *args, **kwargs):
        set_frame(self, *args, **kwargs)
        gen.cancel()
    monkeypatch.setattr(FP.Ensemble.Trajectory, "set_frame", set_frame_and_cancel)

    results = []
    future = gen.build_trajectory(300, [2, 2, 2], ntime = 5, background = True, callback = results.append)
    traj = future.result(timeout = 120)

    assert gen.state == "cancelled"
    assert gen.is_cancelled()
    assert len(traj) == 1
    assert traj.ntime == 5
    assert results[0] is traj

    monkeypatch.undo()

    # A new run starts from scratch
    traj = gen.build_trajectory(300, [2, 2, 2], ntime = 2)
    assert gen.state == "done"
    assert len(traj) == 2
    gen.shutdown()


def test_animate_modes():
    uc, db = get_model()
    gen = EnsembleGenerator(uc, db)

    AMPLITUDE = 0.05
    N_TIME = 4
    traj = gen.animate_modes({(0., 0., 0.) : [Mode(3, AMPLITUDE)]}, N_TIME)
    assert len(traj) == N_TIME
    assert traj.N_atoms == 2

    mode = np.real(db.get_mode(0, 3)).reshape((2, 3))
    for i in range(N_TIME):
        expected = uc.coords + AMPLITUDE * mode * np.cos(i * np.pi / N_TIME)
        assert np.max(np.abs(traj.coords[i] - expected)) < 1e-12

    # The supercell follows the q point
    traj = gen.animate_modes({(0.5, 0., 0.) : [Mode(4, AMPLITUDE)]}, N_TIME)
    assert traj.N_atoms == 4

    traj = gen.animate_modes({}, N_TIME)
    assert len(traj) == 1
    assert np.max(np.abs(traj.coords[0] - uc.coords)) < 1e-12


def test_add_noise():
    uc, db = get_model()
    gen = EnsembleGenerator(uc, db, SeedConfiguration("user", 5))

    frames = gen.build_trajectory(0, [2, 2, 2], ntime = 2)
    noisy = gen.add_noise(frames, 300)

    assert len(noisy) == 2
    assert np.max(np.abs(noisy.coords - frames.coords)) > 1e-4
    amplitudes, strains = gen.decompose(noisy, noisy.selections[0], modulus = False)
    for i in range(2):
        assert np.max(np.abs(amplitudes[i, :] - get_amplitudes(noisy.selections[i]))) < 1e-8

    # Also from ASE structures
    noisy = gen.add_noise(frames.get_ase_atoms(), 300, strain_bounds = {"iso_max" : 0.01})
    assert len(noisy) == 2
    assert noisy.get_structure(1).N_atoms == 16

    with pytest.raises(IndexError):
        noisy.get_structure(2)
    with pytest.raises(DimensionMismatch):
        noisy.set_frame(0, uc)


if __name__ == "__main__":
    test_seed()
    test_statistics()
    test_instable_modes()
    test_strain_sampler()
    test_decompose()
    test_background()
    test_cancel(pytest.MonkeyPatch())
    test_animate_modes()
    test_add_noise()
