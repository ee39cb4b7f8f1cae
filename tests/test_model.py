"""Tests for acevo.model: generation loop, selection, migration, threading.

End-to-end scenarios:
  A. One group of 4, one round, one generation, near-zero action noise:
     payoffs match the closed-form game value at a = theta.
  B. One generation: no reproduction or migration happens and the output
     holds all g·ngsp·nsp individuals, all alive.
  C. Equal seed and thread count give byte-identical output files; a
     different thread count loses or duplicates no individuals.
"""

import numpy as np
import pytest

from acevo.config import default_config
from acevo.genetics import Gamete, MutRec, compute_trait_diagnostics
from acevo.individual import Individual
from acevo.model import (
    Evo,
    EvoResult,
    assign_qualities,
    migrate,
    partition_subpops,
    run_evolution,
    select_reproduce,
)
from acevo.perf import PerfMonitor
from acevo.population import MetaPopState, SubPop0


# ─── Helpers ──────────────────────────────────────────────────────────

def _config(nsp=2, ngsp=3, g=4, T=5, numgen=3, threads=2, seed=42, **pop):
    cfg = default_config()
    cfg.simulation.max_num_thrds = threads
    cfg.simulation.numgen = numgen
    cfg.simulation.seed = seed
    cfg.population.nsp = nsp
    cfg.population.ngsp = ngsp
    cfg.population.g = g
    cfg.game.T = T
    for key, value in pop.items():
        setattr(cfg.population, key, value)
    return cfg


def _subpop(values, payoffs=None, spn=0):
    sp = SubPop0(len(values))
    for k, x in enumerate(values):
        indi = Individual.from_gametes(Gamete([x, x, x]), spn=spn)
        if payoffs is not None:
            indi.phenotype.payoff = payoffs[k]
        sp.add(indi)
    return sp


def _no_mutation():
    return MutRec(mut_rate=0.0, SD=0.0, max_val=10.0, min_val=-10.0, rho=0.5)


# ─── Partition ────────────────────────────────────────────────────────

class TestPartition:
    @pytest.mark.parametrize('nsp, nthr', [(1, 1), (4, 2), (5, 2), (7, 3), (8, 8)])
    def test_covers_each_subpop_once(self, nsp, nthr):
        ranges = partition_subpops(nsp, nthr)
        assert len(ranges) == nthr
        owned = [n for np1, np2 in ranges for n in range(np1, np2)]
        assert owned == list(range(nsp))

    def test_last_worker_takes_remainder(self):
        assert partition_subpops(7, 3) == [(0, 2), (2, 4), (4, 7)]


# ─── Quality assignment ───────────────────────────────────────────────

class TestAssignQualities:
    def test_values_from_qv_and_p(self):
        sp = _subpop([0.1, 0.2, 0.3, 0.4])
        qv = np.array([0.5, 1.5])
        assign_qualities(sp, qv, np.random.default_rng(1))
        for indi in sp:
            ph = indi.phenotype
            assert ph.q in (0.5, 1.5)
            assert ph.p == pytest.approx(ph.q + ph.d)


# ─── Selection and reproduction ───────────────────────────────────────

class TestSelectReproduce:
    def test_offspring_count_and_tags(self):
        sp = _subpop([0.1, 0.2, 0.3], payoffs=[1.0, 1.0, 1.0])
        kids = select_reproduce(sp, _no_mutation(), np.random.default_rng(3), 7, spn=5)
        assert len(kids) == 7
        assert all(k.alive and k.spn == 5 for k in kids)
        assert all(k.phenotype.payoff == 0.0 for k in kids)

    def test_empty_subpop(self):
        kids = select_reproduce(SubPop0(3), _no_mutation(), np.random.default_rng(3), 5, spn=0)
        assert kids == []

    def test_single_positive_parent_is_only_parent(self):
        sp = _subpop([0.1, 0.2, 0.3], payoffs=[0.0, 2.0, -5.0])
        kids = select_reproduce(sp, _no_mutation(), np.random.default_rng(4), 50, spn=0)
        for k in kids:
            assert k.genotype == sp[1].genotype

    def test_selection_is_proportional(self):
        sp = _subpop([0.0, 1.0], payoffs=[1.0, 3.0])
        kids = select_reproduce(sp, _no_mutation(), np.random.default_rng(5), 4000, spn=0)
        # locus values: 0 from parent 0, 1 from parent 1
        frac_mat_1 = np.mean([k.genotype.mat_gam[0] for k in kids])
        assert frac_mat_1 == pytest.approx(0.75, abs=0.03)

    def test_all_zero_payoffs_uniform(self):
        sp = _subpop([0.0, 1.0], payoffs=[0.0, 0.0])
        kids = select_reproduce(sp, _no_mutation(), np.random.default_rng(6), 4000, spn=0)
        frac = np.mean([k.genotype.mat_gam[0] for k in kids])
        assert frac == pytest.approx(0.5, abs=0.03)

    def test_draw_order(self):
        """Mother index, father index, mother gamete, father gamete."""
        sp = _subpop([0.1, 0.2, 0.3, 0.4], payoffs=[0.0] * 4)
        for i in range(4):
            sp[i].genotype.pat_gam = Gamete([-1.0, -2.0, -3.0 - i])
        mr = _no_mutation()
        kids = select_reproduce(sp, mr, np.random.default_rng(11), 5, spn=0)

        shadow = np.random.default_rng(11)
        for kid in kids:
            imat = int(shadow.integers(0, 4))
            ipat = int(shadow.integers(0, 4))
            mat_gam = sp[imat].get_gamete(mr, shadow)
            pat_gam = sp[ipat].get_gamete(mr, shadow)
            assert kid.genotype.mat_gam == mat_gam
            assert kid.genotype.pat_gam == pat_gam


# ─── Migration ────────────────────────────────────────────────────────

class TestMigrate:
    def _pops(self, nsp=3, ngsp=2, g=2):
        ns = ngsp * g
        pop = MetaPopState(nsp, ns)
        next_pop = MetaPopState(nsp, ns)
        for n in range(nsp):
            for i in range(ns):
                pop[n].add(Individual.from_gametes(Gamete([-1.0, 0.0, 0.0]), spn=n))
                next_pop[n].add(Individual.from_gametes(Gamete([n * ns + i, 0.0, 0.0]), spn=n))
        return pop, next_pop

    def test_every_individual_placed_once(self):
        pop, next_pop = self._pops()
        migrate(pop, next_pop, np.random.default_rng(8), 2, 2)
        ids = sorted(int(indi.genotype.mat_gam[0]) for indi in pop.individuals())
        assert ids == list(range(12))

    def test_destination_tags(self):
        pop, next_pop = self._pops()
        migrate(pop, next_pop, np.random.default_rng(8), 2, 2)
        for n in range(3):
            for k in range(2):
                for j in range(2):
                    indi = pop[n][k * 2 + j]
                    assert indi.spn == n
                    assert indi.phenotype.gnum == k + 1
                    assert indi.phenotype.inum == j + 1

    def test_follows_permutation(self):
        pop, next_pop = self._pops()
        indx = np.random.default_rng(8).permutation(12)
        migrate(pop, next_pop, np.random.default_rng(8), 2, 2)
        placed = [int(indi.genotype.mat_gam[0]) for indi in pop.individuals()]
        assert placed == indx.tolist()


# ─── Construction ─────────────────────────────────────────────────────

class TestEvoSetup:
    def test_sizes(self):
        evo = Evo(_config(nsp=3, ngsp=5, g=4, threads=8))
        assert evo.Ns == 20
        assert evo.N == 60
        assert evo.ng == 15
        assert evo.num_thrds == 3

    def test_thread_override(self):
        evo = Evo(_config(nsp=4, threads=4), num_threads=2)
        assert evo.num_thrds == 2

    def test_seeded_population(self):
        evo = Evo(_config(nsp=2, ngsp=3, g=2, all0=[0.1, 0.2, 0.0]))
        assert evo.pop_ok
        assert evo.pop.total_inds() == 12
        for n in range(2):
            sp = evo.pop[n]
            for k in range(3):
                for i in range(2):
                    indi = sp[k * 2 + i]
                    assert indi.spn == n
                    assert (indi.phenotype.gnum, indi.phenotype.inum) == (k + 1, i + 1)
                    np.testing.assert_allclose(indi.genotype.value(), [0.2, 0.4, 0.0])

    def test_seed_entropy(self):
        assert Evo(_config(seed=5)).seed_entropy == 5
        assert Evo(_config(seed=5), seed=9).seed_entropy == 9
        assert isinstance(Evo(_config(seed=None)).seed_entropy, int)

    def test_missing_start_file(self, tmp_path):
        cfg = _config(read_from_file=True, in_name=str(tmp_path / "nope.txt"))
        evo = Evo(cfg)
        assert not evo.pop_ok
        result = evo.run()
        assert isinstance(result, EvoResult)
        assert not result.completed

    def test_default_config(self):
        evo = Evo()
        assert evo.N == 4 * 25 * 4


# ─── End-to-end scenarios ─────────────────────────────────────────────

class TestScenarios:
    def test_scenario_a_closed_form_payoff(self):
        cfg = _config(nsp=1, ngsp=1, g=4, T=1, numgen=1, threads=1,
                      all0=[0.1, 0.25, 0.05])
        cfg.learning.sigma = 1e-9
        cfg.game.qv = [1.0]
        evo = Evo(cfg)
        result = evo.run()

        theta, q = 0.5, 1.0
        gm = cfg.game
        B = gm.B0 + gm.B1 * theta + 0.5 * gm.B2 * theta ** 2
        expected = B - (gm.K1 + 0.5 * gm.K11 * theta + gm.K12 * q) * theta
        for indi in evo.pop[0]:
            assert indi.phenotype.payoff == pytest.approx(expected, abs=1e-6)
            assert indi.phenotype.a == pytest.approx(theta, abs=1e-6)
            assert indi.phenotype.p == pytest.approx(q + 0.1)
        assert result.gen_mean_payoff[0] == pytest.approx(expected, abs=1e-6)

    def test_scenario_b_single_generation(self, tmp_path):
        out = tmp_path / "out.txt"
        cfg = _config(nsp=3, ngsp=2, g=4, numgen=1, threads=2, out_name=str(out))
        evo = Evo(cfg)
        result = evo.run()
        assert result.completed
        assert result.output_written
        assert evo.next_pop.total_inds() == 0

        lines = out.read_text().splitlines()
        rows = [line.split('\t') for line in lines[1:]]
        assert len(rows) == 4 * 2 * 3
        assert all(row[-1] == '1' for row in rows)
        assert result.final_n == 24

    def test_scenario_c_reproducible(self, tmp_path):
        paths = []
        for k in range(2):
            out = tmp_path / f"run{k}.txt"
            run_evolution(_config(nsp=4, numgen=4, threads=2), out_name=out)
            paths.append(out)
        assert paths[0].read_bytes() == paths[1].read_bytes()

    def test_scenario_c_thread_count(self, tmp_path):
        counts = []
        for threads in (1, 3):
            out = tmp_path / f"t{threads}.txt"
            result = run_evolution(_config(nsp=4, numgen=4, threads=threads), out_name=out)
            assert result.num_threads == threads
            counts.append(len(out.read_text().splitlines()) - 1)
        assert counts == [4 * 3 * 4] * 2


# ─── Generation loop details ──────────────────────────────────────────

class TestRun:
    def test_result_series(self):
        cfg = _config(numgen=5, all0=[0.1, 0.2, 0.0])
        result = Evo(cfg).run()
        assert result.completed
        for name in ('payoff', 'w0', 'theta0', 'd', 'theta'):
            series = getattr(result, f'gen_mean_{name}')
            assert series.shape == (5,)
            assert np.all(np.isfinite(series))
        # no mutation before the first generation
        assert result.gen_mean_w0[0] == pytest.approx(0.2)
        assert result.gen_mean_theta0[0] == pytest.approx(0.4)

    def test_last_generation_means_match_final_population(self):
        cfg = _config(nsp=3, numgen=4, threads=3, all0=[0.1, 0.2, 0.0])
        cfg.genetics.mut_rate = [0.5, 0.5, 0.5]
        evo = Evo(cfg)
        result = evo.run()
        diag = compute_trait_diagnostics(evo.pop.individuals())
        assert diag.n == evo.N
        for name in ('w0', 'theta0', 'd'):
            assert getattr(result, f'gen_mean_{name}')[-1] == pytest.approx(diag.trait_mean(name))
        assert result.gen_mean_payoff[-1] == pytest.approx(diag.mean_payoff)
        assert result.gen_mean_theta[-1] == pytest.approx(diag.mean_theta)

    def test_population_size_constant(self):
        evo = Evo(_config(nsp=3, numgen=6, threads=2))
        evo.run()
        assert evo.pop.total_inds() == evo.N
        for n, sp in enumerate(evo.pop):
            assert sp.size() == evo.Ns
            for k in range(evo.ngsp):
                for j in range(evo.g):
                    indi = sp[k * evo.g + j]
                    assert indi.spn == n
                    assert indi.alive
                    assert (indi.phenotype.gnum, indi.phenotype.inum) == (k + 1, j + 1)

    def test_progress_callback(self):
        calls = []
        Evo(_config(numgen=4)).run(progress_callback=lambda d, t: calls.append((d, t)))
        assert calls == [(1, 4), (2, 4), (3, 4), (4, 4)]

    def test_perf_components(self):
        perf = PerfMonitor(enabled=True)
        Evo(_config(numgen=3)).run(perf=perf)
        stats = perf.get_stats()
        assert {'interaction', 'reproduction', 'migration'} <= set(stats)
        assert stats['migration'].call_count == 2

    def test_evolution_changes_genotypes(self):
        cfg = _config(nsp=2, numgen=10)
        cfg.genetics.mut_rate = [0.5, 0.5, 0.5]
        cfg.genetics.SD = [0.1, 0.1, 0.1]
        evo = Evo(cfg)
        evo.run()
        values = {tuple(indi.genotype.value()) for indi in evo.pop.individuals()}
        assert len(values) > 1

    @pytest.mark.parametrize('failing_spn', [0, 1, 2])
    def test_worker_failure_propagates(self, monkeypatch, failing_spn):
        import acevo.model as model

        real = model.assign_qualities

        def failing(sp, qv, rng):
            if sp.state.spn == failing_spn:
                raise RuntimeError("boom")
            real(sp, qv, rng)

        monkeypatch.setattr(model, 'assign_qualities', failing)
        with pytest.raises(RuntimeError, match="boom"):
            Evo(_config(nsp=3, threads=3)).run()

    @pytest.mark.parametrize('threads', [1, 3])
    def test_progress_callback_failure_propagates(self, threads):
        def callback(done, total):
            if done == 2:
                raise RuntimeError("callback failed")

        with pytest.raises(RuntimeError, match="callback failed"):
            Evo(_config(nsp=3, numgen=4, threads=threads)).run(progress_callback=callback)


class TestContinueGeneration:
    def _start_file(self, tmp_path, q):
        cfg = _config(nsp=1, ngsp=2, g=2, numgen=1, threads=1)
        evo = Evo(cfg)
        for indi in evo.pop.individuals():
            indi.phenotype.set_q(q)
        path = tmp_path / "start.txt"
        assert evo.pop.write_to_file(path)
        return path

    def test_cont_gen_keeps_quality(self, tmp_path):
        path = self._start_file(tmp_path, 7.0)
        cfg = _config(nsp=1, ngsp=2, g=2, numgen=1, threads=1,
                      read_from_file=True, in_name=str(path), cont_gen=True)
        evo = Evo(cfg)
        assert evo.pop_ok
        evo.run()
        assert all(indi.phenotype.q == 7.0 for indi in evo.pop.individuals())

    def test_without_cont_gen_quality_redrawn(self, tmp_path):
        path = self._start_file(tmp_path, 7.0)
        cfg = _config(nsp=1, ngsp=2, g=2, numgen=1, threads=1,
                      read_from_file=True, in_name=str(path))
        evo = Evo(cfg)
        evo.run()
        qv = set(cfg.game.qv)
        assert all(indi.phenotype.q in qv for indi in evo.pop.individuals())

    def test_wrong_count_rejected(self, tmp_path):
        path = self._start_file(tmp_path, 1.0)
        cfg = _config(nsp=2, ngsp=2, g=2, numgen=1, threads=1,
                      read_from_file=True, in_name=str(path))
        assert not Evo(cfg).pop_ok
