"""Tests for acevo.cli: batch entry point."""

import pytest
import yaml

from acevo.cli import build_parser, main
from acevo.config import config_to_dict, default_config


def _config_file(tmp_path, **population):
    cfg = default_config()
    cfg.simulation.numgen = 3
    cfg.simulation.seed = 1
    cfg.population.nsp = 2
    cfg.population.ngsp = 2
    cfg.population.g = 3
    cfg.game.T = 4
    for key, value in population.items():
        setattr(cfg.population, key, value)
    path = tmp_path / "run.yaml"
    path.write_text(yaml.safe_dump(config_to_dict(cfg)))
    return path


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args(["c.yaml"])
        assert args.config == "c.yaml"
        assert args.seed is None
        assert args.threads is None
        assert not args.perf
        assert not args.verbose

    def test_options(self):
        args = build_parser().parse_args(
            ["c.yaml", "--seed", "3", "--threads", "2", "--out", "o.txt", "--perf", "-v"])
        assert (args.seed, args.threads, args.out) == (3, 2, "o.txt")
        assert args.perf and args.verbose


class TestMain:
    def test_run_writes_output(self, tmp_path, capsys):
        out = tmp_path / "out.txt"
        rc = main([str(_config_file(tmp_path)), "--out", str(out), "--threads", "2"])
        assert rc == 0
        printed = capsys.readouterr().out
        assert "Number of threads: 2" in printed
        assert "Elapsed time" in printed
        assert "100%" in printed
        assert len(out.read_text().splitlines()) == 1 + 2 * 2 * 3

    def test_same_seed_same_output(self, tmp_path):
        cfg = str(_config_file(tmp_path))
        a, b = tmp_path / "a.txt", tmp_path / "b.txt"
        assert main([cfg, "--out", str(a), "--seed", "8"]) == 0
        assert main([cfg, "--out", str(b), "--seed", "8"]) == 0
        assert a.read_bytes() == b.read_bytes()

    def test_perf_report(self, tmp_path, capsys):
        rc = main([str(_config_file(tmp_path)), "--perf"])
        assert rc == 0
        assert "wall clock" in capsys.readouterr().out

    def test_missing_config(self, tmp_path, capsys):
        assert main([str(tmp_path / "nope.yaml")]) == 1
        assert "Input failed!" in capsys.readouterr().out

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({'population': {'g': 0}}))
        assert main([str(path)]) == 1
        assert "Input failed!" in capsys.readouterr().out

    def test_bad_thread_count(self, tmp_path, capsys):
        assert main([str(_config_file(tmp_path)), "--threads", "0"]) == 1

    def test_invalid_start_population(self, tmp_path, capsys):
        path = _config_file(tmp_path, read_from_file=True,
                            in_name=str(tmp_path / "missing_start.txt"))
        assert main([str(path)]) == 1
        assert "Starting population not valid" in capsys.readouterr().out

    def test_unwritable_output(self, tmp_path):
        out = tmp_path / "no_dir" / "out.txt"
        assert main([str(_config_file(tmp_path)), "--out", str(out)]) == 1

    def test_help_exits(self):
        with pytest.raises(SystemExit):
            main(["--help"])
