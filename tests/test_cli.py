"""Tests for the command-line entry points."""
import pytest
from fastapi.testclient import TestClient

from blindmatch.cli import build_parser, config_from_args, main, serve_main


def small_args(tmp_path, *extra):
    return [
        "--backend", "simulated",
        "--num-vectors", "20",
        "--vec-dim", "512",
        "--batch-size", "8",
        "--store-dir", str(tmp_path),
        *extra,
    ]


class TestArguments:
    """Test argument parsing."""

    def test_defaults(self):
        config = config_from_args(build_parser().parse_args(["--backend", "simulated"]))

        assert config.mult_depth == 30
        assert config.num_vectors == 50
        assert config.vec_dim == 512
        assert config.batch_size == 512
        assert config.threshold == 0.85
        assert (config.threshold_t, config.num_parties) == (2, 3)

    def test_overrides(self):
        args = build_parser().parse_args([
            "--mult-depth", "40", "--inter-batch", "hierarchical",
            "--fallback-bias", "0.1", "--workers", "4",
        ])
        config = config_from_args(args)

        assert config.mult_depth == 40
        assert config.inter_batch == "hierarchical"
        assert config.fallback_bias == 0.1
        assert config.workers == 4

    def test_invalid_choice(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--backend", "paillier"])


class TestMain:
    """Test exit codes and report output."""

    def test_success(self, tmp_path, capsys):
        assert main(small_args(tmp_path)) == 0

        out = capsys.readouterr().out
        assert "VERIFICATION RESULTS" in out
        assert "NOT UNIQUE" in out
        assert "Final Level:" in out

    def test_depth_budget_failure(self, tmp_path, capsys):
        assert main(small_args(tmp_path, "--mult-depth", "6")) == 1

        err = capsys.readouterr().err
        assert "FATAL ERROR" in err
        assert "depth budget" in err

    def test_invalid_configuration(self, tmp_path, capsys):
        assert main(small_args(tmp_path, "--threshold-t", "5")) == 1
        assert "FATAL ERROR" in capsys.readouterr().err

    def test_empty_database(self, tmp_path, capsys):
        args = small_args(tmp_path)
        args[args.index("--num-vectors") + 1] = "0"

        assert main(args) == 1
        assert "FATAL ERROR" in capsys.readouterr().err

    def test_negative_seed(self, tmp_path, capsys):
        argv = ["--backend", "simulated", "-n", "4", "-d", "8", "--seed", "-1",
                "--store-dir", str(tmp_path)]

        assert main(argv) == 1
        err = capsys.readouterr().err
        assert "FATAL ERROR" in err
        assert "seed must be >= 0" in err

    def test_backend_runtime_error(self, tmp_path, capsys, monkeypatch):
        def failing_verification(config):
            raise RuntimeError("crypto context lost")

        monkeypatch.setattr("blindmatch.cli.run_verification", failing_verification)

        assert main(small_args(tmp_path)) == 1
        assert "FATAL ERROR: crypto context lost" in capsys.readouterr().err


class TestServe:
    """Test the blindmatch-serve command."""

    def serve_args(self, tmp_path, *extra):
        return [
            "--backend", "simulated",
            "--num-vectors", "6",
            "--vec-dim", "16",
            "--batch-size", "4",
            "--store-dir", str(tmp_path),
            *extra,
        ]

    def test_serves_encrypted_store(self, tmp_path, monkeypatch):
        seen = {}

        def fake_run_server(app, host, port):
            seen["host"], seen["port"] = host, port
            seen["store_path"] = app.state.store_path
            seen["store_existed"] = app.state.store_path.exists()
            seen["health"] = TestClient(app).get("/health").json()

        monkeypatch.setattr("blindmatch.cli.run_server", fake_run_server)

        assert serve_main(self.serve_args(tmp_path, "--port", "9123")) == 0

        assert (seen["host"], seen["port"]) == ("127.0.0.1", 9123)
        assert seen["store_existed"]
        assert seen["health"]["engine"] == "simulated"
        assert seen["health"]["batch_size"] == 4
        assert not seen["store_path"].exists()

    def test_store_removed_when_server_fails(self, tmp_path, monkeypatch):
        seen = {}

        def failing_run_server(app, host, port):
            seen["store_path"] = app.state.store_path
            raise KeyboardInterrupt

        monkeypatch.setattr("blindmatch.cli.run_server", failing_run_server)

        with pytest.raises(KeyboardInterrupt):
            serve_main(self.serve_args(tmp_path))
        assert not seen["store_path"].exists()

    def test_invalid_configuration(self, tmp_path, capsys, monkeypatch):
        monkeypatch.setattr(
            "blindmatch.cli.run_server",
            lambda app, host, port: pytest.fail("server started"),
        )

        assert serve_main(self.serve_args(tmp_path, "--seed", "-1")) == 1
        assert "FATAL ERROR" in capsys.readouterr().err
