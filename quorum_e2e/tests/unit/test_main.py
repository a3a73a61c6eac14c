"""
End-to-end runs of the command line entry point against the simulator.
"""

import json
import logging

import pytest
import yaml

from quorum_e2e.main import build_parser, main
from quorum_e2e.tests.conftest import FAST_SETTINGS


@pytest.fixture(autouse=True)
def restore_root_logger():
    """main() reconfigures the root logger; put pytest's handlers back."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "harness.yaml"
    with open(path, "w") as f:
        yaml.safe_dump({"harness": FAST_SETTINGS}, f)
    return path


class TestParser:

    def test_target_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_targets_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--simulate", "--cluster-url", "http://x"])

    def test_unknown_scenario_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--simulate", "--scenario", "nope"])

    def test_defaults(self):
        args = build_parser().parse_args(["--simulate"])

        assert args.scenario == "all"
        assert args.output_dir == "output"
        assert args.nodes is None


class TestMain:

    @pytest.mark.asyncio
    async def test_simulated_suite_writes_results(self, tmp_path, config_file):
        exit_code = await main([
            "--simulate",
            "--scenario", "discovery",
            "--config", str(config_file),
            "--output-dir", str(tmp_path / "out"),
            "--log-file", str(tmp_path / "logs" / "run.log"),
        ])

        assert exit_code == 0
        with open(tmp_path / "out" / "scenario_results.json") as f:
            report = json.load(f)
        assert report["target"] == "simulated cluster"
        assert report["total_scenarios"] == 3
        assert report["failed"] == 0
        assert report["seed"] == FAST_SETTINGS["seed"]
        assert {r["scenario_name"] for r in report["results"]} == {
            "split_brain_avoidance", "block_enforcement", "master_link_partition"}
        assert (tmp_path / "logs" / "run.log").exists()

    @pytest.mark.asyncio
    async def test_command_line_overrides_config(self, tmp_path, config_file):
        exit_code = await main([
            "--simulate",
            "--scenario", "rejoin_consistency",
            "--config", str(config_file),
            "--nodes", "5",
            "--seed", "7",
            "--output-dir", str(tmp_path),
        ])

        assert exit_code == 0
        with open(tmp_path / "scenario_results.json") as f:
            report = json.load(f)
        assert report["config"]["node_count"] == 5
        assert report["seed"] == 7

    @pytest.mark.asyncio
    async def test_invalid_config(self, tmp_path):
        bad = tmp_path / "bad.yaml"
        bad.write_text("node_count: 1\n")

        exit_code = await main(["--simulate", "--config", str(bad),
                                "--output-dir", str(tmp_path)])

        assert exit_code == 2
        assert not (tmp_path / "scenario_results.json").exists()

    @pytest.mark.asyncio
    async def test_missing_config(self, tmp_path):
        exit_code = await main(["--simulate", "--config", str(tmp_path / "absent.yaml"),
                                "--output-dir", str(tmp_path)])

        assert exit_code == 2
