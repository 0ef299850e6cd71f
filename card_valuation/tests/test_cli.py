"""
card_valuation/tests/test_cli.py: Tests for the click commands that drive the pipeline
"""

import csv
import json

import pytest
from click.testing import CliRunner

from card_valuation.catalog.set_resolver import SetResolver
from card_valuation.cli.main import cli
from card_valuation.features.extractor import FeatureExtractionService
from card_valuation.pricing.orchestrator import PricingOrchestrator
from card_valuation.reasoning.service import OcrReasoningService
from card_valuation.storage.image_store import LocalImageStore
from card_valuation.workflow import WorkflowCoordinator
from card_valuation.workflow import coordinator as coordinator_module
from card_valuation.tests.conftest import FakeAdapter, FakeCatalog, FakeLLM, FakeVision


@pytest.fixture
def fake_coordinator(monkeypatch, temp_dir, charizard_blocks, charizard_json, charizard_printings, usd_comps):
    coordinator = WorkflowCoordinator(
        extractor=FeatureExtractionService(LocalImageStore(temp_dir), FakeVision(blocks=charizard_blocks)),
        reasoner=OcrReasoningService(FakeLLM(charizard_json)),
        resolver=SetResolver(FakeCatalog(charizard_printings)),
        pricing=PricingOrchestrator([FakeAdapter("PokemonTCG", usd_comps)]),
    )
    monkeypatch.setattr(coordinator_module, "build_default_coordinator", lambda *args, **kwargs: coordinator)
    return coordinator


class TestIdentifyCommand:
    def test_json_output(self, fake_coordinator, sample_card_image_file):
        """Test identify --json prints the full result"""
        result = CliRunner().invoke(cli, ["identify", str(sample_card_image_file), "--json"])

        assert result.exit_code == 0, result.output
        body = json.loads(result.stdout)
        assert body["status"] == "SUCCEEDED"
        assert body["set_match"]["set_name"] == "Silver Tempest"

    def test_summary_output(self, fake_coordinator, sample_card_image_file):
        """Test the human-readable summary"""
        result = CliRunner().invoke(cli, ["identify", str(sample_card_image_file), "--resume", "cli-1"])

        assert result.exit_code == 0, result.output
        assert "Execution: cli-1" in result.output
        assert "Charizard VMAX" in result.output
        assert "$20.00" in result.output


class TestBatchCommand:
    def test_writes_csv(self, fake_coordinator, temp_dir, sample_card_image):
        """Test one CSV row per image"""
        scans = temp_dir / "scans"
        scans.mkdir()
        sample_card_image.save(scans / "a.png")
        sample_card_image.save(scans / "b.jpg")
        (scans / "notes.txt").write_text("ignored")
        out = temp_dir / "out" / "results.csv"

        result = CliRunner().invoke(cli, ["batch", str(scans), "--out", str(out)])

        assert result.exit_code == 0, result.output
        with open(out, newline="") as f:
            rows = list(csv.DictReader(f))
        assert [r["status"] for r in rows] == ["SUCCEEDED", "SUCCEEDED"]
        assert rows[0]["card_name"] == "Charizard VMAX"
        assert rows[0]["value_median"] == "20.00"

    def test_empty_directory(self, fake_coordinator, temp_dir):
        """Test that a directory without images is an error"""
        result = CliRunner().invoke(cli, ["batch", str(temp_dir), "--out", str(temp_dir / "r.csv")])

        assert result.exit_code != 0
        assert "No images found" in result.output


class TestMatchNameCommand:
    def test_ranked_matches(self, temp_dir):
        """Test known names ranked against misread text"""
        names = temp_dir / "names.txt"
        names.write_text("Charizard VMAX\nCharizard V\nPikachu\n", encoding="utf-8")

        result = CliRunner().invoke(cli, ["match-name", "Charizard VMAK", "--names", str(names)])

        assert result.exit_code == 0, result.output
        lines = result.stdout.strip().splitlines()
        assert lines[0].endswith("Charizard VMAX")
        assert not any(line.endswith("Pikachu") for line in lines)

    def test_no_dictionary(self, monkeypatch):
        """Test that a missing dictionary is an error"""
        monkeypatch.setattr("card_valuation.config.KNOWN_NAMES_PATH", None)
        result = CliRunner().invoke(cli, ["match-name", "Pikachu"])

        assert result.exit_code != 0
        assert "No known-name dictionary" in result.output
