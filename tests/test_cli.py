"""
Tests for the command line interface.
"""

import json
import pytest
import yaml
from click.testing import CliRunner
from datetime import datetime, timezone

from sop_pattern_engine import __version__
from sop_pattern_engine.main import cli
from sop_pattern_engine.drafting.sop_drafter import SOPDrafter
from sop_pattern_engine.models import PatternAnalysisResult, SequencePattern
from sop_pattern_engine.storage.stores import JsonFileDraftStore


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def store_dir(tmp_path):
    """A JSON draft store holding one drafted sequence."""
    directory = tmp_path / 'store'
    store = JsonFileDraftStore(directory)
    sequence = SequencePattern(
        id='SEQ-BRAND',
        sequence=['agent:brand-agent', 'tool:notion', 'approval'],
        frequency=6,
        users=['u1', 'u2'],
        avg_duration=120.0,
        first_seen=NOW,
        last_seen=NOW,
        confidence=0.6,
    )
    SOPDrafter(store).draft_from_sequence(sequence, 'org-1', 'pattern-1')
    return directory


@pytest.fixture
def analysis_file(tmp_path):
    result = PatternAnalysisResult(
        organization_id='org-1',
        analyzed_at=NOW,
        lookback_days=30,
        total_actions_analyzed=12,
        total_sequences_found=4,
    )
    path = tmp_path / 'analysis.json'
    with open(path, 'w') as f:
        json.dump(result.to_dict(), f)
    return path


class TestGenerate:
    """Tests for the generate command."""

    def test_generate(self, runner, tmp_path):
        output = tmp_path / 'data' / 'actions.json'
        result = runner.invoke(cli, [
            'generate', '--output', str(output), '--weeks', '1', '--seed', '5',
            '--start-date', '2026-01-05',
        ])

        assert result.exit_code == 0, result.output
        assert "Generated" in result.output
        assert "noise_sessions: 15" in result.output
        with open(output) as f:
            events = json.load(f)
        assert events
        assert all(e['organization_id'] == 'org-demo' for e in events)

    def test_invalid_start_date(self, runner, tmp_path):
        result = runner.invoke(cli, [
            'generate', '--output', str(tmp_path / 'a.json'), '--start-date', 'tomorrow',
        ])
        assert result.exit_code == 1
        assert not (tmp_path / 'a.json').exists()

    def test_weeks_out_of_range(self, runner, tmp_path):
        result = runner.invoke(cli, ['generate', '--output', str(tmp_path / 'a.json'),
                                     '--weeks', '0'])
        assert result.exit_code == 2


class TestRenderDraft:
    """Tests for the render-draft command."""

    def test_render_by_organization(self, runner, store_dir):
        result = runner.invoke(cli, ['render-draft', '--store-dir', str(store_dir),
                                     '--organization-id', 'org-1'])

        assert result.exit_code == 0, result.output
        document = yaml.safe_load(result.output)
        assert document['metadata']['name'] == 'Auto: Brand Agent Workflow'
        assert len(document['steps']) == 3

    def test_render_to_directory(self, runner, store_dir, tmp_path):
        draft = JsonFileDraftStore(store_dir).list_drafts('org-1')[0]
        output_dir = tmp_path / 'sops'
        result = runner.invoke(cli, ['render-draft', '-s', str(store_dir), '-d', draft.id,
                                     '-o', str(output_dir)])

        assert result.exit_code == 0, result.output
        written = output_dir / f'{draft.id}.yaml'
        assert written.exists()
        with open(written) as f:
            assert yaml.safe_load(f)['metadata']['id'] == draft.id

    def test_requires_selection(self, runner, store_dir):
        result = runner.invoke(cli, ['render-draft', '--store-dir', str(store_dir)])
        assert result.exit_code == 1

    def test_unknown_draft(self, runner, store_dir):
        result = runner.invoke(cli, ['render-draft', '-s', str(store_dir), '-d', 'missing'])
        assert result.exit_code == 1

    def test_no_drafts_for_organization(self, runner, store_dir):
        result = runner.invoke(cli, ['render-draft', '-s', str(store_dir),
                                     '--organization-id', 'org-2'])
        assert result.exit_code == 1

    def test_help_names_store_producer(self, runner):
        result = runner.invoke(cli, ['render-draft', '--help'])
        assert result.exit_code == 0
        assert 'JsonFileDraftStore(store_dir)' in result.output


class TestReport:
    """Tests for the report command."""

    def test_markdown_to_stdout(self, runner, analysis_file):
        result = runner.invoke(cli, ['report', '--input', str(analysis_file)])

        assert result.exit_code == 0, result.output
        assert "# Pattern Analysis Report: org-1" in result.output
        assert "- **Actions Analyzed**: 12" in result.output

    def test_json_to_file(self, runner, analysis_file, tmp_path):
        output = tmp_path / 'reports' / 'report.json'
        result = runner.invoke(cli, ['report', '-i', str(analysis_file), '-f', 'json',
                                     '-o', str(output)])

        assert result.exit_code == 0, result.output
        assert "Report saved to" in result.output
        with open(output) as f:
            report = json.load(f)
        assert report['summary']['total_sequences_found'] == 4

    def test_unreadable_input(self, runner, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('{"organization_id": "org-1"}')
        result = runner.invoke(cli, ['report', '-i', str(path)])
        assert result.exit_code == 1

    def test_help_names_input_producer(self, runner):
        result = runner.invoke(cli, ['report', '--help'])
        assert result.exit_code == 0
        assert 'PatternAnalysisResult.to_dict()' in result.output


class TestVersion:
    def test_version(self, runner):
        result = runner.invoke(cli, ['--version'])
        assert result.exit_code == 0
        assert __version__ in result.output
