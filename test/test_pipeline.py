"""
End-to-end tests of the pipeline orchestrator and its command-line entry point.
"""

import json
import os

import geopandas as gpd
import pandas as pd
import pytest

from pipelines.run_metabolism_analysis import MetabolismAnalysisPipeline, PipelineResult, main


@pytest.fixture
def boundary_file(tmp_path, source_climate):
    """Buffered points around the sampled sites, written as a shapefile."""
    sites = source_climate.dropna(subset=['Lat']).drop_duplicates('Pop')
    points = gpd.GeoSeries(gpd.points_from_xy(sites['Long'], sites['Lat']), crs='EPSG:4326')
    boundary = gpd.GeoDataFrame({'name': list(sites['Pop'])}, geometry=points.buffer(3), crs='EPSG:4326')
    path = tmp_path / 'boundary' / 'quarantine_boundary.shp'
    path.parent.mkdir()
    boundary.to_file(path)
    return str(path)


@pytest.fixture(scope='module')
def completed_run(tmp_path_factory):
    """One full run shared by the output checks."""
    from conftest import build_climate, build_measurements

    root = tmp_path_factory.mktemp('pipeline')
    measurements_path = root / 'respirometry.csv'
    climate_path = root / 'population_climate.csv'
    build_measurements().to_csv(measurements_path, index=False)
    build_climate().to_csv(climate_path, index=False)

    output_dir = root / 'results'
    pipeline = MetabolismAnalysisPipeline(str(measurements_path), str(climate_path), str(output_dir))
    result = pipeline.run(skip_stages=['figures'])
    return result, output_dir


class TestFullRun:

    def test_all_stages_succeed(self, completed_run):
        result, _ = completed_run
        assert isinstance(result, PipelineResult)
        assert result.succeeded
        assert result.statuses['figures'] == 'skipped'
        assert all(status == 'success' for stage, status in result.statuses.items() if stage != 'figures')

    def test_stage_outputs_written(self, completed_run):
        _, output_dir = completed_run
        for relative in ['lme/lme_anova.csv', 'lme/lme_summary.txt', 'marginal_means/emmeans.csv',
                         'marginal_means/emmeans_pairwise.csv', 'pca/pca_scores.csv',
                         'regression/regression_results.csv', 'metabolism_report.md',
                         'run_metadata.json', 'pipeline_execution.log']:
            assert (output_dir / relative).exists(), relative

    def test_results_carried_between_stages(self, completed_run):
        result, _ = completed_run
        assert len(result.prepared.long) == 3 * 4 * 3 * 4
        assert len(result.marginal_means.estimates) == 12
        assert list(result.regression.table['component'].unique()) == ['PC1', 'PC2']
        assert len(result.regression.table) == 6

    def test_metadata(self, completed_run):
        _, output_dir = completed_run
        with open(output_dir / 'run_metadata.json', encoding='utf-8') as f:
            metadata = json.load(f)
        assert metadata['design']['reference_population'] == 'AL'
        assert metadata['model']['optimizer'] == 'default'
        assert metadata['model']['converged'] is True
        assert metadata['design']['temperature_levels'] == [15, 25, 30]
        assert metadata['exclusions']['climate_rows_excluded'] == 1
        assert metadata['regression']['multiple_comparison_correction'] is None

    def test_report_sections(self, completed_run):
        _, output_dir = completed_run
        report = (output_dir / 'metabolism_report.md').read_text(encoding='utf-8')
        for heading in ['## Data', '## Mixed-effects model', '## Estimated marginal means',
                        '## Climate PCA', '## Marginal-mean rate vs climate components']:
            assert heading in report
        assert 'without multiple-comparison correction' in report

    def test_report_tables_rendered(self, completed_run):
        result, output_dir = completed_run
        report = (output_dir / 'metabolism_report.md').read_text(encoding='utf-8')
        assert result.fitted.anova.to_markdown(index=False, floatfmt='.3f') in report
        assert result.regression.table.to_markdown(index=False, floatfmt='.3f') in report


def test_figures_with_boundary(input_files, boundary_file, tmp_path):
    output_dir = tmp_path / 'results'
    pipeline = MetabolismAnalysisPipeline(*input_files, str(output_dir), boundary_path=boundary_file)
    result = pipeline.run(skip_stages=['report'])
    assert result.statuses['figures'] == 'success'
    figures = result.outputs['figures']
    assert len(figures) == 10
    assert all(os.path.exists(p) for p in figures.values())


def test_critical_failure_stops_run(tmp_path, input_files, source_measurements):
    bad = source_measurements.copy()
    bad.loc[0, 'Mass'] = -1.0
    bad_path = tmp_path / 'bad.csv'
    bad.to_csv(bad_path, index=False)

    pipeline = MetabolismAnalysisPipeline(str(bad_path), input_files[1], str(tmp_path / 'results'))
    result = pipeline.run()
    assert not result.succeeded
    assert result.statuses['ingestion'] == 'failed'
    assert result.statuses['lme'] == 'skipped'
    assert result.fitted is None


def test_optional_failure_still_succeeds():
    statuses = {'ingestion': 'success', 'lme': 'success', 'figures': 'failed', 'report': 'success'}
    assert PipelineResult(statuses=statuses).succeeded
    assert not PipelineResult(statuses={**statuses, 'lme': 'failed'}).succeeded


def test_only_optional_stages_skippable(input_files, tmp_path):
    pipeline = MetabolismAnalysisPipeline(*input_files, str(tmp_path / 'results'))
    with pytest.raises(ValueError, match='lme'):
        pipeline.run(skip_stages=['lme'])


class TestMain:

    def test_dry_run(self, input_files, tmp_path):
        code = main(['--measurements', input_files[0], '--climate', input_files[1],
                     '--output-dir', str(tmp_path / 'results'), '--dry-run'])
        assert code == 0
        assert not (tmp_path / 'results' / 'lme').exists()

    def test_missing_input(self, input_files, tmp_path):
        code = main(['--measurements', str(tmp_path / 'missing.csv'), '--climate', input_files[1],
                     '--output-dir', str(tmp_path / 'results')])
        assert code == 1

    def test_full_run_without_figures(self, input_files, tmp_path):
        code = main(['--measurements', input_files[0], '--climate', input_files[1],
                     '--output-dir', str(tmp_path / 'results'), '--skip-stages', 'figures'])
        assert code == 0
        estimates = pd.read_csv(tmp_path / 'results' / 'marginal_means' / 'emmeans.csv')
        assert {'lcmpl', 'ucmpl', 'comparison_defined'} <= set(estimates.columns)

    def test_optional_stage_failure_exits_zero(self, input_files, tmp_path, monkeypatch):
        import metabolism.visualizer

        def broken_figures(*args, **kwargs):
            raise RuntimeError('no display')

        monkeypatch.setattr(metabolism.visualizer, 'generate_all_figures', broken_figures)
        code = main(['--measurements', input_files[0], '--climate', input_files[1],
                     '--output-dir', str(tmp_path / 'results')])
        assert code == 0
        assert (tmp_path / 'results' / 'metabolism_report.md').exists()
