import json

import pandas as pd
import pytest

from elep.models.orchestrator import DEFAULT_CONFIG, ModelOrchestrator, load_configuration, main


@pytest.fixture
def config_path(tmp_path, household_csv):
    config = {
        'scenario_name': 'test_run',
        'data_settings': {'input_path': str(household_csv), 'random_seed': 42},
        'pipeline_settings': {'perform_cv': True, 'cv_folds': 3, 'generate_plots': False},
        'models_to_run': [1, 2, 3, 4],
        'model_settings': DEFAULT_CONFIG['model_settings'],
        'output_settings': {
            'output_base_dir': str(tmp_path / "report" / "models"),
            'log_dir': str(tmp_path / "report" / "logs"),
            'orchestration_dir': str(tmp_path / "report" / "orchestration"),
        },
    }
    path = tmp_path / "Orchestrator.json"
    path.write_text(json.dumps(config))
    return path


def test_full_report(config_path, tmp_path):
    orchestrator = ModelOrchestrator(config_path)
    assert orchestrator.run() == 0
    assert sorted(orchestrator.results) == [1, 2, 3, 4]

    out = tmp_path / "report" / "orchestration"
    comparison = pd.read_csv(out / "orchestration_comparison.csv")
    assert list(comparison['RMSE_Test']) == sorted(comparison['RMSE_Test'])

    with open(out / "orchestration_summary.json") as f:
        summary = json.load(f)
    assert summary['scenario'] == "test_run"
    assert summary['best_model']['id'] == int(comparison['Model_ID'].iloc[0])

    report = (out / "elep_report.txt").read_text()
    for heading in ("Model 1: Simple Model", "Model 2: No-Interaction Model",
                    "Model 3: Interaction Model", "Model 4: Best-Subset Selection"):
        assert heading in report
    assert "Selected size k*" in report
    assert "ANOVA vs main-effects model (NP:RMSP)" in report

    assert (tmp_path / "report" / "logs" / "Orchestrator_log.txt").exists()
    assert (tmp_path / "report" / "models" / "model_4" / "subset_errors.csv").exists()


def test_defaults_fill_missing_sections(config_path):
    config = load_configuration(config_path)
    assert config['data_settings']['test_size'] == 0.2
    assert config['pipeline_settings']['unseen_level_policy'] == "raise"


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_configuration(tmp_path / "absent.json")


@pytest.mark.parametrize("edit", [
    lambda c: c.pop('models_to_run'),
    lambda c: c.update(models_to_run=[1, 9]),
    lambda c: c.update(pipeline_settings={'unseen_level_policy': 'ignore'}),
])
def test_invalid_config(config_path, edit):
    config = json.loads(config_path.read_text())
    edit(config)
    config_path.write_text(json.dumps(config))
    with pytest.raises(ValueError):
        load_configuration(config_path)


def test_missing_input_fails_run(config_path, tmp_path):
    orchestrator = ModelOrchestrator(config_path, overrides={'input_path': str(tmp_path / "nope.csv")})
    assert orchestrator.run() == 1
    assert orchestrator.results == {}


def test_main_exit_codes(config_path, tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(tmp_path / "absent.json")])
    assert excinfo.value.code == 1

    config = json.loads(config_path.read_text())
    config['models_to_run'] = [1]
    config['pipeline_settings']['perform_cv'] = False
    config_path.write_text(json.dumps(config))

    with pytest.raises(SystemExit) as excinfo:
        main(["--config", str(config_path), "--seed", "7"])
    assert excinfo.value.code == 0


def test_configured_model_name_reaches_report(config_path, tmp_path):
    config = json.loads(config_path.read_text())
    config['models_to_run'] = [1]
    config['pipeline_settings']['perform_cv'] = False
    config['model_settings']['1']['name'] = "Household Size Baseline"
    config_path.write_text(json.dumps(config))

    orchestrator = ModelOrchestrator(config_path)
    assert orchestrator.run() == 0
    assert orchestrator.results[1]['model_name'] == "Household Size Baseline"

    report = (tmp_path / "report" / "orchestration" / "elep_report.txt").read_text()
    assert "Model 1: Household Size Baseline" in report
