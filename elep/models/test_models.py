import json

import numpy as np
import pandas as pd
import pytest

from elep.dataset import CleaningSpec
from elep.models.model_1_simple import Model1Simple
from elep.models.model_2_no_interaction import Model2NoInteraction
from elep.models.model_3_interaction import Model3Interaction
from elep.models.model_4_best_subset import Model4BestSubset


@pytest.fixture
def model_kwargs(tmp_path, household_csv):
    return {
        'input_path': household_csv,
        'output_base_dir': tmp_path / "models",
        'log_dir': tmp_path / "logs",
    }


@pytest.fixture
def make_model(model_kwargs):
    created = []

    def _make(cls, **kwargs):
        model = cls(**{**model_kwargs, **kwargs})
        created.append(model)
        return model

    yield _make
    for model in created:
        model.close_logging()


def test_simple_model_pipeline(make_model, tmp_path):
    model = make_model(Model1Simple)
    results = model.run_complete_pipeline(perform_cv=True, n_cv_folds=3, generate_plots=True)

    metrics = results['metrics']
    assert model.feature_names == ["NP", "BDSP", "RMSP"]
    assert metrics['n_features'] == 3
    assert metrics['rmse_test'] > 0
    assert -1 <= metrics['cv_mean'] <= 1
    assert len(results['cv_results']['scores']) == 3

    out = tmp_path / "models" / "model_1"
    for name in ("metrics.json", "predictions.csv", "coefficients.csv", "diagnostic_plots.png"):
        assert (out / name).exists()
    assert (tmp_path / "logs" / "model_1_log.txt").exists()

    predictions = pd.read_csv(out / "predictions.csv")
    assert len(predictions) == len(model.all_records)
    assert set(predictions['dataset']) == {"train", "validation"}
    np.testing.assert_allclose(predictions['residual'], predictions['actual'] - predictions['predicted'])


def test_split_is_reproducible(make_model):
    first = make_model(Model1Simple)
    first.load_data()
    first.split_data()
    second = make_model(Model1Simple)
    second.load_data()
    second.split_data()

    assert [r.serialno for r in first.test_records] == [r.serialno for r in second.test_records]


def test_unknown_predictor_rejected(make_model, tmp_path):
    with pytest.raises(ValueError):
        make_model(Model1Simple, predictors=["NP", "VALP"])
    # Rejected before any log file is opened
    assert not (tmp_path / "logs").exists()


def test_model_name_override(make_model):
    model = make_model(Model1Simple, model_name="Household Size Baseline")
    assert model.model_name == "Household Size Baseline"
    assert model.model_id == 1


def test_predict_before_fit(make_model):
    model = make_model(Model2NoInteraction)
    with pytest.raises(ValueError):
        model.predict(np.zeros((1, 17)))


def test_no_interaction_coefficients(make_model):
    model = make_model(Model2NoInteraction)
    model.run_complete_pipeline(perform_cv=False, generate_plots=False)

    table = model.coefficient_table
    assert len(table) == 18  # intercept + 17 columns
    assert (table['ci_95_lower'] <= table['coefficient']).all()
    assert (table['coefficient'] <= table['ci_95_upper']).all()
    # Synthetic response uses 12 * NP
    assert abs(table.loc['NP', 'coefficient'] - 12) < 4
    assert 'cv_mean' not in model.metrics

    lines = model.report_lines()
    assert any(line.strip().startswith("NP ") for line in lines)
    assert any("95% CI" in line for line in lines)


def test_interaction_anova(make_model):
    model = make_model(Model3Interaction)
    model.run_complete_pipeline(perform_cv=False, generate_plots=False)

    assert model.feature_names[-1] == "NP:RMSP"
    assert model.metrics['interaction'] == "NP:RMSP"
    assert model.metrics['anova_f'] >= 0
    assert 0 <= model.metrics['anova_p'] <= 1
    assert model.metrics['rss_main_effects'] >= model.metrics['rss_train']
    assert model.metrics['interaction_ci_lower'] <= model.metrics['interaction_coefficient'] \
        <= model.metrics['interaction_ci_upper']
    assert any("ANOVA" in line for line in model.report_lines())


def test_interaction_must_be_numeric(make_model, tmp_path):
    with pytest.raises(ValueError):
        make_model(Model3Interaction, interaction=["NP", "HFL"])
    assert not (tmp_path / "logs").exists()


def test_best_subset_pipeline(make_model, tmp_path):
    model = make_model(Model4BestSubset)
    results = model.run_complete_pipeline(perform_cv=True, n_cv_folds=3, generate_plots=False)

    metrics = results['metrics']
    assert metrics['search_method'] == "forward"  # K = 17 > 15
    assert metrics['n_candidate_columns'] == 17
    assert 1 <= metrics['selected_size'] <= 17
    assert metrics['n_features'] == metrics['selected_size']
    assert metrics['n_logical_predictors'] == len(metrics['logical_predictors']) <= 11
    assert metrics['validation_mse'] == pytest.approx(metrics['mse_test'])
    assert metrics['missing_sizes'] == []
    assert 1 <= metrics['cv_best_size'] <= 17
    assert 'cv_mean' not in metrics

    scored = [s for s in model.validation_scores if s is not None]
    assert metrics['validation_mse'] == min(scored)

    table = pd.read_csv(tmp_path / "models" / "model_4" / "subset_errors.csv")
    assert list(table['size']) == list(range(1, 18))
    assert table['rss_train'].is_monotonic_decreasing

    with open(tmp_path / "models" / "model_4" / "metrics.json") as f:
        saved = json.load(f)
    assert saved['selected_size'] == metrics['selected_size']

    lines = model.report_lines()
    assert sum(line.endswith(" *") for line in lines) == 1
    assert any(line.strip().startswith("Logical predictors") for line in lines)


def test_best_subset_exhaustive_on_small_design(make_model):
    spec = CleaningSpec(numeric=("NP", "BDSP", "RMSP", "R18"), categorical=("HTYPE",))
    model = make_model(Model4BestSubset, search_method="exhaustive", spec=spec)
    model.run_complete_pipeline(perform_cv=False, generate_plots=False)

    assert model.metrics['search_method'] == "exhaustive"
    assert len(model.candidates) == 5
    rss = [c.rss for c in model.candidates]
    assert all(b <= a for a, b in zip(rss, rss[1:]))
