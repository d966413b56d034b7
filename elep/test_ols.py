import numpy as np
import pytest

from elep.errors import InsufficientDataError, SingularMatrixError
from elep.ols import INTERCEPT, fit_ols, residual_sum_of_squares


@pytest.fixture
def toy():
    rng = np.random.RandomState(0)
    X = rng.uniform(-5, 5, size=(10, 2))
    y = 3 + 2 * X[:, 0] - 1 * X[:, 1]
    return X, y


def test_noiseless_fit_recovers_coefficients(toy):
    X, y = toy
    model = fit_ols(X, y, ["x1", "x2"])

    assert model.coefficients[INTERCEPT] == pytest.approx(3, abs=1e-9)
    assert model.coefficients["x1"] == pytest.approx(2, abs=1e-9)
    assert model.coefficients["x2"] == pytest.approx(-1, abs=1e-9)
    assert model.rss == pytest.approx(0, abs=1e-12)
    assert model.n_obs == 10


def test_noisy_fit_is_close():
    rng = np.random.RandomState(1)
    X = rng.uniform(0, 10, size=(500, 2))
    y = 3 + 2 * X[:, 0] - 1 * X[:, 1] + rng.normal(0, 0.05, 500)
    model = fit_ols(X, y, ["x1", "x2"])

    assert model.coefficients[INTERCEPT] == pytest.approx(3, abs=0.05)
    assert model.coefficients["x1"] == pytest.approx(2, abs=0.01)
    assert model.coefficients["x2"] == pytest.approx(-1, abs=0.01)
    assert model.rsquared > 0.99


def test_predict_matches_fitted_values(toy):
    X, y = toy
    model = fit_ols(X, y, ["x1", "x2"])
    np.testing.assert_allclose(model.predict(X), model.fitted_values)
    np.testing.assert_allclose(model.predict(np.array([[0.0, 0.0]])), [3.0], atol=1e-9)
    with pytest.raises(ValueError):
        model.predict(X[:, :1])


def test_rss_helper_agrees_with_fit():
    rng = np.random.RandomState(2)
    X = rng.normal(size=(40, 3))
    y = X @ [1.0, 0.5, -2.0] + rng.normal(size=40)
    assert residual_sum_of_squares(X, y) == pytest.approx(fit_ols(X, y, ["a", "b", "c"]).rss)


def test_collinear_columns_raise():
    rng = np.random.RandomState(3)
    x1 = rng.normal(size=20)
    X = np.column_stack([x1, 2 * x1])
    y = x1 + rng.normal(size=20)

    with pytest.raises(SingularMatrixError) as excinfo:
        fit_ols(X, y, ["x1", "x1_doubled"])
    assert excinfo.value.rank == 2
    assert excinfo.value.n_columns == 3
    with pytest.raises(SingularMatrixError):
        residual_sum_of_squares(X, y)


def test_constant_column_collides_with_intercept():
    X = np.column_stack([np.arange(10.0), np.ones(10)])
    with pytest.raises(SingularMatrixError):
        fit_ols(X, np.arange(10.0), ["x", "const"])


def test_too_few_rows_raise():
    X = np.array([[1.0, 2.0], [2.0, 1.0]])
    with pytest.raises(InsufficientDataError) as excinfo:
        fit_ols(X, np.array([1.0, 2.0]), ["a", "b"])
    assert excinfo.value.n_rows == 2
    assert excinfo.value.n_required == 3


def test_column_names_must_match(toy):
    X, y = toy
    with pytest.raises(ValueError):
        fit_ols(X, y, ["only_one"])


def test_summary_frame_intervals_contain_estimates():
    rng = np.random.RandomState(4)
    X = rng.normal(size=(60, 2))
    y = 1 + X @ [0.5, 2.0] + rng.normal(size=60)
    model = fit_ols(X, y, ["a", "b"])

    table = model.summary_frame(alpha=0.05)
    assert list(table.index) == [INTERCEPT, "a", "b"]
    assert list(table.columns) == ["coefficient", "std_error", "t_value", "p_value",
                                   "ci_95_lower", "ci_95_upper"]
    assert (table["ci_95_lower"] < table["coefficient"]).all()
    assert (table["coefficient"] < table["ci_95_upper"]).all()
    assert table.loc["b", "p_value"] < 0.001

    stats = model.feature_stats()
    assert [s["name"] for s in stats] == ["a", "b"]
