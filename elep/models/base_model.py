"""
base_model.py
=============
Base class for ELEP (monthly electricity cost) models

Handles all common functionality:
- Data loading through the declarative cleaning spec
- Seeded train/validation split
- Categorical expansion (FeatureMatrixBuilder fitted on training rows only)
- Cross-validation
- Metrics calculation
- Results files and diagnostic plots

Child classes implement:
- _fit_core(X, y) -> fit model
- _predict_core(X) -> predictions
and may override make_builder() / prepare_features() to change the design.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats
from sklearn.model_selection import KFold
from sklearn.metrics import r2_score, mean_squared_error, mean_absolute_error

from elep.dataset import (CleaningSpec, DEFAULT_SPEC, HouseholdRecord, Split,
                          load_records, split_records)
from elep.errors import ElepModelError
from elep.feature_matrix import FeatureMatrix, FeatureMatrixBuilder

class BaseElepModel(ABC):
    """
    Base class for ELEP prediction models.

    The pipeline is Idle -> load -> split -> features -> fit -> predict ->
    metrics -> outputs; any numerical precondition failure stops it.
    """

    def __init__(self, model_id: int, model_name: str,
                 input_path: Optional[Union[str, Path]] = None,
                 spec: CleaningSpec = DEFAULT_SPEC,
                 test_size: float = 0.2,
                 random_seed: int = 42,
                 unseen_policy: str = "raise",
                 output_base_dir: Union[str, Path] = "report/models",
                 log_dir: Union[str, Path] = "report/logs",
                 log_suffix: Optional[str] = None):
        """
        Initialize base model

        Args:
            model_id: Model number (1-4)
            model_name: Descriptive name
            input_path: Household CSV to load
            spec: Cleaning specification (fields, derivations, exclusions)
            test_size: Validation fraction
            random_seed: Seed for the train/validation split
            unseen_policy: 'raise' or 'reference' for validation levels not seen in training
        """
        self.model_id = model_id
        self.model_name = model_name
        self.input_path = Path(input_path) if input_path is not None else None
        self.spec = spec
        self.test_size = test_size
        self.random_seed = random_seed
        self.unseen_policy = unseen_policy

        # Data storage
        self.all_records: List[HouseholdRecord] = []
        self.train_records: List[HouseholdRecord] = []
        self.test_records: List[HouseholdRecord] = []
        self.split: Optional[Split] = None

        # Features and targets
        self.builder: Optional[FeatureMatrixBuilder] = None
        self.train_matrix: Optional[FeatureMatrix] = None
        self.test_matrix: Optional[FeatureMatrix] = None
        self.X_train: Optional[np.ndarray] = None
        self.y_train: Optional[np.ndarray] = None
        self.X_test: Optional[np.ndarray] = None
        self.y_test: Optional[np.ndarray] = None
        self.feature_names: List[str] = []

        # Predictions
        self.train_predictions: Optional[np.ndarray] = None
        self.test_predictions: Optional[np.ndarray] = None

        # Model and metrics
        self.model = None
        self.metrics: Dict[str, Any] = {}
        self.cv_results: Dict[str, Any] = {}

        # Predictors whose residual plots are drawn
        self.diagnostic_predictors: List[str] = []

        self.output_dir = Path(output_base_dir) / f"model_{model_id}"
        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.log_dir = Path(log_dir)
        self.log_suffix = log_suffix
        self._setup_logging()

        self.log_section(f"INITIALIZING MODEL {self.model_id}: {self.model_name.upper()}", "=")
        self.logger.info(f"Output directory: {self.output_dir}")
        self.logger.info("Configuration:")
        self.logger.info(f"  - Input: {self.input_path}")
        self.logger.info(f"  - Validation fraction: {test_size}")
        self.logger.info(f"  - Random seed: {random_seed}")
        self.logger.info(f"  - Unseen level policy: {unseen_policy}")

    def _setup_logging(self):
        """Set up model-specific logging"""
        self.log_dir.mkdir(parents=True, exist_ok=True)
        if self.log_suffix:
            log_filename = self.log_dir / f"model_{self.model_id}_log_{self.log_suffix}.txt"
        else:
            log_filename = self.log_dir / f"model_{self.model_id}_log.txt"

        self.logger = logging.getLogger(f"MODEL_{self.model_id}")
        self.logger.setLevel(logging.INFO)
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()

        # Prevent duplicate output when run from the orchestrator
        self.logger.propagate = False

        fh = logging.FileHandler(log_filename, mode='w', encoding='utf-8')
        fh.setLevel(logging.INFO)

        ch = logging.StreamHandler()
        ch.setLevel(logging.INFO)

        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                                      datefmt='%Y-%m-%d %H:%M:%S')
        fh.setFormatter(formatter)
        ch.setFormatter(formatter)

        self.logger.addHandler(fh)
        self.logger.addHandler(ch)

    def close_logging(self):
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)

    def log_section(self, title: str, char: str = "-"):
        """Log section header"""
        self.logger.info("")
        self.logger.info(char * 60)
        self.logger.info(title.upper())
        self.logger.info(char * 60)

    def log_metrics_summary(self):
        """Log formatted metrics summary"""
        self.logger.info("")
        self.logger.info("-" * 60)
        self.logger.info("PERFORMANCE METRICS SUMMARY")
        self.logger.info("-" * 60)

        if self.metrics:
            self.logger.info(f"Training R^2: {self.metrics.get('r2_train', 0):.4f}")
            self.logger.info(f"Validation R^2: {self.metrics.get('r2_test', 0):.4f}")
            self.logger.info(f"Training RMSE: ${self.metrics.get('rmse_train', 0):,.2f}")
            self.logger.info(f"Validation RMSE: ${self.metrics.get('rmse_test', 0):,.2f}")
            self.logger.info(f"Validation MAE: ${self.metrics.get('mae_test', 0):,.2f}")

            if 'cv_mean' in self.metrics:
                self.logger.info(f"CV R^2 (mean +- std): {self.metrics['cv_mean']:.4f} +- "
                                 f"{self.metrics.get('cv_std', 0):.4f}")

        self.logger.info("-" * 60)

    def log_coefficients(self, feature_stats: List[Dict[str, float]], model_type: str = "OLS"):
        """
        Log coefficients split by significance.

        Args:
            feature_stats: list of {'name', 'coefficient', 'std_error', 'p_value'}
            model_type: label for the header
        """
        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info(f"{model_type} Coefficients ({len(feature_stats)} columns)")
        self.logger.info("=" * 80)

        ordered = sorted(feature_stats, key=lambda f: abs(f.get('coefficient', 0)), reverse=True)
        sig = [f for f in ordered if f.get('p_value', 1) < 0.05]
        non_sig = [f for f in ordered if f.get('p_value', 1) >= 0.05]

        for label, group in [("Significant (p < 0.05)", sig), ("Non-significant (p >= 0.05)", non_sig)]:
            if not group:
                continue
            self.logger.info(f"{label}: {len(group)} columns")
            self.logger.info("-" * 60)
            for idx, feat in enumerate(group, 1):
                parts = [f"  {idx:3d}. {feat['name']:30s}", f"Beta={feat['coefficient']:10.4f}"]
                if 'std_error' in feat:
                    parts.append(f"SE={feat['std_error']:9.4f}")
                if feat.get('p_value', 1) < 0.0001:
                    parts.append("p<0.0001")
                else:
                    parts.append(f"p={feat.get('p_value', 1):7.4f}")
                self.logger.info(" ".join(parts))

        self.logger.info("=" * 80)

    # ========================================================================
    # DATA LOADING AND SPLITTING
    # ========================================================================

    def load_data(self) -> List[HouseholdRecord]:
        """Load and clean records from self.input_path"""
        self.log_section(f"LOADING DATA: {self.input_path}")
        if self.input_path is None:
            raise ValueError("No input_path configured")

        self.all_records = load_records(self.input_path, self.spec)
        self.logger.info(f"Total loaded: {len(self.all_records):,} usable records")
        return self.all_records

    def split_data(self, test_size: Optional[float] = None, random_state: Optional[int] = None) -> None:
        """Split data into train and validation sets"""
        if test_size is None:
            test_size = self.test_size
        if random_state is None:
            random_state = self.random_seed

        self.log_section("DATA SPLIT")

        self.split = split_records(len(self.all_records), test_size, random_state)
        self.train_records, self.test_records = self.split.apply(self.all_records)

        self.logger.info(f"Training samples: {len(self.train_records):,}")
        self.logger.info(f"Validation samples: {len(self.test_records):,}")
        self.logger.info(f"Split ratio: {test_size * 100:.1f}%")

    # ========================================================================
    # FEATURES
    # ========================================================================

    def make_builder(self) -> FeatureMatrixBuilder:
        """Builder over every cleaned predictor; children narrow it"""
        return FeatureMatrixBuilder(self.spec)

    def prepare_features(self, records: List[HouseholdRecord],
                         unseen: str = "raise") -> Tuple[np.ndarray, List[str]]:
        """Expanded design matrix for `records` (builder must be fitted)"""
        matrix = self.builder.transform(records, unseen=unseen)
        if records is self.train_records:
            self.train_matrix = matrix
        elif records is self.test_records:
            self.test_matrix = matrix
        return matrix.X, matrix.columns

    def build_features(self) -> None:
        self.log_section("FEATURE PREPARATION")
        self.builder = self.make_builder().fit(self.train_records)
        self.X_train, self.feature_names = self.prepare_features(self.train_records)
        self.y_train = self.builder.response(self.train_records)
        self.X_test, _ = self.prepare_features(self.test_records, unseen=self.unseen_policy)
        self.y_test = self.builder.response(self.test_records)

        self.logger.info(f"Features prepared: {len(self.feature_names)} columns from "
                         f"{len(self.builder.numeric) + len(self.builder.categorical)} logical predictors")
        self.logger.info(f"  Training shape: {self.X_train.shape}")
        self.logger.info(f"  Validation shape: {self.X_test.shape}")
        self.logger.info(f"  ELEP range: ${self.y_train.min():,.2f} - ${self.y_train.max():,.2f}")
        self.logger.info(f"  ELEP mean: ${self.y_train.mean():,.2f}")
        self.logger.info(f"  ELEP median: ${np.median(self.y_train):,.2f}")

    # ========================================================================
    # ABSTRACT METHODS - Child classes must implement
    # ========================================================================

    @abstractmethod
    def _fit_core(self, X: np.ndarray, y: np.ndarray) -> None:
        """Core model fitting logic (child implements)"""

    @abstractmethod
    def _predict_core(self, X: np.ndarray) -> np.ndarray:
        """Core prediction logic (child implements)"""

    # ========================================================================
    # TEMPLATE METHODS
    # ========================================================================

    def fit(self, X: np.ndarray, y: np.ndarray) -> None:
        """Fit model (template method)"""
        self._fit_core(X, y)

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Make predictions (template method)"""
        if self.model is None:
            raise ValueError("Model has not been fitted yet")
        return self._predict_core(X)

    # ========================================================================
    # CROSS-VALIDATION
    # ========================================================================

    def perform_cross_validation(self, n_splits: int = 10) -> Dict[str, Any]:
        """k-fold CV of the model design on the training rows"""
        self.log_section(f"{n_splits}-FOLD CROSS-VALIDATION")

        if self.X_train is None or self.y_train is None:
            self.logger.warning("No training data for cross-validation")
            return {'cv_mean': 0, 'cv_std': 0, 'scores': []}

        kf = KFold(n_splits=n_splits, shuffle=True, random_state=self.random_seed)
        cv_scores = []
        cv_rmse = []

        for fold, (train_idx, val_idx) in enumerate(kf.split(self.X_train), 1):
            try:
                self._fit_core(self.X_train[train_idx], self.y_train[train_idx])
            except ElepModelError as e:
                self.logger.warning(f"  Fold {fold}: skipped ({e})")
                continue
            y_pred = self._predict_core(self.X_train[val_idx])

            score = r2_score(self.y_train[val_idx], y_pred)
            rmse = float(np.sqrt(mean_squared_error(self.y_train[val_idx], y_pred)))
            cv_scores.append(score)
            cv_rmse.append(rmse)

            self.logger.info(f"  Fold {fold}: R^2 = {score:.4f}, RMSE = ${rmse:,.2f}")

        if not cv_scores:
            raise ValueError("Every cross-validation fold failed to fit")

        cv_mean = float(np.mean(cv_scores))
        cv_std = float(np.std(cv_scores))

        self.logger.info("")
        self.logger.info("Cross-validation summary:")
        self.logger.info(f"  Mean R^2: {cv_mean:.4f}")
        self.logger.info(f"  Std R^2: {cv_std:.4f}")
        self.logger.info(f"  Mean RMSE: ${np.mean(cv_rmse):,.2f}")

        return {
            'cv_mean': cv_mean,
            'cv_std': cv_std,
            'cv_rmse_mean': float(np.mean(cv_rmse)),
            'scores': cv_scores
        }

    # ========================================================================
    # METRICS
    # ========================================================================

    def calculate_metrics(self) -> Dict[str, Any]:
        """Calculate performance metrics on training and validation rows"""
        self.log_section("CALCULATING METRICS")

        if self.test_predictions is None or self.y_test is None:
            raise ValueError("Must run fit() and predict() before calculating metrics")

        mse_test = mean_squared_error(self.y_test, self.test_predictions)
        self.metrics.update({
            'r2_train': float(r2_score(self.y_train, self.train_predictions)),
            'r2_test': float(r2_score(self.y_test, self.test_predictions)),
            'rmse_train': float(np.sqrt(mean_squared_error(self.y_train, self.train_predictions))),
            'rmse_test': float(np.sqrt(mse_test)),
            'mse_test': float(mse_test),
            'mae_train': float(mean_absolute_error(self.y_train, self.train_predictions)),
            'mae_test': float(mean_absolute_error(self.y_test, self.test_predictions)),
            'training_samples': len(self.y_train),
            'test_samples': len(self.y_test),
            'n_features': len(self.feature_names),
        })

        self.log_metrics_summary()
        return self.metrics

    # ========================================================================
    # OUTPUTS
    # ========================================================================

    def save_results(self) -> None:
        """Save metrics and predictions"""
        with open(self.output_dir / "metrics.json", 'w') as f:
            json.dump(self.metrics, f, indent=2, default=str)

        if self.train_predictions is not None and self.test_predictions is not None:
            train_df = pd.DataFrame({
                'dataset': 'train',
                'serialno': [r.serialno for r in self.train_records],
                'actual': self.y_train,
                'predicted': self.train_predictions,
                'residual': self.y_train - self.train_predictions,
            })
            test_df = pd.DataFrame({
                'dataset': 'validation',
                'serialno': [r.serialno for r in self.test_records],
                'actual': self.y_test,
                'predicted': self.test_predictions,
                'residual': self.y_test - self.test_predictions,
            })
            pd.concat([train_df, test_df], ignore_index=True).to_csv(
                self.output_dir / "predictions.csv", index=False)

        self.logger.info("Results saved:")
        self.logger.info(f"  - Metrics JSON: {self.output_dir / 'metrics.json'}")
        if self.train_predictions is not None and self.test_predictions is not None:
            self.logger.info(f"  - Predictions CSV: {self.output_dir / 'predictions.csv'}")
            self.logger.info(f"    ({len(self.train_predictions):,} train + "
                             f"{len(self.test_predictions):,} validation predictions)")

    def plot_diagnostics(self) -> None:
        """Residuals vs fitted, residuals vs each diagnostic predictor, normal Q-Q"""
        if self.train_predictions is None or self.y_train is None:
            return

        residuals = self.y_train - self.train_predictions
        predictors = [p for p in self.diagnostic_predictors if p in self.feature_names]
        n_panels = 2 + len(predictors)
        n_cols = min(3, n_panels)
        n_rows = int(np.ceil(n_panels / n_cols))

        fig, axes = plt.subplots(n_rows, n_cols, figsize=(6 * n_cols, 5 * n_rows), squeeze=False)
        axes = axes.ravel()

        ax = axes[0]
        sns.scatterplot(x=self.train_predictions, y=residuals, ax=ax, s=12, alpha=0.5)
        ax.axhline(0, color='r', linestyle='--', linewidth=1.5)
        ax.set_xlabel('Fitted ELEP ($)')
        ax.set_ylabel('Residual ($)')
        ax.set_title('Residuals vs Fitted')
        ax.grid(True, alpha=0.3)

        for ax, name in zip(axes[1:], predictors):
            values = self.X_train[:, self.feature_names.index(name)]
            sns.scatterplot(x=values, y=residuals, ax=ax, s=12, alpha=0.5)
            ax.axhline(0, color='r', linestyle='--', linewidth=1.5)
            ax.set_xlabel(name)
            ax.set_ylabel('Residual ($)')
            ax.set_title(f'Residuals vs {name}')
            ax.grid(True, alpha=0.3)

        ax = axes[1 + len(predictors)]
        stats.probplot(residuals, dist="norm", plot=ax)
        ax.set_title('Normal Q-Q (residuals)')
        ax.grid(True, alpha=0.3)

        for ax in axes[n_panels:]:
            ax.set_visible(False)

        plt.suptitle(f'Model {self.model_id}: {self.model_name}', fontsize=14, fontweight='bold')
        plt.tight_layout()

        output_file = self.output_dir / 'diagnostic_plots.png'
        plt.savefig(output_file, dpi=150, bbox_inches='tight')
        plt.close(fig)

        self.logger.info(f"Diagnostic plots saved to {output_file}")

    def report_lines(self) -> List[str]:
        """Text block for the combined report"""
        lines = [f"Model {self.model_id}: {self.model_name}",
                 "-" * 60]
        if self.metrics:
            lines.append(f"  Columns: {self.metrics.get('n_features', len(self.feature_names))}")
            lines.append(f"  Training RMSE: {self.metrics.get('rmse_train', float('nan')):,.4f}")
            lines.append(f"  Validation RMSE: {self.metrics.get('rmse_test', float('nan')):,.4f}")
            lines.append(f"  Validation R^2: {self.metrics.get('r2_test', float('nan')):.4f}")
        return lines

    # ========================================================================
    # PIPELINE ORCHESTRATION
    # ========================================================================

    def run_complete_pipeline(self,
                              perform_cv: bool = True,
                              n_cv_folds: int = 10,
                              generate_plots: bool = True) -> Dict[str, Any]:
        """Run complete modeling pipeline"""
        self.log_section(f"STARTING PIPELINE: {self.model_name}", "=")

        self.load_data()
        if len(self.all_records) == 0:
            raise ValueError(f"No usable records in {self.input_path}")

        self.split_data()
        self.build_features()

        if perform_cv:
            self.cv_results = self.perform_cross_validation(n_splits=n_cv_folds)
            for key in ('cv_mean', 'cv_std', 'cv_rmse_mean'):
                if key in self.cv_results:
                    self.metrics[key] = self.cv_results[key]

        self.log_section("MODEL TRAINING")
        self.fit(self.X_train, self.y_train)
        self.logger.info("Model training complete")

        self.log_section("MAKING PREDICTIONS")
        self.train_predictions = self.predict(self.X_train)
        self.test_predictions = self.predict(self.X_test)
        self.logger.info("Predictions complete")

        self.calculate_metrics()

        self.log_section("GENERATING OUTPUTS")
        self.save_results()
        if generate_plots:
            self.plot_diagnostics()

        self.log_section(f"PIPELINE COMPLETE: {self.model_name}", "=")
        self.log_metrics_summary()

        return {
            'metrics': self.metrics,
            'cv_results': self.cv_results,
        }
