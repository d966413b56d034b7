"""
orchestrator.py
===============
Master orchestrator for the ELEP report.

Features:
- JSON-based configuration system
- Explicit input file path (config or --input), no working-directory lookups
- Runs models 1 (simple), 2 (no interaction), 3 (interaction), 4 (best subset)
- Stops immediately on any error
- Generates comparison CSV, summary JSON and the text report

Usage:
    elep-report                                  # Uses Orchestrator.json
    elep-report --config MyConfig.json           # Uses custom config
    elep-report --input data/housing.csv --seed 7
"""

import sys
import json
import argparse
import logging
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from elep.models.model_1_simple import Model1Simple
from elep.models.model_2_no_interaction import Model2NoInteraction
from elep.models.model_3_interaction import Model3Interaction
from elep.models.model_4_best_subset import Model4BestSubset

# Model class registry
MODEL_CLASSES = {
    1: Model1Simple,
    2: Model2NoInteraction,
    3: Model3Interaction,
    4: Model4BestSubset,
}

# Config keys forwarded from model_settings.<id> to each model constructor
MODEL_OPTIONS = {
    1: ('predictors',),
    2: ('predictors', 'ci_level'),
    3: ('predictors', 'interaction', 'ci_level'),
    4: ('search_method', 'max_exhaustive'),
}

DEFAULT_CONFIG = {
    'scenario_name': 'elep_default',
    'data_settings': {
        'input_path': 'data/housing.csv',
        'test_size': 0.2,
        'random_seed': 42,
    },
    'pipeline_settings': {
        'perform_cv': True,
        'cv_folds': 10,
        'generate_plots': True,
        'unseen_level_policy': 'raise',
    },
    'models_to_run': [1, 2, 3, 4],
    'model_settings': {
        '1': {'name': 'Simple Model', 'predictors': ['NP', 'BDSP', 'RMSP']},
        '2': {'name': 'No-Interaction Model', 'ci_level': 0.95},
        '3': {'name': 'Interaction Model', 'interaction': ['NP', 'RMSP']},
        '4': {'name': 'Best-Subset Selection', 'search_method': 'auto', 'max_exhaustive': 15},
    },
    'output_settings': {
        'output_base_dir': 'report/models',
        'log_dir': 'report/logs',
        'orchestration_dir': 'report/orchestration',
    },
}


def load_configuration(config_path: Path) -> Dict[str, Any]:
    """Load and validate JSON configuration"""
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n"
            f"Please create Orchestrator.json or specify --config"
        )

    with open(config_path, 'r') as f:
        config = json.load(f)

    required = ['scenario_name', 'data_settings', 'models_to_run', 'model_settings']
    for field in required:
        if field not in config:
            raise ValueError(f"Missing required field in config: {field}")

    unknown = [m for m in config['models_to_run'] if int(m) not in MODEL_CLASSES]
    if unknown:
        raise ValueError(f"Unknown model ids in models_to_run: {unknown}")

    for section in ('data_settings', 'pipeline_settings', 'output_settings'):
        merged = dict(DEFAULT_CONFIG[section])
        merged.update(config.get(section, {}))
        config[section] = merged

    policy = config['pipeline_settings']['unseen_level_policy']
    if policy not in ('raise', 'reference'):
        raise ValueError(f"unseen_level_policy must be 'raise' or 'reference', got {policy!r}")

    return config


class ModelOrchestrator:
    """
    Master orchestrator for running the ELEP models and assembling the report
    """

    def __init__(self, config_path: str = "Orchestrator.json",
                 overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize orchestrator

        Args:
            config_path: Path to JSON configuration file
            overrides: data_settings values that replace the file's (e.g. input_path)
        """
        self.config_path = Path(config_path)
        self.config = load_configuration(self.config_path)
        if overrides:
            self.config['data_settings'].update({k: v for k, v in overrides.items() if v is not None})

        self.results: Dict[int, Dict[str, Any]] = {}
        self.models: Dict[int, Any] = {}

        self.setup_output_dirs()
        self.setup_logging()

    def setup_output_dirs(self):
        """Create output directory structure"""
        output_settings = self.config['output_settings']
        self.output_base_dir = Path(output_settings['output_base_dir'])
        self.log_dir = Path(output_settings['log_dir'])
        self.output_dir = Path(output_settings['orchestration_dir'])

        for path in (self.output_base_dir, self.log_dir, self.output_dir):
            path.mkdir(parents=True, exist_ok=True)

    def setup_logging(self):
        """Setup logging system"""
        log_suffix = self.config.get('log_suffix', None)
        if log_suffix:
            log_file = self.log_dir / f'Orchestrator_log_{log_suffix}.txt'
        else:
            log_file = self.log_dir / 'Orchestrator_log.txt'

        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                                      datefmt='%Y-%m-%d %H:%M:%S')  # Match base class format
        handlers = [logging.FileHandler(log_file, mode='w', encoding='utf-8'),
                    logging.StreamHandler(sys.stdout)]

        # Orchestrator messages plus the library modules (elep.dataset, elep.best_subset, ...)
        self.logger = logging.getLogger('Orchestrator')
        self._loggers = [self.logger, logging.getLogger('elep')]
        for target in self._loggers:
            target.setLevel(logging.INFO)
            for handler in list(target.handlers):
                handler.close()
            target.handlers.clear()
            target.propagate = False
            for handler in handlers:
                handler.setFormatter(formatter)
                target.addHandler(handler)

        self.logger.info("=" * 80)
        self.logger.info("ELEP MODEL ORCHESTRATOR")
        self.logger.info("=" * 80)
        self.logger.info(f"Configuration: {self.config_path}")
        self.logger.info(f"Scenario: {self.config['scenario_name']}")
        self.logger.info(f"Input: {self.config['data_settings']['input_path']}")
        self.logger.info(f"Log file: {log_file}")
        self.logger.info(f"Output directory: {self.output_dir}")

    def build_model(self, model_id: int):
        model_config = self.config['model_settings'].get(str(model_id), {})
        data_settings = self.config['data_settings']
        pipeline_settings = self.config['pipeline_settings']

        model_params = {
            'input_path': data_settings['input_path'],
            'test_size': data_settings['test_size'],
            'random_seed': data_settings['random_seed'],
            'unseen_policy': pipeline_settings['unseen_level_policy'],
            'output_base_dir': self.output_base_dir,
            'log_dir': self.log_dir,
            'log_suffix': self.config.get('log_suffix'),
        }
        for option in MODEL_OPTIONS[model_id]:
            if option in model_config:
                model_params[option] = model_config[option]
        if 'name' in model_config:
            model_params['model_name'] = model_config['name']

        ModelClass = MODEL_CLASSES[model_id]
        self.logger.info(f"Initializing {ModelClass.__name__}...")
        return ModelClass(**model_params)

    def run_single_model(self, model_id: int) -> Dict[str, Any]:
        """
        Run a single model

        Raises:
            RuntimeError: If model fails (stops orchestrator)
        """
        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info(f"RUNNING MODEL {model_id}")
        self.logger.info("=" * 80)

        pipeline_settings = self.config['pipeline_settings']
        model = None
        try:
            model = self.build_model(model_id)
            model.run_complete_pipeline(
                perform_cv=pipeline_settings['perform_cv'],
                n_cv_folds=pipeline_settings['cv_folds'],
                generate_plots=pipeline_settings['generate_plots'],
            )
            self.models[model_id] = model

            model_results = {
                'model_id': model_id,
                'model_name': model.model_name,
                'r2_train': model.metrics.get('r2_train'),
                'r2_test': model.metrics.get('r2_test'),
                'rmse_train': model.metrics.get('rmse_train'),
                'rmse_test': model.metrics.get('rmse_test'),
                'mae_test': model.metrics.get('mae_test'),
                'cv_mean': model.metrics.get('cv_mean'),
                'n_features': model.metrics.get('n_features'),
                'n_train': len(model.train_records),
                'n_test': len(model.test_records),
                'success': True,
                'error': None,
            }

            self.logger.info(f"+ Model {model_id} completed successfully")
            self.logger.info(f"  R^2 Validation: {model_results['r2_test']:.4f}")
            self.logger.info(f"  RMSE Validation: ${model_results['rmse_test']:,.2f}")
            self.logger.info(f"  Columns: {model_results['n_features']}")
            return model_results

        except Exception as e:
            self.logger.error(f"FATAL ERROR in Model {model_id}: {str(e)}")
            self.logger.error(traceback.format_exc())
            raise RuntimeError(f"Model {model_id} failed: {str(e)}") from e

        finally:
            if model is not None:
                model.close_logging()

    def run_all_models(self):
        """Run every configured model, stopping on the first failure"""
        models_to_run = [int(m) for m in self.config['models_to_run']]
        self.logger.info(f"Models to run: {models_to_run}")
        for model_id in models_to_run:
            self.results[model_id] = self.run_single_model(model_id)

    def generate_comparison_report(self) -> pd.DataFrame:
        """Comparison CSV and summary JSON; best model = lowest validation RMSE"""
        df = pd.DataFrame([
            {
                'Model_ID': r['model_id'],
                'Model_Name': r['model_name'],
                'R2_Train': r['r2_train'],
                'R2_Test': r['r2_test'],
                'RMSE_Train': r['rmse_train'],
                'RMSE_Test': r['rmse_test'],
                'MAE_Test': r['mae_test'],
                'N_Features': r['n_features'],
            }
            for r in self.results.values()
        ]).sort_values('RMSE_Test', ascending=True)

        comparison_file = self.output_dir / 'orchestration_comparison.csv'
        df.to_csv(comparison_file, index=False)
        self.logger.info(f"+ Saved comparison table: {comparison_file}")

        best = df.iloc[0]
        summary = {
            'timestamp': datetime.now().isoformat(),
            'scenario': self.config['scenario_name'],
            'configuration': self.config_path.name,
            'input_path': str(self.config['data_settings']['input_path']),
            'random_seed': self.config['data_settings']['random_seed'],
            'total_models': len(self.results),
            'best_model': {
                'id': int(best['Model_ID']),
                'name': best['Model_Name'],
                'rmse_test': float(best['RMSE_Test']),
                'r2_test': float(best['R2_Test']),
            },
            'all_results': {int(k): v for k, v in self.results.items()},
        }

        summary_file = self.output_dir / 'orchestration_summary.json'
        with open(summary_file, 'w') as f:
            json.dump(summary, f, indent=2, default=str)
        self.logger.info(f"+ Saved summary: {summary_file}")

        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info("MODEL PERFORMANCE COMPARISON")
        self.logger.info("=" * 80)
        self.logger.info(df.to_string(index=False, float_format='{:.4f}'.format))
        self.logger.info("")
        self.logger.info(f"Best model: {best['Model_ID']} ({best['Model_Name']}), "
                         f"validation RMSE ${best['RMSE_Test']:,.2f}")
        return df

    def write_text_report(self) -> Path:
        """Assemble each model's report block into one text file"""
        data_settings = self.config['data_settings']
        lines: List[str] = [
            "=" * 80,
            "ELEP MONTHLY ELECTRICITY COST REPORT",
            "=" * 80,
            f"Scenario: {self.config['scenario_name']}",
            f"Input: {data_settings['input_path']}",
            f"Validation fraction: {data_settings['test_size']}  Seed: {data_settings['random_seed']}",
            "",
        ]
        for model_id in sorted(self.models):
            lines += self.models[model_id].report_lines()
            lines.append("")

        report_file = self.output_dir / 'elep_report.txt'
        report_file.write_text("\n".join(lines) + "\n", encoding='utf-8')
        self.logger.info(f"+ Saved text report: {report_file}")
        return report_file

    def close_logging(self):
        for target in self._loggers:
            for handler in list(target.handlers):
                handler.close()
                target.removeHandler(handler)

    def run(self) -> int:
        """Run complete orchestration pipeline"""
        try:
            start_time = datetime.now()

            self.run_all_models()
            self.generate_comparison_report()
            self.write_text_report()

            duration = datetime.now() - start_time
            self.logger.info("")
            self.logger.info("=" * 80)
            self.logger.info("ORCHESTRATION COMPLETE")
            self.logger.info("=" * 80)
            self.logger.info(f"Total time: {duration}")
            self.logger.info(f"Models run: {len(self.results)}")
            self.logger.info("=" * 80)
            return 0

        except Exception as e:
            self.logger.error("")
            self.logger.error("=" * 80)
            self.logger.error("ORCHESTRATION FAILED")
            self.logger.error("=" * 80)
            self.logger.error(str(e))
            self.logger.error("=" * 80)
            return 1

        finally:
            self.close_logging()


# ============================================================================
# MAIN EXECUTION
# ============================================================================

def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='ELEP Model Orchestrator',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
    Examples:
    elep-report                                  # Use Orchestrator.json
    elep-report --config MyConfig.json           # Use custom configuration
    elep-report --input data/housing.csv         # Override the input file
            """
    )
    parser.add_argument(
        '--config',
        type=str,
        default='Orchestrator.json',
        help='Path to JSON configuration file (default: Orchestrator.json)'
    )
    parser.add_argument('--input', type=str, default=None,
                        help='Household CSV (overrides data_settings.input_path)')
    parser.add_argument('--seed', type=int, default=None,
                        help='Split seed (overrides data_settings.random_seed)')

    args = parser.parse_args(argv)

    try:
        orchestrator = ModelOrchestrator(
            config_path=args.config,
            overrides={'input_path': args.input, 'random_seed': args.seed},
        )
        sys.exit(orchestrator.run())

    except FileNotFoundError as e:
        print(f"ERROR: {e}")
        print()
        print("Please create a configuration file or specify --config")
        sys.exit(1)

    except ValueError as e:
        print(f"CONFIGURATION ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
