"""
This script compares the hubness-aware kNN variants.
It iterates through:
- Multiple datasets (scikit-learn's bundled ones)
- All 10 stratified folds for each dataset
- Every classifier variant, with a fixed k and with the automatic
  leave-one-out hyperparameter search (k <= 0)

It records accuracy, time per test instance and the chosen
hyperparameters for each fold, saves the fold-level results, and
aggregates them per configuration to find the best variant.
"""

import time
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Tuple

import numpy as np
import pandas as pd
from sklearn.datasets import load_breast_cancer, load_iris, load_wine
from sklearn.model_selection import StratifiedKFold
from sklearn.preprocessing import MinMaxScaler

# --- Path Setup ---
try:
    SCRIPT_DIR = Path(__file__).resolve().parent
except NameError:
    SCRIPT_DIR = Path.cwd()

PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))
# --- End Path Setup ---

from hubness_core.classifiers import CLASSIFIERS
from hubness_core.config import HubnessConfig

N_FOLDS = 10
RANDOM_SEED = 42


class ExperimentRunner:
    """
    Manages the setup, execution and reporting of the variant comparison.
    """

    def __init__(self, output_dir: Path, n_jobs: int = 1):
        self.output_dir = output_dir
        self.output_dir.mkdir(parents=True, exist_ok=True)
        print(f"[Runner] Created output directory: {output_dir}")

        # --- Experiment Parameters ---
        self.datasets: Dict[str, Callable] = {
            'iris': load_iris,
            'wine': load_wine,
            'breast_cancer': load_breast_cancer,
        }
        # k = 0 lets each variant search its own hyperparameters.
        self.k_values: List[int] = [0, 5, 10]
        self.variants: List[str] = list(CLASSIFIERS.keys())
        self.base_config = HubnessConfig(k_range=(1, 20), seed=RANDOM_SEED, n_jobs=n_jobs)
        # ------------------------------

        self.configs_per_dataset = len(self.k_values) * len(self.variants)
        self.total_fold_runs = self.configs_per_dataset * len(self.datasets) * N_FOLDS

        print("\n[Runner] Experiment setup:")
        print(f"  Datasets: {list(self.datasets.keys())}")
        print(f"  K values: {self.k_values} (0 = leave-one-out search)")
        print(f"  Variants: {self.variants}")
        print(f"  Total runs: {self.total_fold_runs} ({N_FOLDS} folds each)")

    def _load_folds(self, dataset_name: str) -> List[Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]]:
        """Stratified folds, each scaled to [0, 1] on its training part."""
        X, y = self.datasets[dataset_name](return_X_y=True)
        splitter = StratifiedKFold(n_splits=N_FOLDS, shuffle=True, random_state=RANDOM_SEED)
        folds = []
        for train_idx, test_idx in splitter.split(X, y):
            scaler = MinMaxScaler().fit(X[train_idx])
            folds.append((scaler.transform(X[train_idx]), y[train_idx],
                          scaler.transform(X[test_idx]), y[test_idx]))
        return folds

    def run_all_experiments(self) -> Tuple[List[Dict], pd.DataFrame]:
        print("\n[Runner] Starting experiments...")
        overall_start_time = time.time()
        all_fold_results: List[Dict[str, Any]] = []
        fold_run_count = 0
        estimated_seconds_per_run = 1.0

        for dataset_name in self.datasets:
            print(f"\n  [Dataset: {dataset_name}]")
            folds = self._load_folds(dataset_name)

            for k in self.k_values:
                for variant in self.variants:
                    print(f"\n    [Config: K={k}, {variant}]")

                    for fold_idx, (X_train, y_train, X_test, y_test) in enumerate(folds):
                        fold_start_time = time.time()

                        # 1. Create and train the classifier
                        clf = CLASSIFIERS[variant](self.base_config, k=k)
                        clf.fit(X_train, y_train)

                        # 2. Test
                        predict_start = time.time()
                        predictions = clf.predict(X_test)
                        time_per_instance = (time.time() - predict_start) / len(X_test)

                        # 3. Store this fold's result
                        accuracy = float(np.mean(predictions == y_test))
                        choice = clf.choice_
                        all_fold_results.append({
                            'K_setting': k,
                            'Dataset': dataset_name,
                            'Variant': variant,
                            'Fold': fold_idx,
                            'Accuracy': accuracy,
                            'Time_per_instance_ms': time_per_instance * 1000,
                            'Chosen_k': choice.k,
                            'Anti_hub_cutoff': choice.anti_hub_cutoff,
                            'Scheme': choice.estimation_scheme.name,
                            'M': choice.distance_weight_exponent,
                            'Train_size': len(X_train),
                            'Test_size': len(X_test),
                        })
                        fold_run_count += 1

                        fold_elapsed = time.time() - fold_start_time
                        estimated_seconds_per_run = (
                                0.9 * estimated_seconds_per_run + 0.1 * fold_elapsed
                        )
                        remaining_runs = self.total_fold_runs - fold_run_count
                        eta_time = datetime.now() + timedelta(
                            seconds=remaining_runs * estimated_seconds_per_run)
                        progress_pct = (fold_run_count / self.total_fold_runs) * 100

                        print(f"      Fold {fold_idx}: Acc={accuracy:.4f} | "
                              f"k={choice.k} | "
                              f"Time={time_per_instance * 1000:.2f}ms | "
                              f"[{fold_run_count}/{self.total_fold_runs} ({progress_pct:.1f}%) | "
                              f"ETA: {eta_time.strftime('%H:%M:%S')}]")

        total_elapsed = time.time() - overall_start_time
        minutes, seconds = divmod(total_elapsed, 60)
        print(f"\n[Runner] Experiments completed in {int(minutes)}m {int(seconds)}s")

        fold_results_file = self._save_csv(pd.DataFrame(all_fold_results),
                                           'hubness_detailed_fold_results')
        print(f"\n[Runner] Saved detailed results: {fold_results_file} ({len(all_fold_results)} rows)")

        aggregated_results = self._aggregate_by_configuration(all_fold_results)
        agg_results_file = self._save_csv(aggregated_results, 'hubness_aggregated_configs')
        print(f"[Runner] Saved aggregated results: {agg_results_file} ({len(aggregated_results)} configs)")

        self._generate_summary(aggregated_results)
        return all_fold_results, aggregated_results

    def _aggregate_by_configuration(self, fold_results: List[Dict]) -> pd.DataFrame:
        """Mean and std of every metric over the folds of each configuration."""
        df = pd.DataFrame(fold_results)
        if df.empty:
            return pd.DataFrame()

        config_columns = ['K_setting', 'Dataset', 'Variant']
        aggregated = df.groupby(config_columns).agg({
            'Accuracy': ['mean', 'std'],
            'Time_per_instance_ms': ['mean', 'std'],
            'Chosen_k': ['mean'],
        }).reset_index()
        aggregated.columns = [
            'K_setting', 'Dataset', 'Variant',
            'Mean_Accuracy', 'Std_Accuracy',
            'Mean_Time_ms', 'Std_Time_ms',
            'Mean_Chosen_k',
        ]
        return aggregated.sort_values(by=['Dataset', 'Mean_Accuracy'],
                                      ascending=[True, False])

    def _save_csv(self, df: pd.DataFrame, stem: str) -> Path:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        filename = self.output_dir / f'{stem}_{timestamp}.csv'
        df.to_csv(filename, index=False)
        return filename

    def _generate_summary(self, aggregated_df: pd.DataFrame) -> None:
        print(f"\n[Runner] Results Summary (mean ± std across {N_FOLDS} folds):")

        for dataset in self.datasets:
            dataset_results = aggregated_df[aggregated_df['Dataset'] == dataset]
            if dataset_results.empty:
                print(f"\nNo results found for {dataset.upper()}")
                continue

            print(f"\n--- {dataset.upper()} ({len(dataset_results)} configurations) ---")
            print(f"\n{'K':<3} {'Variant':<13} {'Accuracy (mean±std)':<22} "
                  f"{'Time_ms (mean±std)':<22} {'Chosen k':<8}")
            print("-" * 72)
            for _, row in dataset_results.iterrows():
                acc_str = f"{row['Mean_Accuracy']:.4f}±{row['Std_Accuracy']:.4f}"
                time_str = f"{row['Mean_Time_ms']:.2f}±{row['Std_Time_ms']:.2f}"
                print(f"{row['K_setting']:<3} {row['Variant']:<13} {acc_str:<22} "
                      f"{time_str:<22} {row['Mean_Chosen_k']:<8.1f}")

            best_config = dataset_results.iloc[0]
            print("-" * 72)
            print(f"Best for {dataset}: K={best_config['K_setting']}, {best_config['Variant']} "
                  f"({best_config['Mean_Accuracy']:.4f} ± {best_config['Std_Accuracy']:.4f})")


def main():
    print("\n--- Hubness-aware kNN Variant Comparison ---")
    output_dir = PROJECT_ROOT / "results" / "hubness_variants"
    runner = ExperimentRunner(output_dir)

    try:
        runner.run_all_experiments()
        print("\n[Runner] All experiments completed successfully.")
        print(f"[Runner] Check '{output_dir}' folder for output files.")

    except KeyboardInterrupt:
        print("\n\n[Runner] Experiments interrupted by user (Ctrl+C).")

    except Exception as e:
        print(f"\n\n[Runner] An error occurred: {type(e).__name__}: {e}")
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    main()
