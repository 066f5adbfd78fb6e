"""
This script performs the statistical comparison of the hubness-aware
kNN variants.

It does the following:
1.  Loads the detailed fold-level results written by
    'experiment_runners/hubness_knn_runner.py'.
2.  For each dataset, it creates a (fold x configuration) matrix.
3.  It performs a Friedman test to check for significant
    differences among the configurations.
4.  If significant, it runs a Nemenyi post-hoc test to find
    the best configuration and its statistical equals.
5.  It saves a bar chart of the top ranks and a CD diagram.
"""

import sys
from pathlib import Path
from typing import Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd
import scikit_posthocs as sp
from scipy import stats

# --- Configuration ---
try:
    SCRIPT_DIR = Path(__file__).resolve().parent
except NameError:
    SCRIPT_DIR = Path.cwd()

PROJECT_ROOT = SCRIPT_DIR.parent
RESULTS_DIR = PROJECT_ROOT / "results" / "hubness_variants"
OUTPUT_DIR = RESULTS_DIR / "statistics"

ALPHA = 0.05  # Significance level
TOP_N_PLOT = 15
# ---------------------


def find_latest_results(results_dir: Path) -> Optional[Path]:
    candidates = sorted(results_dir.glob("hubness_detailed_fold_results_*.csv"))
    return candidates[-1] if candidates else None


def load_data(filepath: Path) -> pd.DataFrame:
    """Loads the detailed fold-level results CSV."""
    print(f"[Stats-Hubness] Loading results from {filepath.name}...")
    df = pd.read_csv(filepath)
    print(f"  Loaded {len(df)} rows.")
    return df


def create_fold_matrix(df: pd.DataFrame, dataset: str) -> pd.DataFrame:
    """
    Pivots the dataframe to create a matrix where:
    - Rows = Folds (0-9)
    - Columns = Configurations (e.g., "K=0, HIKNN")
    - Values = Accuracy
    """
    print(f"\n[Stats-Hubness] Processing dataset: {dataset.upper()}")
    df_ds = df[df['Dataset'].str.lower() == dataset.lower()].copy()
    if df_ds.empty:
        print(f"  Error: No data found for dataset '{dataset}'.")
        return pd.DataFrame()

    df_ds['Config_Name'] = "K=" + df_ds['K_setting'].astype(str) + ", " + df_ds['Variant']
    fold_matrix = df_ds.pivot(index='Fold', columns='Config_Name', values='Accuracy')

    if fold_matrix.isnull().values.any():
        print("  Warning: Missing values detected. Imputing with 0.0 for stability.")
        fold_matrix = fold_matrix.fillna(0.0)
    return fold_matrix


def average_ranks(fold_matrix: pd.DataFrame) -> pd.Series:
    """Average rank per configuration over the folds (1 = best accuracy)."""
    ranks = fold_matrix.rank(axis=1, ascending=False, method='average').mean()
    return ranks.sort_values()


def plot_top_ranks_bar_chart(avg_ranks: pd.Series, dataset_name: str, top_n: int,
                             output_dir: Path) -> Path:
    """Horizontal bar chart of the top N configurations by average rank."""
    top_n_ranks = avg_ranks.sort_values(ascending=True).head(top_n)

    plt.figure(figsize=(10, max(2.0, len(top_n_ranks) * 0.4)))
    plt.barh(top_n_ranks.index, top_n_ranks.values, color='c')
    plt.gca().invert_yaxis()
    plt.xlabel("Average Rank (Lower is Better)")
    plt.title(f"Top {top_n} Hubness-aware kNN Configs by Avg. Rank ({dataset_name})")
    plt.grid(axis='x', linestyle='--', alpha=0.7)
    for index, value in enumerate(top_n_ranks):
        plt.text(value, index, f' {value:.2f}', va='center')

    full_path = output_dir / f"{dataset_name}_bar_chart_top_{top_n}_ranks.png"
    plt.savefig(full_path, bbox_inches='tight')
    plt.close()
    print(f"  Saved bar chart to {full_path}")
    return full_path


def plot_cd_diagram(avg_ranks: pd.Series, nemenyi_results_df: pd.DataFrame,
                    dataset_name: str, top_n: int, output_dir: Path) -> Path:
    """Critical Difference diagram restricted to the top N configurations."""
    filtered_ranks = avg_ranks.sort_values(ascending=True).head(top_n)
    top_n_names = filtered_ranks.index
    filtered_sig_matrix = nemenyi_results_df.loc[top_n_names, top_n_names]

    fig = plt.figure(figsize=(14, max(7, top_n * 0.3)))
    ax = fig.add_subplot(111)
    sp.critical_difference_diagram(
        ranks=filtered_ranks,
        sig_matrix=filtered_sig_matrix,
        ax=ax,
        label_props={'fontsize': 9}
    )
    ax.set_title(f"Top {top_n} Hubness-aware kNN Configs CD Diagram ({dataset_name})", pad=20)
    plt.tight_layout()

    full_path = output_dir / f"{dataset_name}_cd_diagram_top_{top_n}.png"
    plt.savefig(full_path, bbox_inches='tight')
    plt.close()
    print(f"  Saved Top {top_n} CD diagram to {full_path}")
    return full_path


def run_statistical_analysis(fold_matrix: pd.DataFrame, dataset: str,
                             output_dir: Path = OUTPUT_DIR) -> str:
    """
    Runs the Friedman and Nemenyi tests and saves plots/tables.

    Returns:
        Name of the configuration with the best mean accuracy.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    print(f"  Running Friedman test on {len(fold_matrix.columns)} configurations "
          f"across {len(fold_matrix)} folds...")

    # --- 1. Friedman Test ---
    stat, p_friedman = stats.friedmanchisquare(*[fold_matrix[col] for col in fold_matrix.columns])
    print(f"  Friedman Test: chi2={stat:.4f}, p-value={p_friedman:.6e}")
    pd.DataFrame([{'metric': 'Accuracy', 'chi2': stat, 'p-value': p_friedman}]).to_csv(
        output_dir / f"{dataset}_friedman_test.csv", index=False)

    mean_accuracies = fold_matrix.mean().sort_values(ascending=False)
    best_by_acc_name = mean_accuracies.idxmax()

    if p_friedman >= ALPHA:
        print(f"  Result: No significant difference found (p >= {ALPHA}).")
        print(f"  Best config (by mean accuracy): {best_by_acc_name}")
        return best_by_acc_name

    print(f"  Result: Significant difference found (p < {ALPHA}). Proceeding to post-hoc...")

    # --- 2. Nemenyi Post-Hoc Test ---
    nemenyi_results = sp.posthoc_nemenyi_friedman(fold_matrix)

    # --- 3. Average Ranks ---
    avg_ranks = average_ranks(fold_matrix)
    avg_ranks.to_csv(output_dir / f"{dataset}_avg_ranks.csv")

    # --- 4. Finalists: statistically tied with the best ---
    p_values_vs_best = nemenyi_results[best_by_acc_name]
    finalists = p_values_vs_best[p_values_vs_best > ALPHA].index.tolist()
    print(f"\n  Best configuration (by mean accuracy): {best_by_acc_name}")
    print(f"  Found {len(finalists)} configurations statistically tied with the best:")

    finalist_df = pd.DataFrame([{
        'Config_Name': name,
        'Mean_Accuracy': mean_accuracies[name],
        'Avg_Rank': avg_ranks[name],
        'p_vs_Best': p_values_vs_best[name],
    } for name in finalists]).sort_values(by='Avg_Rank')
    finalist_df.to_csv(output_dir / f"{dataset}_finalist_table.csv", index=False)
    print(finalist_df.to_string(index=False, float_format="%.4f"))

    # --- 5. Plots ---
    plot_top_ranks_bar_chart(avg_ranks, dataset, TOP_N_PLOT, output_dir)
    plot_cd_diagram(avg_ranks, nemenyi_results, dataset, TOP_N_PLOT, output_dir)

    return best_by_acc_name


def main():
    print("\n--- Hubness-aware kNN Variant Statistical Analysis ---")

    results_file = find_latest_results(RESULTS_DIR)
    if results_file is None:
        print(f"Error: No results file found in {RESULTS_DIR}")
        print("Please run 'experiment_runners/hubness_knn_runner.py' first.")
        sys.exit(1)

    df_full = load_data(results_file)
    best_configs = {}
    for dataset in sorted(df_full['Dataset'].unique()):
        fold_matrix = create_fold_matrix(df_full, dataset)
        if fold_matrix.empty:
            continue
        try:
            best_configs[dataset] = run_statistical_analysis(fold_matrix, dataset)
        except Exception as e:
            print(f"  Error analysing {dataset}: {type(e).__name__}: {e}")
            import traceback
            traceback.print_exc()

    print("\n" + "=" * 80)
    print("ANALYSIS COMPLETE: BEST HUBNESS-AWARE kNN CONFIGURATIONS")
    print("=" * 80)
    for dataset, config in best_configs.items():
        print(f"  {dataset.upper():<14}: {config}")
    print("\n[Stats-Hubness] Done.")


if __name__ == "__main__":
    main()
