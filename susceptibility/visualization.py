"""
Visualization Module for Susceptibility Mapping
===============================================

Creates the maps and charts of a run:
- Predictor layer panels
- Training/test sample locations
- Probability and classified susceptibility maps with legend
- ROC curve, confusion matrix, variable importance
- Class area, percentage, pie and combined charts
"""

from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
import geopandas as gpd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
from matplotlib.colors import BoundaryNorm, LinearSegmentedColormap, ListedColormap
from rasterio.plot import plotting_extent
import seaborn as sns

from susceptibility.config import DEFAULT_LAYER_STYLE, LAYER_STYLES, VISUALIZATION
from susceptibility.utils import get_logger, timer, ensure_dir

logger = get_logger()

plt.style.use('seaborn-v0_8-whitegrid')


# =============================================================================
# MAP HELPERS
# =============================================================================

def add_north_arrow(ax, x=0.95, y=0.95, size=0.08):
    ax.annotate('N', xy=(x, y), xycoords='axes fraction', ha='center', va='bottom',
                fontsize=12, fontweight='bold')
    ax.annotate('', xy=(x, y - 0.01), xycoords='axes fraction', xytext=(x, y - size),
                textcoords='axes fraction', arrowprops=dict(arrowstyle='->', color='black', lw=2))


def palette_cmap(palette: List[str], name: str = "palette") -> LinearSegmentedColormap:
    """Continuous colormap through the given colours."""
    return LinearSegmentedColormap.from_list(name, palette)


class Visualizer:
    """
    Create figures for a susceptibility run.

    Attributes
    ----------
    output_dir : Path
        Directory for saving figures
    dpi : int
        Figure resolution
    format : str
        Output format (png, pdf, svg)

    Example
    -------
    >>> viz = Visualizer("outputs/figures")
    >>> viz.plot_roc_curve(roc, auc, optimum)
    """

    def __init__(
        self,
        output_dir: Union[str, Path] = "outputs/figures",
        dpi: int = VISUALIZATION['figure_dpi'],
        format: str = VISUALIZATION['figure_format'],
        title: str = "Susceptibility"
    ):
        self.output_dir = ensure_dir(output_dir)
        self.dpi = dpi
        self.format = format
        self.title = title

        self.colors = {
            'primary': '#2E86AB',
            'secondary': '#A23B72',
            'positive': '#1f4e9c',
            'negative': '#d7191c',
            'neutral': '#666666'
        }

        logger.info(f"Visualizer initialized: {self.output_dir}")

    def _save_figure(self, fig: plt.Figure, filename: str) -> Path:
        """Save figure to output directory."""
        filepath = self.output_dir / f"{filename}.{self.format}"
        fig.savefig(filepath, dpi=self.dpi, bbox_inches='tight', facecolor='white')
        plt.close(fig)
        logger.info(f"  Saved: {filepath.name}")
        return filepath

    @staticmethod
    def _extent(data: np.ndarray, transform):
        return plotting_extent(data, transform)

    # =========================================================================
    # INPUT MAPS
    # =========================================================================

    @timer
    def plot_predictor_layers(self, stack, styles: Optional[Dict] = None) -> Path:
        """One panel per predictor band, drawn with its display style."""
        logger.info("Plotting predictor layers...")
        styles = styles or LAYER_STYLES

        n = len(stack.band_names)
        n_cols = min(4, n)
        n_rows = int(np.ceil(n / n_cols))
        fig, axes = plt.subplots(n_rows, n_cols, figsize=(4.5 * n_cols, 4 * n_rows), squeeze=False)

        for ax, name in zip(axes.flat, stack.band_names):
            band = stack.band(name)
            style = styles.get(name, DEFAULT_LAYER_STYLE)
            im = ax.imshow(
                np.ma.masked_invalid(band),
                cmap=palette_cmap(style['palette'], name),
                vmin=style['min'], vmax=style['max'],
                extent=self._extent(band, stack.transform)
            )
            fig.colorbar(im, ax=ax, shrink=0.7)
            ax.set_title(name, fontsize=VISUALIZATION['label_fontsize'], fontweight='bold')
            ax.tick_params(labelsize=7)

        for ax in list(axes.flat)[n:]:
            ax.axis('off')

        plt.suptitle("Predictor Layers", fontsize=VISUALIZATION['title_fontsize'], fontweight='bold')
        plt.tight_layout()
        return self._save_figure(fig, "predictor_layers")

    @timer
    def plot_samples(
        self,
        stack,
        samples: pd.DataFrame,
        class_labels: List[str] = ("Class 0", "Class 1"),
        class_column: str = "class"
    ) -> Path:
        """Sample locations over the study area (class 1 blue, class 0 red)."""
        logger.info("Plotting sample points...")

        points = gpd.GeoDataFrame(
            samples,
            geometry=gpd.points_from_xy(samples['longitude'], samples['latitude']),
            crs="EPSG:4326"
        ).to_crs(stack.crs)

        fig, ax = plt.subplots(figsize=(10, 9))
        ax.imshow(
            np.where(stack.study_mask, 1.0, np.nan), cmap=ListedColormap(['#e8e8e8']),
            extent=self._extent(stack.study_mask, stack.transform)
        )

        for value, color in ((1, self.colors['positive']), (0, self.colors['negative'])):
            subset = points[points[class_column] == value]
            ax.scatter(subset.geometry.x, subset.geometry.y, s=14, c=color,
                       edgecolor='white', linewidth=0.4, label=f"{class_labels[value]} ({len(subset)})")

        ax.legend(loc='lower right', fontsize=10)
        ax.set_title("Training Samples", fontsize=VISUALIZATION['title_fontsize'], fontweight='bold')
        add_north_arrow(ax)
        plt.tight_layout()
        return self._save_figure(fig, "samples")

    # =========================================================================
    # SUSCEPTIBILITY MAPS
    # =========================================================================

    @timer
    def plot_probability_map(
        self,
        probability: np.ndarray,
        transform,
        palette: List[str],
        band_name: str = "Probability"
    ) -> Path:
        logger.info("Plotting probability map...")

        fig, ax = plt.subplots(figsize=(12, 10))
        im = ax.imshow(
            np.ma.masked_invalid(probability), cmap=palette_cmap(palette, "probability"),
            vmin=0, vmax=1, extent=self._extent(probability, transform)
        )
        cbar = plt.colorbar(im, ax=ax, shrink=0.8)
        cbar.set_label(band_name, fontsize=11)

        ax.set_title(f"{self.title} Probability", fontsize=VISUALIZATION['title_fontsize'], fontweight='bold')
        add_north_arrow(ax)
        plt.tight_layout()
        return self._save_figure(fig, "probability_map")

    @timer
    def plot_classified_map(self, classes: np.ndarray, transform, scheme: Dict) -> Path:
        """Classified map with a legend of class colours and names."""
        logger.info("Plotting classified map...")

        colors = scheme['colors']
        names = scheme['class_names']
        cmap = ListedColormap(colors)
        norm = BoundaryNorm(np.arange(0.5, len(colors) + 1.5), cmap.N)

        fig, ax = plt.subplots(figsize=(12, 10))
        ax.imshow(
            np.ma.masked_equal(classes, 0), cmap=cmap, norm=norm,
            interpolation='nearest', extent=self._extent(classes, transform)
        )

        patches = [mpatches.Patch(color=c, label=l) for c, l in zip(colors, names)]
        ax.legend(handles=patches, loc='lower right', title=f"{self.title} Level", fontsize=10)

        ax.set_title(f"{self.title} Map", fontsize=VISUALIZATION['title_fontsize'], fontweight='bold')
        add_north_arrow(ax)
        plt.tight_layout()
        return self._save_figure(fig, "classified_map")

    # =========================================================================
    # MODEL EVALUATION
    # =========================================================================

    @timer
    def plot_roc_curve(self, roc: pd.DataFrame, auc: float, optimum: Optional[Dict] = None) -> Path:
        """ROC points sorted by FPR, with the Youden optimum marked."""
        logger.info("Plotting ROC curve...")

        points = roc.sort_values(['FPR', 'TPR'])
        fig, ax = plt.subplots(figsize=(8, 8))

        ax.plot(points['FPR'], points['TPR'], color=self.colors['primary'], lw=2.5,
                marker='o', markersize=3, label=f'ROC curve (AUC = {auc:.3f})')
        ax.plot([0, 1], [0, 1], color='gray', lw=1.5, linestyle='--', label='Random classifier')
        ax.fill_between(points['FPR'], points['TPR'], alpha=0.2, color=self.colors['primary'])

        if optimum is not None:
            ax.scatter([optimum['FPR']], [optimum['TPR']], s=80, color=self.colors['secondary'],
                       zorder=5, label=f"Optimal threshold = {optimum['threshold']:.2f}")

        ax.set_xlim([0.0, 1.0])
        ax.set_ylim([0.0, 1.05])
        ax.set_xlabel('False Positive Rate', fontsize=12)
        ax.set_ylabel('True Positive Rate', fontsize=12)
        ax.set_title("ROC Curve", fontsize=14, fontweight='bold')
        ax.legend(loc='lower right', fontsize=11)
        ax.grid(True, alpha=0.3)
        ax.set_aspect('equal')

        plt.tight_layout()
        return self._save_figure(fig, "roc_curve")

    @timer
    def plot_confusion_matrix(
        self,
        cm: np.ndarray,
        classes: List[str] = ("Class 0", "Class 1"),
        title: str = "Confusion Matrix"
    ) -> Path:
        logger.info("Plotting confusion matrix...")

        cm = np.asarray(cm)
        fig, ax = plt.subplots(figsize=(8, 6))
        sns.heatmap(cm, annot=True, fmt='d', cmap='Blues',
                    xticklabels=list(classes), yticklabels=list(classes),
                    annot_kws={'size': 16}, ax=ax)

        ax.set_xlabel('Predicted Label', fontsize=12)
        ax.set_ylabel('True Label', fontsize=12)
        ax.set_title(title, fontsize=14, fontweight='bold')

        total = cm.sum()
        if total > 0:
            for i in range(cm.shape[0]):
                for j in range(cm.shape[1]):
                    ax.text(j + 0.5, i + 0.7, f'({cm[i, j] / total * 100:.1f}%)',
                            ha='center', va='center', fontsize=10, color='gray')

        plt.tight_layout()
        return self._save_figure(fig, "confusion_matrix")

    @timer
    def plot_feature_importance(self, importance_df: pd.DataFrame, title: str = "Variable Importance") -> Path:
        logger.info("Plotting variable importance...")

        df = importance_df.sort_values('importance', ascending=True)
        share = df['importance'] / df['importance'].sum() * 100 if df['importance'].sum() > 0 else df['importance']

        fig, ax = plt.subplots(figsize=(10, 6))
        colors = plt.cm.RdYlGn_r(np.linspace(0.2, 0.8, len(df)))
        bars = ax.barh(df['variable'], share, color=colors, edgecolor='white')

        for bar, val in zip(bars, share):
            ax.text(bar.get_width() + 0.5, bar.get_y() + bar.get_height() / 2,
                    f'{val:.1f}%', va='center', fontsize=10)

        ax.set_xlabel('Importance (%)', fontsize=12)
        ax.set_title(title, fontsize=14, fontweight='bold')
        ax.set_xlim(0, max(float(share.max()), 1.0) * 1.15)
        ax.spines['top'].set_visible(False)
        ax.spines['right'].set_visible(False)

        plt.tight_layout()
        return self._save_figure(fig, "variable_importance")

    # =========================================================================
    # AREA CHARTS
    # =========================================================================

    def _bar_labels(self, ax, bars, values, fmt):
        for bar, val in zip(bars, values):
            ax.text(bar.get_x() + bar.get_width() / 2, bar.get_height(),
                    fmt.format(val), ha='center', va='bottom', fontsize=10)

    @timer
    def plot_area_chart(self, stats: pd.DataFrame, colors: List[str]) -> Path:
        """Area of each class in square kilometres."""
        logger.info("Plotting class area chart...")

        fig, ax = plt.subplots(figsize=(10, 6))
        bars = ax.bar(stats['ClassName'], stats['Area_sqkm'], color=colors[:len(stats)],
                      edgecolor='white', linewidth=1.5)
        self._bar_labels(ax, bars, stats['Area_sqkm'], '{:.2f}')

        ax.set_xlabel(f"{self.title} Class", fontsize=12)
        ax.set_ylabel('Area (sq km)', fontsize=12)
        ax.set_title(f"{self.title} Area by Class", fontsize=14, fontweight='bold')
        ax.set_ylim(0, max(float(stats['Area_sqkm'].max()), 1e-6) * 1.15)
        ax.yaxis.grid(True, alpha=0.3)

        plt.tight_layout()
        return self._save_figure(fig, "class_area")

    @timer
    def plot_percentage_chart(self, stats: pd.DataFrame, colors: List[str]) -> Path:
        """Share of the study area in each class (0-100 %)."""
        logger.info("Plotting class percentage chart...")

        fig, ax = plt.subplots(figsize=(10, 6))
        bars = ax.bar(stats['ClassName'], stats['Percentage'], color=colors[:len(stats)],
                      edgecolor='white', linewidth=1.5)
        self._bar_labels(ax, bars, stats['Percentage'], '{:.1f}%')

        ax.set_xlabel(f"{self.title} Class", fontsize=12)
        ax.set_ylabel('Percentage of Study Area (%)', fontsize=12)
        ax.set_title(f"{self.title} Percentage by Class", fontsize=14, fontweight='bold')
        ax.set_ylim(0, 100)
        ax.yaxis.grid(True, alpha=0.3)

        plt.tight_layout()
        return self._save_figure(fig, "class_percentage")

    @timer
    def plot_pie_chart(self, stats: pd.DataFrame, colors: List[str]) -> Optional[Path]:
        logger.info("Plotting class pie chart...")

        if stats['Area_sqkm'].sum() <= 0:
            logger.warning("  No classified area, skipping pie chart")
            return None

        fig, ax = plt.subplots(figsize=(8, 8))
        ax.pie(stats['Area_sqkm'], labels=stats['ClassName'], colors=colors[:len(stats)],
               autopct='%1.1f%%', startangle=90, explode=[0.02] * len(stats))
        ax.set_title(f"{self.title} Area Distribution", fontsize=14, fontweight='bold')

        plt.tight_layout()
        return self._save_figure(fig, "class_pie")

    @timer
    def plot_combined_chart(self, stats: pd.DataFrame, colors: List[str]) -> Path:
        """Area bars with the percentage on a secondary axis."""
        logger.info("Plotting combined area/percentage chart...")

        fig, ax1 = plt.subplots(figsize=(10, 6))
        x = np.arange(len(stats))
        bars = ax1.bar(x, stats['Area_sqkm'], color=colors[:len(stats)], edgecolor='white', width=0.6)
        self._bar_labels(ax1, bars, stats['Area_sqkm'], '{:.1f}')
        ax1.set_ylabel('Area (sq km)', fontsize=12)
        ax1.set_xticks(x)
        ax1.set_xticklabels(stats['ClassName'])

        ax2 = ax1.twinx()
        ax2.plot(x, stats['Percentage'], color=self.colors['neutral'], marker='o', lw=2)
        ax2.set_ylabel('Percentage (%)', fontsize=12)
        ax2.set_ylim(0, 100)
        ax2.grid(False)

        ax1.set_title(f"{self.title}: Area and Percentage", fontsize=14, fontweight='bold')
        plt.tight_layout()
        return self._save_figure(fig, "class_combined")

    # =========================================================================
    # CREATE ALL FIGURES
    # =========================================================================

    @timer
    def create_all_figures(self, results) -> Dict[str, Path]:
        """
        Create every figure for a finished run.

        Parameters
        ----------
        results : PipelineResult
            Stack, samples, evaluation, probability, classes and area stats

        Returns
        -------
        dict
            Paths to all created figures
        """
        logger.info("=" * 60)
        logger.info("CREATING ALL FIGURES")
        logger.info("=" * 60)

        scheme = results.scheme
        class_labels = results.profile['class_labels']
        transform = results.stack.transform

        figures = {
            'predictors': self.plot_predictor_layers(results.stack),
            'samples': self.plot_samples(results.stack, results.samples, class_labels),
            'probability': self.plot_probability_map(
                results.probability, transform,
                results.profile['probability_palette'], results.profile['probability_band']
            ),
            'classified': self.plot_classified_map(results.classes, transform, scheme),
            'roc': self.plot_roc_curve(
                results.evaluation.roc, results.evaluation.auc, results.evaluation.optimum
            ),
            'confusion': self.plot_confusion_matrix(
                results.evaluation.error_matrix.matrix, class_labels
            ),
            'importance': self.plot_feature_importance(results.importance),
            'area': self.plot_area_chart(results.area_stats, scheme['colors']),
            'percentage': self.plot_percentage_chart(results.area_stats, scheme['colors']),
            'combined': self.plot_combined_chart(results.area_stats, scheme['colors'])
        }
        pie = self.plot_pie_chart(results.area_stats, scheme['colors'])
        if pie is not None:
            figures['pie'] = pie

        logger.info(f"Created {len(figures)} figures")
        return figures
