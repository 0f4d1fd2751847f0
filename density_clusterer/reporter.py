# density_clusterer/reporter.py
"""
This module generates human-readable summaries of fitted models and built
trees as pandas DataFrames, plus a logged report of a clustering result.
"""

import logging
from typing import Any, Dict

import numpy as np
import pandas as pd

from .utils.labels import NOISE_LABEL

# Set up a logger for this module
logger = logging.getLogger(__name__)

CONDENSED_COLUMNS = ['parent', 'child', 'lambda_val', 'child_size']


def condensed_tree_to_frame(condensed_tree: np.ndarray) -> pd.DataFrame:
    """
    Converts a condensed tree structured array into a DataFrame.

    Args:
        condensed_tree: Structured array with parent, child, lambda_val, child_size.

    Returns:
        A DataFrame with one row per condensed-tree edge, in breadth-first order.
    """
    if condensed_tree is None or condensed_tree.shape[0] == 0:
        return pd.DataFrame({
            'parent': pd.Series(dtype='int64'),
            'child': pd.Series(dtype='int64'),
            'lambda_val': pd.Series(dtype='float64'),
            'child_size': pd.Series(dtype='int64'),
        })
    return pd.DataFrame({name: condensed_tree[name] for name in CONDENSED_COLUMNS})


def fit_summary_frame(labels: np.ndarray) -> pd.DataFrame:
    """
    Counts the points per label.

    Returns:
        A DataFrame indexed by label (noise first, then clusters ascending) with
        'count' and 'percentage' columns.
    """
    labels = np.asarray(labels, dtype=np.intp)
    values, counts = np.unique(labels, return_counts=True)
    total = max(labels.shape[0], 1)

    summary = pd.DataFrame(
        {'count': counts.astype(np.int64), 'percentage': 100.0 * counts / total},
        index=pd.Index(values.astype(np.int64), name='label'),
    )
    summary['is_noise'] = summary.index == NOISE_LABEL
    return summary


def tree_stats_frame(tree) -> pd.DataFrame:
    """
    Node-level diagnostics of a built SpatialTree.

    Returns:
        A DataFrame indexed by node id with idx_start, idx_end, is_leaf,
        radius and n_points columns.
    """
    node_data = tree.get_node_data()
    frame = pd.DataFrame({
        'idx_start': node_data['idx_start'],
        'idx_end': node_data['idx_end'],
        'is_leaf': node_data['is_leaf'],
        'radius': node_data['radius'],
    })
    frame['n_points'] = frame['idx_end'] - frame['idx_start']
    frame.index.name = 'node'
    return frame


def generate_report(model) -> Dict[str, Any]:
    """
    Collects summary statistics of a fitted HDBSCAN model and logs them.

    Returns:
        A dictionary with 'summary' and 'cluster_size_distribution' sections.
    """
    labels = model.labels_
    cluster_sizes = pd.Series(labels[labels != NOISE_LABEL]).value_counts()
    size_stats = cluster_sizes.describe().to_dict() if not cluster_sizes.empty else {}

    report_dict = {
        'summary': {
            'total_records_processed': int(labels.shape[0]),
            'clusters_found': model.n_clusters_,
            'noise_points': model.n_noise_,
            'noise_rate': model.n_noise_ / max(labels.shape[0], 1),
            'mst_algorithm': model.algorithm_,
        },
        'cluster_size_distribution': size_stats,
    }

    _log_report(report_dict)
    return report_dict


def _log_report(report_dict: Dict[str, Any]) -> None:
    """Formats and logs the generated report dictionary."""
    logger.info('--- Clustering Report ---')
    for key, val in report_dict['summary'].items():
        val_str = f'{val:.2%}' if 'rate' in key else str(val)
        logger.info(f"{key.replace('_', ' ').title():<28}: {val_str}")

    if report_dict['cluster_size_distribution']:
        logger.info('--- Cluster Size Distribution ---')
        dist = report_dict['cluster_size_distribution']
        logger.info(f"{'Mean Size':<28}: {dist.get('mean', 0):.2f}")
        logger.info(f"{'Min / Max Size':<28}: {int(dist.get('min', 0))} / {int(dist.get('max', 0))}")


__all__ = ['condensed_tree_to_frame', 'fit_summary_frame', 'tree_stats_frame', 'generate_report']
