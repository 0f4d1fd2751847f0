# density_clusterer/persistence.py
"""
This module provides functions for saving and loading the state of a fitted
HDBSCAN model (its configuration, fitted arrays and stability map) and of
built spatial trees.

Model directory layout:
    config.pkl   - the ClustererConfig (pickle)
    arrays.npz   - labels, core distances, MST, single-linkage and condensed trees
    state.pkl    - cluster stability, metadata and warnings (pickle)
"""

import logging
import pickle
from pathlib import Path
from typing import Any, Dict

import numpy as np

from .exceptions import ModelNotFitError
from .trees.spatial_tree import SpatialTree

# Set up a logger for this module
logger = logging.getLogger(__name__)

CONFIG_FILE = 'config.pkl'
ARRAYS_FILE = 'arrays.npz'
STATE_FILE = 'state.pkl'

# --- PUBLIC API ---


def save_model(model, directory_path: str | Path) -> None:
    """
    Saves all components of a fitted model to a specified directory.

    Args:
        model: The fitted HDBSCAN instance to save.
        directory_path: The directory where model components will be saved.

    Raises:
        ModelNotFitError: If the model has not been fit.
    """
    if not model.is_fit:
        raise ModelNotFitError('Cannot save an unfitted model. Please call fit() first.')

    logger.info(f'Saving fitted model to directory: {directory_path}...')
    p = Path(directory_path)
    p.mkdir(parents=True, exist_ok=True)

    # 1. The configuration goes to the root of the model directory.
    with open(p / CONFIG_FILE, 'wb') as f:
        pickle.dump(model.config, f)

    # 2. Fitted arrays in one compressed archive.
    np.savez_compressed(p / ARRAYS_FILE, **model.get_fit_arrays())

    # 3. Everything that is not an array.
    with open(p / STATE_FILE, 'wb') as f:
        pickle.dump(model.get_fit_state(), f)

    logger.info('Model saved successfully.')


def load_model_components(directory_path: str | Path) -> Dict[str, Any]:
    """
    Loads all model components from a directory on disk.

    Returns:
        A dictionary with 'config', 'arrays' and 'state' entries, ready to be
        restored into a new HDBSCAN instance.

    Raises:
        FileNotFoundError: If the directory or any required file is missing.
    """
    logger.info(f'Loading fitted model components from: {directory_path}')
    p = Path(directory_path)

    if not p.exists():
        raise FileNotFoundError(f'Model directory not found: {directory_path}')

    for name in (CONFIG_FILE, ARRAYS_FILE, STATE_FILE):
        if not (p / name).exists():
            raise FileNotFoundError(f'Required model file not found: {p / name}')

    components: Dict[str, Any] = {}
    with open(p / CONFIG_FILE, 'rb') as f:
        components['config'] = pickle.load(f)

    with np.load(p / ARRAYS_FILE, allow_pickle=False) as archive:
        components['arrays'] = {key: archive[key] for key in archive.files}

    with open(p / STATE_FILE, 'rb') as f:
        components['state'] = pickle.load(f)

    logger.info('All model components loaded successfully.')
    return components


def save_tree(tree: SpatialTree, path: str | Path) -> None:
    """Pickles a tree snapshot, creating parent directories as needed."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f'Saving {type(tree).__name__} ({tree.n_samples:,} points) to {output_path}')
    with open(output_path, 'wb') as f:
        pickle.dump(tree.snapshot(), f)


def load_tree(path: str | Path) -> SpatialTree:
    """
    Restores a tree saved with `save_tree`, without rebuilding it.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    input_path = Path(path)
    if not input_path.exists():
        raise FileNotFoundError(f'Tree file not found: {input_path}')

    with open(input_path, 'rb') as f:
        state = pickle.load(f)
    tree = SpatialTree.from_snapshot(state)
    logger.info(f'Loaded {type(tree).__name__} with {tree.n_samples:,} points from {input_path}')
    return tree
