# density_clusterer/utils/labels.py
"""
Label re-encoding for clusterers that emit noise.

Cluster ids produced by label extraction are arbitrary (they come from the
order of a sorted map). `NoiseyLabelEncoder` renumbers them in order of first
appearance in the label vector, so the first point that belongs to a cluster
always gets label 0, while the noise label `-1` is passed through untouched.
"""

import logging
from typing import Dict

import numpy as np

from ..exceptions import ModelNotFitError

# Set up a logger for this module.
logger = logging.getLogger(__name__)

NOISE_LABEL = -1


class NoiseyLabelEncoder:
    """
    Encodes integer labels to 0..n_classes-1 by order of appearance, keeping noise.

    Attributes:
        classes_: The distinct non-noise input labels, in order of appearance.
        mapping_: Input label -> encoded label.
    """

    def __init__(self, noise_label: int = NOISE_LABEL):
        self.noise_label = noise_label
        self.classes_: np.ndarray | None = None
        self.mapping_: Dict[int, int] = {}

    def fit(self, labels: np.ndarray) -> 'NoiseyLabelEncoder':
        mapping: Dict[int, int] = {}
        for label in np.asarray(labels, dtype=np.intp):
            label = int(label)
            if label == self.noise_label or label in mapping:
                continue
            mapping[label] = len(mapping)

        self.mapping_ = mapping
        self.classes_ = np.fromiter(mapping.keys(), dtype=np.intp, count=len(mapping))
        logger.debug(f'Encoded {len(mapping)} distinct cluster labels')
        return self

    def transform(self, labels: np.ndarray) -> np.ndarray:
        if self.classes_ is None:
            raise ModelNotFitError('NoiseyLabelEncoder has not been fit.')
        labels = np.asarray(labels, dtype=np.intp)
        encoded = np.full(labels.shape, self.noise_label, dtype=np.intp)
        for original, new in self.mapping_.items():
            encoded[labels == original] = new
        return encoded

    def fit_transform(self, labels: np.ndarray) -> np.ndarray:
        return self.fit(labels).transform(labels)
