"""Tests for the pydantic configuration schema and YAML loader."""

import pytest
from pydantic import ValidationError

from density_clusterer.config import (
    ClustererConfig,
    HdbscanConfig,
    NeighborsConfig,
    load_config,
    resolve_config,
    save_config,
)
from density_clusterer.exceptions import ConfigurationError


def test_defaults():
    config = ClustererConfig()
    assert config.hdbscan.min_samples == 5
    assert config.hdbscan.min_cluster_size == 5
    assert config.hdbscan.alpha == 1.0
    assert config.hdbscan.algorithm == 'auto'
    assert config.tree.leaf_size == 40
    assert config.tree.metric == 'euclidean'
    assert config.output.log_level == 20


def test_algorithm_is_normalised():
    assert HdbscanConfig(algorithm=' Prims_KDTree ').algorithm == 'prims_kdtree'
    with pytest.raises(ValidationError):
        HdbscanConfig(algorithm='kmeans')


@pytest.mark.parametrize('field, value', [
    ('min_samples', 0),
    ('min_cluster_size', 0),
    ('alpha', 0.0),
    ('alpha', -1.0),
])
def test_invalid_hdbscan_values(field, value):
    with pytest.raises(ValidationError):
        HdbscanConfig(**{field: value})


def test_unknown_fields_are_forbidden():
    with pytest.raises(ValidationError):
        NeighborsConfig(n_neighbours=3)


def test_log_level_strings_and_ints():
    assert ClustererConfig(output={'log_level': 'debug'}).output.log_level == 10
    assert ClustererConfig(output={'log_level': 40}).output.log_level == 40
    with pytest.raises(ValidationError):
        ClustererConfig(output={'log_level': 'loud'})


def test_minkowski_requires_p_at_least_one():
    ClustererConfig(tree={'metric': 'minkowski', 'metric_params': {'p': 3}})
    with pytest.raises(ValidationError):
        ClustererConfig(tree={'metric': 'minkowski', 'metric_params': {'p': 0.5}})


def test_resolve_config_routes_overrides():
    config = resolve_config(min_cluster_size=10, leaf_size=20, metric='Manhattan')
    assert config.hdbscan.min_cluster_size == 10
    assert config.tree.leaf_size == 20
    assert config.tree.metric == 'manhattan'


def test_resolve_config_uses_primary_for_shared_names():
    assert resolve_config(algorithm='generic').hdbscan.algorithm == 'generic'
    neighbors = resolve_config(primary='neighbors', algorithm='ball_tree')
    assert neighbors.neighbors.algorithm == 'ball_tree'
    assert neighbors.hdbscan.algorithm == 'auto'


def test_resolve_config_merges_with_base_config():
    base = ClustererConfig(hdbscan=HdbscanConfig(min_samples=3))
    config = resolve_config(base, min_cluster_size=8)
    assert config.hdbscan.min_samples == 3
    assert config.hdbscan.min_cluster_size == 8

    from_section = resolve_config(HdbscanConfig(alpha=2.0))
    assert from_section.hdbscan.alpha == 2.0


def test_resolve_config_errors():
    with pytest.raises(ConfigurationError):
        resolve_config(no_such_parameter=1)
    with pytest.raises(ConfigurationError):
        resolve_config(alpha=0)
    with pytest.raises(ConfigurationError):
        resolve_config(config=42)


def test_yaml_round_trip(tmp_path):
    config = resolve_config(min_cluster_size=12, leaf_size=15, log_level='WARNING')
    path = tmp_path / 'nested' / 'clusterer.yaml'
    save_config(config, path)

    loaded = load_config(path)
    assert loaded == config


def test_load_config_defaults_and_missing_file(tmp_path):
    assert load_config() == ClustererConfig()
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / 'missing.yaml')


def test_load_config_rejects_invalid_yaml_values(tmp_path):
    path = tmp_path / 'bad.yaml'
    path.write_text('hdbscan:\n  min_cluster_size: 0\n')
    with pytest.raises(ValidationError):
        load_config(path)


def test_load_config_rejects_unknown_sections(tmp_path):
    path = tmp_path / 'typo.yaml'
    path.write_text('hdbscn:\n  min_cluster_size: 4\n')
    with pytest.raises(ConfigurationError, match='hdbscn'):
        load_config(path)

    path.write_text('- 1\n- 2\n')
    with pytest.raises(ConfigurationError):
        load_config(path)


def test_load_config_applies_overrides_on_top_of_the_file(tmp_path):
    path = tmp_path / 'clusterer.yaml'
    path.write_text('hdbscan:\n  min_cluster_size: 8\ntree:\n  leaf_size: 12\n')

    config = load_config(path, leaf_size=25)
    assert config.hdbscan.min_cluster_size == 8
    assert config.tree.leaf_size == 25
    assert load_config(tmp_path / 'clusterer.yaml').tree.leaf_size == 12
