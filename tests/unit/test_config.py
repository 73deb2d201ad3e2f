"""
Unit tests for configuration loading.
"""

import pytest
import yaml

from config import BuildConfig, LayoutConfig, SearchConfig, Settings, load_config, save_config
from config.settings import get_default_config_path
from ivfflat.core.exceptions import ValidationError
from ivfflat.index import IVFFlatIndex


class TestSettings:
    
    def test_defaults(self):
        settings = Settings()
        
        assert settings.layout.group_size == 32
        assert settings.layout.veclen is None
        assert settings.build.cluster_count == 100
        assert settings.build.training_ratio == 2
        assert settings.search.n_probe == 10
    
    def test_from_dict(self):
        settings = Settings.from_dict({
            "dimension": 16,
            "metric": "inner_product",
            "layout": {"group_size": 16, "veclen": 2},
            "build": {"cluster_count": 8, "seed": 3},
            "search": {"n_probe": 2, "num_threads": 4},
        })
        
        assert settings.dimension == 16
        assert settings.layout == LayoutConfig(group_size=16, veclen=2)
        assert settings.build.cluster_count == 8
        assert settings.build.seed == 3
        assert settings.search.num_threads == 4
    
    def test_round_trip(self):
        settings = Settings(dimension=32, build=BuildConfig(cluster_count=4))
        
        assert Settings.from_dict(settings.to_dict()) == settings
    
    @pytest.mark.parametrize("kwargs", [
        {"layout": LayoutConfig(group_size=24)},
        {"dimension": 6, "layout": LayoutConfig(veclen=4)},
        {"build": BuildConfig(cluster_count=0)},
        {"build": BuildConfig(training_ratio=0)},
        {"search": SearchConfig(n_probe=0)},
        {"dimension": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValidationError):
            Settings(**kwargs)


class TestLoadConfig:
    
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({
            "dimension": 8,
            "build": {"cluster_count": 10},
            "search": {"n_probe": 3},
        }))
        
        settings = load_config(str(path))
        
        assert settings.dimension == 8
        assert settings.build.cluster_count == 10
        assert settings.search.n_probe == 3
        assert settings.layout.group_size == 32
    
    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_config(str(tmp_path / "nope.yaml")) == Settings()
    
    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        
        assert load_config(str(path)) == Settings()
    
    def test_save_then_load(self, tmp_path):
        settings = Settings(
            dimension=32,
            metric="cosine",
            layout=LayoutConfig(group_size=16, veclen=2),
            build=BuildConfig(cluster_count=8, seed=3),
        )
        
        path = save_config(settings, str(tmp_path / "nested" / "ivf.yaml"))
        
        assert path.exists()
        assert load_config(str(path)) == settings
    
    def test_env_variable(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text(yaml.safe_dump({"dimension": 24}))
        monkeypatch.setenv("IVFFLAT_CONFIG", str(path))
        
        assert get_default_config_path() == path
        assert load_config().dimension == 24
    
    def test_shipped_default_config(self, monkeypatch):
        monkeypatch.delenv("IVFFLAT_CONFIG", raising=False)
        
        settings = load_config()
        
        assert settings.build.cluster_count == 100
        assert settings.search.k == 10


class TestIndexFromSettings:
    
    def test_from_settings(self):
        settings = Settings(
            dimension=8,
            metric="l2",
            build=BuildConfig(cluster_count=5, seed=1),
            search=SearchConfig(n_probe=2, k=3, allow_partial=True),
        )
        
        index = IVFFlatIndex.from_settings(settings)
        
        assert index.dimension == 8
        assert index.metric == "euclidean"
        assert index.n_probe == 2
        assert index.params.cluster_count == 5
        assert index.layout.veclen == 4
        assert index.default_k == 3
        assert index.allow_partial
    
    def test_default_k_used_by_search(self, random_vectors):
        settings = Settings(dimension=8, build=BuildConfig(cluster_count=5, seed=1), search=SearchConfig(k=3))
        index = IVFFlatIndex.from_settings(settings)
        index.build(random_vectors)
        
        ids, distances = index.search(random_vectors[0])
        batch_ids, _ = index.search_batch(random_vectors[:4])
        
        assert ids.shape == (3,)
        assert batch_ids.shape == (4, 3)
