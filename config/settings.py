"""
Configuration management for ivfflat.

Provides dataclasses for configuration and utilities
for loading settings from YAML files.
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Literal, Optional

import numpy as np
import yaml

from ivfflat.core.exceptions import ValidationError
from ivfflat.utils.validation import is_power_of_two


@dataclass
class LayoutConfig:
    """
    Interleaved list layout.
    
    ``veclen`` of None picks the widest 16-byte load for the element type
    that divides the dimension.
    """
    group_size: int = 32
    veclen: Optional[int] = None


@dataclass
class BuildConfig:
    """Index build configuration."""
    cluster_count: int = 100
    training_ratio: int = 2
    n_iter: int = 20
    n_redo: int = 1
    seed: Optional[int] = None
    min_points_per_centroid: int = 39
    max_points_per_centroid: int = 256
    add_batch_size: int = 65536


@dataclass
class SearchConfig:
    """Query configuration."""
    n_probe: int = 10
    k: int = 10
    num_threads: int = 1
    allow_partial: bool = False


@dataclass
class Settings:
    """
    Main settings container for ivfflat.
    
    Attributes:
        dimension: Vector dimension
        metric: Distance metric (euclidean, sqeuclidean, inner_product, cosine)
        dtype: Element type of stored vectors
        layout: Interleaved layout settings
        build: Build settings
        search: Search settings
        log_level: Logging level
    """
    dimension: int = 128
    metric: str = "euclidean"
    dtype: Literal["float32", "float16", "float64"] = "float32"
    
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    
    log_level: str = "INFO"
    
    def __post_init__(self):
        self.validate()
    
    def validate(self) -> None:
        """Check settings for values the index cannot run with."""
        if self.dimension <= 0:
            raise ValidationError(f"dimension must be positive, got {self.dimension}")
        if not is_power_of_two(self.layout.group_size):
            raise ValidationError(
                f"group_size must be a power of two, got {self.layout.group_size}"
            )
        if self.layout.veclen is not None:
            if self.layout.veclen < 1 or self.dimension % self.layout.veclen != 0:
                raise ValidationError(
                    f"veclen {self.layout.veclen} must divide dimension {self.dimension}"
                )
        if self.build.cluster_count < 1:
            raise ValidationError(
                f"cluster_count must be >= 1, got {self.build.cluster_count}"
            )
        if self.build.training_ratio < 1:
            raise ValidationError(
                f"training_ratio must be >= 1, got {self.build.training_ratio}"
            )
        if self.search.n_probe < 1:
            raise ValidationError(f"n_probe must be >= 1, got {self.search.n_probe}")
        if self.search.k < 1:
            raise ValidationError(f"k must be >= 1, got {self.search.k}")
        np.dtype(self.dtype)
    
    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Create Settings from dictionary."""
        data = dict(data)
        
        # Extract nested configs
        layout_data = data.pop("layout", None) or {}
        build_data = data.pop("build", None) or {}
        search_data = data.pop("search", None) or {}
        
        return cls(
            layout=LayoutConfig(**layout_data),
            build=BuildConfig(**build_data),
            search=SearchConfig(**search_data),
            **data
        )
    
    def to_dict(self) -> dict:
        """Convert Settings to dictionary."""
        return asdict(self)


def get_default_config_path() -> Path:
    """Get path to default configuration file."""
    # Environment variable wins
    env_config = os.environ.get("IVFFLAT_CONFIG")
    if env_config:
        return Path(env_config)
    
    # Check for config in current directory
    local_config = Path("./config/default_config.yaml")
    if local_config.exists():
        return local_config
    
    return Path(__file__).parent / "default_config.yaml"


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file.
    
    Args:
        config_path: Path to config file. If None, uses default.
        
    Returns:
        Settings object with loaded configuration
        
    Example:
        >>> settings = load_config()
        >>> settings = load_config("./my_config.yaml")
    """
    if config_path is None:
        path = get_default_config_path()
    else:
        path = Path(config_path)
    
    if not path.exists():
        # Return default settings if no config file
        return Settings()
    
    with open(path, "r") as f:
        data = yaml.safe_load(f)
    
    if data is None:
        return Settings()
    
    return Settings.from_dict(data)


def save_config(settings: Settings, config_path: str) -> Path:
    """Write settings to a YAML file that ``load_config`` reads back."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    
    with open(path, "w") as f:
        yaml.safe_dump(settings.to_dict(), f, default_flow_style=False, sort_keys=False)
    
    return path
