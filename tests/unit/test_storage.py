"""
Unit tests for the saved index format.
"""

import pytest
import numpy as np
from numpy.testing import assert_array_equal

from ivfflat.core.exceptions import CorruptedDataError, FormatMismatchError, StorageError
from ivfflat.layout import GroupedLayout
from ivfflat.storage import (
    MAGIC_NUMBER,
    ClusterHeader,
    FileFooter,
    FileHeader,
    deserialize_params,
    load_index,
    read_header,
    save_index,
    serialize_params,
)


@pytest.fixture
def saved_path(tmp_path, built_state):
    path = tmp_path / "index.ivf"
    save_index(built_state, path, params={"n_probe": 4, "seed": 42})
    return path


class TestFileHeader:
    
    def test_round_trip(self):
        header = FileHeader(
            dimension=8, group_size=32, veclen=4, cluster_count=10,
            params_length=17, dtype_code=0, metric="inner_product",
        )
        
        data = header.to_bytes()
        restored = FileHeader.from_bytes(data)
        
        assert len(data) == FileHeader.SIZE
        assert data[:8] == MAGIC_NUMBER
        assert restored == header
    
    def test_bad_magic(self):
        data = bytearray(FileHeader(dimension=8, cluster_count=1).to_bytes())
        data[:8] = b"NOTIVF\x00\x00"
        
        with pytest.raises(CorruptedDataError, match="magic"):
            FileHeader.from_bytes(bytes(data))
    
    def test_newer_version(self):
        data = FileHeader(dimension=8, cluster_count=1, version=99).to_bytes()
        
        with pytest.raises(FormatMismatchError):
            FileHeader.from_bytes(data)
    
    def test_too_short(self):
        with pytest.raises(CorruptedDataError):
            FileHeader.from_bytes(b"IVFFLAT\x00")
    
    def test_metric_name_too_long(self):
        header = FileHeader(dimension=8, cluster_count=1, metric="m" * 33)
        
        with pytest.raises(FormatMismatchError, match="33 bytes"):
            header.to_bytes()
    
    def test_cluster_header(self):
        data = ClusterHeader(3, 40, 64).to_bytes()
        
        header, offset = ClusterHeader.from_buffer(data, 0)
        
        assert len(data) == ClusterHeader.SIZE
        assert (header.cluster_id, header.size, header.capacity) == (3, 40, 64)
        assert offset == ClusterHeader.SIZE
    
    def test_cluster_header_size_over_capacity(self):
        with pytest.raises(CorruptedDataError):
            ClusterHeader.from_buffer(ClusterHeader(0, 65, 64).to_bytes(), 0)
    
    def test_footer(self):
        assert FileFooter.from_bytes(FileFooter(12345).to_bytes()).checksum == 12345


class TestParams:
    
    def test_round_trip(self):
        params = {"n_probe": 4, "seed": None, "name": "x"}
        
        assert deserialize_params(serialize_params(params)) == params
    
    def test_empty(self):
        assert deserialize_params(b"") == {}


class TestSaveLoad:
    
    def test_header_describes_state(self, saved_path, built_state):
        header = read_header(saved_path)
        
        assert header.dimension == 8
        assert header.cluster_count == built_state.n_lists
        assert header.group_size == 32
        assert header.veclen == 4
        assert header.metric == "euclidean"
    
    def test_round_trip(self, saved_path, built_state):
        state, params = load_index(saved_path)
        
        assert params == {"n_probe": 4, "seed": 42}
        assert state.ntotal == built_state.ntotal
        assert state.metric == built_state.metric
        assert state.layout == built_state.layout
        assert_array_equal(state.centroids, built_state.centroids)
        
        for original, restored in zip(built_state.lists, state.lists):
            assert restored.size == original.size
            assert restored.capacity == original.capacity
            # Blocks are restored as stored, without re-packing
            assert_array_equal(restored.data, original.data)
            assert_array_equal(restored.snapshot().ids, original.snapshot().ids)
        
        for id in (0, 123, 999):
            assert state.locate(id) == built_state.locate(id)
    
    def test_loaded_state_accepts_appends(self, saved_path, dimension):
        state, _ = load_index(saved_path)
        
        state.get_list(0).append(np.ones(dimension), id=5000)
        
        assert state.get_list(0).read(state.get_list(0).size - 1)[1] == 5000
    
    def test_expected_layout_mismatch(self, saved_path):
        with pytest.raises(FormatMismatchError, match="veclen"):
            load_index(saved_path, expected_layout=GroupedLayout(32, 2))
        with pytest.raises(FormatMismatchError, match="group size"):
            load_index(saved_path, expected_layout=GroupedLayout(16, 4))
    
    def test_expected_dimension_mismatch(self, saved_path):
        with pytest.raises(FormatMismatchError, match="dimension"):
            load_index(saved_path, expected_dimension=16)
    
    def test_expected_values_match(self, saved_path):
        state, _ = load_index(
            saved_path, expected_layout=GroupedLayout(32, 4), expected_dimension=8
        )
        
        assert state.ntotal == 1000
    
    def test_checksum_mismatch(self, saved_path):
        data = bytearray(saved_path.read_bytes())
        data[FileHeader.SIZE + 100] ^= 0xFF
        saved_path.write_bytes(bytes(data))
        
        with pytest.raises(CorruptedDataError, match="Checksum"):
            load_index(saved_path)
    
    def test_truncated(self, saved_path):
        data = saved_path.read_bytes()
        saved_path.write_bytes(data[: len(data) // 2])
        
        with pytest.raises(CorruptedDataError):
            load_index(saved_path)
    
    def test_tiny_file(self, tmp_path):
        path = tmp_path / "tiny.ivf"
        path.write_bytes(b"IVF")
        
        with pytest.raises(CorruptedDataError):
            load_index(path)
    
    def test_missing_file(self, tmp_path):
        with pytest.raises(StorageError):
            load_index(tmp_path / "missing.ivf")
    
    def test_no_temp_file_left(self, saved_path):
        assert not saved_path.with_name(saved_path.name + ".tmp").exists()
    
    def test_long_metric_name_rejected_on_save(self, tmp_path, random_vectors):
        from ivfflat.distance import register_metric
        from ivfflat.index import Builder, FlatQuantizer
        
        name = "manhattan_metric_with_a_rather_long_name"
        register_metric(name, lambda a, b: float(np.abs(a - b).sum()))
        state = Builder(metric=name).build(
            random_vectors[:20], quantizer=FlatQuantizer(random_vectors[:2])
        )
        path = tmp_path / "long.ivf"
        
        with pytest.raises(FormatMismatchError, match="Metric name"):
            save_index(state, path)
        assert not path.exists()
        assert not path.with_name(path.name + ".tmp").exists()
    
    def test_float16_state(self, tmp_path, random_vectors):
        from ivfflat.index import Builder, FlatQuantizer
        
        state = Builder(dtype=np.float16).build(
            random_vectors[:100], quantizer=FlatQuantizer(random_vectors[:3])
        )
        save_index(state, tmp_path / "half.ivf")
        
        restored, _ = load_index(tmp_path / "half.ivf")
        
        assert restored.dtype == np.float16
        assert restored.layout.veclen == 8
        assert_array_equal(restored.reconstruct(42), state.reconstruct(42))
