"""
Unit tests for the MATLAB container reader.

v5 files are produced with scipy.io.savemat; v7.3 files are built directly
with h5py following MATLAB's HDF5 layout (column-major datasets,
MATLAB_class attributes, #refs# for cell contents, MATLAB_sparse groups).
"""

import h5py
import numpy as np
import pytest
import scipy.io
import scipy.sparse as sp

from infraslow_nwb.io.matfile import load_mat, lookup
from infraslow_nwb.utils.exceptions import DataLoadError


SPARSE = np.array([[1.0, 0.0], [0.0, 2.0], [3.0, 0.0]])
MATRIX = np.arange(6.0).reshape(2, 3)


@pytest.fixture
def v5_file(temp_dir):
    cell = np.empty(2, dtype=object)
    cell[0] = np.array([1.0, 2.0])
    cell[1] = np.array([3.0, 4.0])
    path = temp_dir / "v5.mat"
    scipy.io.savemat(str(path), {
        "data": {
            "s": {"a": 1.0, "m": MATRIX},
            "sp": sp.csc_matrix(SPARSE),
            "c": cell,
            "name": "abc",
        }
    })
    return path


def _set_class(node, matlab_class: str):
    node.attrs["MATLAB_class"] = np.bytes_(matlab_class)


@pytest.fixture
def v73_file(temp_dir):
    path = temp_dir / "v73.mat"
    with h5py.File(path, "w") as f:
        refs = f.create_group("#refs#")
        data = f.create_group("data")
        _set_class(data, "struct")

        s = data.create_group("s")
        _set_class(s, "struct")
        _set_class(s.create_dataset("a", data=np.array([[1.0]])), "double")
        _set_class(s.create_dataset("m", data=MATRIX.T), "double")

        sparse = data.create_group("sp")
        _set_class(sparse, "double")
        sparse.attrs["MATLAB_sparse"] = np.uint64(3)
        sparse.create_dataset("jc", data=np.array([0, 2, 3], dtype=np.uint64))
        sparse.create_dataset("ir", data=np.array([0, 2, 1], dtype=np.uint64))
        sparse.create_dataset("data", data=np.array([1.0, 3.0, 2.0]))

        items = []
        for i, values in enumerate(([1.0, 2.0], [3.0, 4.0])):
            item = refs.create_dataset(f"c{i}", data=np.array(values).reshape(2, 1))
            _set_class(item, "double")
            items.append(item.ref)
        cell = data.create_dataset("c", shape=(2, 1), dtype=h5py.ref_dtype)
        cell[0, 0] = items[0]
        cell[1, 0] = items[1]
        _set_class(cell, "cell")

        name = data.create_dataset("name", data=np.array([[ord(ch)] for ch in "abc"], dtype=np.uint16))
        _set_class(name, "char")

        flag = data.create_dataset("flag", data=np.array([[1], [0]], dtype=np.uint8))
        _set_class(flag, "logical")

        empty = data.create_dataset("empty", data=np.array([0, 0], dtype=np.uint64))
        _set_class(empty, "double")
        empty.attrs["MATLAB_empty"] = np.uint8(1)
    return path


def _check_common(data):
    assert data["s"]["a"] == 1.0
    np.testing.assert_array_equal(data["s"]["m"], MATRIX)
    assert sp.issparse(data["sp"])
    np.testing.assert_array_equal(data["sp"].toarray(), SPARSE)
    assert len(data["c"]) == 2
    np.testing.assert_array_equal(np.asarray(data["c"][1]).ravel(), [3.0, 4.0])
    assert data["name"] == "abc"


class TestLoadMatV5:
    """Tests for load_mat() on v5 files."""

    def test_structure(self, v5_file):
        mat = load_mat(v5_file)
        assert set(mat) == {"data"}
        _check_common(mat["data"])


class TestLoadMatV73:
    """Tests for load_mat() on v7.3 (HDF5) files."""

    def test_structure(self, v73_file):
        mat = load_mat(v73_file)
        assert "#refs#" not in mat
        _check_common(mat["data"])

    def test_logical(self, v73_file):
        flag = load_mat(v73_file)["data"]["flag"]
        assert flag.dtype == bool
        assert flag.tolist() == [True, False]

    def test_empty(self, v73_file):
        assert load_mat(v73_file)["data"]["empty"].size == 0


class TestLoadMatErrors:
    """Tests for load_mat() error handling."""

    def test_missing_file(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            load_mat(temp_dir / "missing.mat")

    def test_unreadable_file(self, temp_dir):
        path = temp_dir / "broken.mat"
        path.write_bytes(b"this is not a MAT file " * 8)
        with pytest.raises(DataLoadError) as exc_info:
            load_mat(path)
        assert exc_info.value.file_path == str(path)


class TestLookup:
    """Tests for lookup()."""

    def test_nested_path(self):
        tree = {"a": {"b": {"c": 1}}}
        assert lookup(tree, "a", "b", "c") == 1

    def test_missing_key_returns_default(self):
        assert lookup({"a": {}}, "a", "b") is None
        assert lookup({"a": 1}, "a", "b", default=0) == 0
