"""
MATLAB container reader.

Reads .mat files into plain Python structures: structs become dicts, numeric
arrays become squeezed numpy arrays, cell arrays become object arrays and
sparse matrices stay scipy.sparse matrices. v5/v7 files are read with
scipy.io.loadmat, v7.3 files (HDF5 based) with h5py.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import h5py
import numpy as np
import scipy.io
import scipy.sparse as sp
from scipy.io.matlab import MatReadError

from infraslow_nwb.utils.exceptions import DataLoadError


logger = logging.getLogger(__name__)


_MATLAB_INTERNAL_PREFIX = "#"


def load_mat(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a MATLAB file into nested dicts.

    Args:
        path: Path to the .mat file

    Returns:
        Dict of top-level variables

    Raises:
        FileNotFoundError: If the file does not exist
        DataLoadError: If the file cannot be parsed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"MAT file not found: {path}")

    if h5py.is_hdf5(str(path)):
        logger.info(f"Reading MAT v7.3 file: {path}")
        try:
            with h5py.File(str(path), mode="r") as f:
                return {
                    key: _read_h5_node(f, f[key])
                    for key in f.keys()
                    if not key.startswith(_MATLAB_INTERNAL_PREFIX)
                }
        except (OSError, KeyError, ValueError) as e:
            raise DataLoadError(
                f"Cannot read MAT v7.3 file {path}: {e}",
                file_path=str(path),
                original_error=e,
            ) from e

    logger.info(f"Reading MAT file: {path}")
    try:
        data = scipy.io.loadmat(
            str(path),
            squeeze_me=True,
            simplify_cells=True,
        )
    except (MatReadError, OSError, ValueError, TypeError, NotImplementedError) as e:
        raise DataLoadError(
            f"Cannot read MAT file {path}: {e}",
            file_path=str(path),
            original_error=e,
        ) from e

    return {key: value for key, value in data.items() if not key.startswith("__")}


def _decode_attr(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, np.ndarray):
        return _decode_attr(value.item()) if value.size == 1 else str(value)
    return str(value)


def _squeeze(arr: np.ndarray) -> Any:
    arr = np.squeeze(arr)
    if arr.ndim == 0:
        return arr[()]
    return arr


def _read_h5_node(f: h5py.File, node: Union[h5py.Group, h5py.Dataset]) -> Any:
    if isinstance(node, h5py.Group):
        if "MATLAB_sparse" in node.attrs:
            return _read_h5_sparse(node)
        return {
            key: _read_h5_node(f, node[key])
            for key in node.keys()
            if not key.startswith(_MATLAB_INTERNAL_PREFIX)
        }

    matlab_class = _decode_attr(node.attrs.get("MATLAB_class", b"double"))

    if int(np.asarray(node.attrs.get("MATLAB_empty", 0)).ravel()[0]):
        if matlab_class == "char":
            return ""
        if matlab_class == "cell":
            return np.empty(0, dtype=object)
        return np.empty(0)

    # MATLAB stores arrays column-major
    data = np.asarray(node[()]).T

    if matlab_class == "cell":
        items = np.empty(data.shape, dtype=object)
        for idx, ref in np.ndenumerate(data):
            items[idx] = _read_h5_node(f, f[ref])
        return _squeeze(items)

    if matlab_class == "char":
        return "".join(chr(int(c)) for c in data.ravel(order="F"))

    if matlab_class == "logical":
        data = data.astype(bool)

    return _squeeze(data)


def _read_h5_sparse(group: h5py.Group) -> sp.csc_matrix:
    n_rows = int(np.asarray(group.attrs["MATLAB_sparse"]).ravel()[0])
    jc = np.asarray(group["jc"][()], dtype=np.int64).ravel()
    ir = np.asarray(group["ir"][()], dtype=np.int64).ravel() if "ir" in group else np.empty(0, dtype=np.int64)
    if "data" in group:
        values = np.asarray(group["data"][()]).ravel()
    else:
        values = np.ones(ir.size)
    if _decode_attr(group.attrs.get("MATLAB_class", b"double")) == "logical":
        values = values.astype(bool)
    return sp.csc_matrix((values, ir, jc), shape=(n_rows, jc.size - 1))


def lookup(tree: Any, *keys: str, default: Optional[Any] = None) -> Any:
    """
    Walk nested dicts, returning ``default`` if any key is missing.

    Example:
        >>> lookup(data, "dataStruct", "eyeData", "M1_s20190122")
    """
    node = tree
    for key in keys:
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node
