import dataclasses
import enum
import json
import os
from typing import Iterator, NamedTuple, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.utils import Bunch

from .errors import ContractViolation


class SamplePair(NamedTuple):
    """One position's intensity in channel 1 (x) and channel 2 (y)."""

    x: float
    y: float


def as_channel(channel, name="channel"):
    """
    Turn a channel (array, array-like or plain iterable of scalars) into a numpy array.
    """
    if isinstance(channel, np.ndarray):
        arr = channel
    elif hasattr(channel, "__array__") or isinstance(channel, (list, tuple)):
        arr = np.asarray(channel)
    else:
        try:
            arr = np.fromiter(channel, dtype=float)
        except TypeError as e:
            raise TypeError(f"{name} must be an array or an iterable of numbers.") from e
    if arr.dtype == object:
        raise TypeError(f"{name} must contain real numbers, got dtype=object.")
    return arr


def conforms(channel1, channel2):
    """True if both channels iterate over the same lattice in the same order."""
    return np.shape(channel1) == np.shape(channel2)


@dataclasses.dataclass(frozen=True, eq=False)
class PairedSamples:
    """
    Two co-registered channels flattened in the same (C) order.

    Iterating yields :class:`SamplePair` objects; the numerical code works on
    the ``x``/``y`` float64 views instead.
    """

    ch1: np.ndarray
    ch2: np.ndarray
    shape: Tuple[int, ...] = ()

    @classmethod
    def from_channels(cls, channel1, channel2):
        ch1 = as_channel(channel1, "channel1")
        ch2 = as_channel(channel2, "channel2")
        if not conforms(ch1, ch2):
            raise ContractViolation(
                f"Channels must have the same shape and iteration order, got {ch1.shape} and {ch2.shape}."
            )
        return cls(ch1=ch1.ravel(), ch2=ch2.ravel(), shape=tuple(ch1.shape))

    @property
    def x(self):
        return np.asarray(self.ch1, dtype=np.float64)

    @property
    def y(self):
        return np.asarray(self.ch2, dtype=np.float64)

    def __len__(self):
        return int(self.ch1.shape[0])

    def __iter__(self) -> Iterator[SamplePair]:
        for a, b in zip(self.ch1.tolist(), self.ch2.tolist()):
            yield SamplePair(float(a), float(b))


def pair_samples(channel1, channel2=None):
    """Validate and pair two channels. Accepts an existing PairedSamples as-is."""
    if isinstance(channel1, PairedSamples) and channel2 is None:
        return channel1
    return PairedSamples.from_channels(channel1, channel2)


def dtype_range(dtype):
    """
    Representable (min, max) of a pixel dtype.

    Parameters
    ----------
    dtype : numpy dtype or anything np.dtype accepts

    Returns
    -------
    (float, float)
    """
    dtype = np.dtype(dtype)
    if dtype == np.bool_:
        return 0.0, 1.0
    if np.issubdtype(dtype, np.integer):
        info = np.iinfo(dtype)
        return float(info.min), float(info.max)
    if np.issubdtype(dtype, np.floating):
        info = np.finfo(dtype)
        return float(info.min), float(info.max)
    raise ValueError(f"Unsupported pixel dtype {dtype}; expected bool, integer or floating.")


def load_data(input):
    """
    Load a channel from a file.
    Parameters:
    - input: str, path to the input file, or already loaded data

    Returns:
    - data: numpy array, loaded data
    """
    if not isinstance(input, str):
        return input
    if input.endswith(".csv"):
        data = pd.read_csv(input, header=None).values
        if data.shape[1] == 1:
            data = data[:, 0]
    elif input.endswith(".npy"):
        data = np.load(input)
    elif input.endswith(".txt"):
        data = pd.read_csv(input, header=None, sep=r"\s+").values
        if data.shape[1] == 1:
            data = data[:, 0]
    else:
        raise ValueError(
            "Unsupported file format. Please provide a .csv, .npy, or .txt file."
        )
    return data


def _to_jsonable(value, array_sink, key):
    if isinstance(value, (Bunch, dict)):
        return {k: _to_jsonable(v, array_sink, f"{key}_{k}" if key else k) for k, v in value.items()}
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_jsonable(getattr(value, f.name), array_sink, f"{key}_{f.name}")
                for f in dataclasses.fields(value)}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, np.ndarray):
        if value.ndim == 0:
            return value.item()
        return array_sink(key, value)
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v, array_sink, f"{key}_{i}") for i, v in enumerate(value)]
    return value


def save_results(results, output_prefix):
    """
    Write a results Bunch to ``{output_prefix}.json``.

    Arrays are stored next to it as ``{output_prefix}_{key}.npy`` and referenced
    by file name from the JSON summary.

    Returns
    -------
    str
        Path of the JSON file.
    """
    if not output_prefix:
        raise ValueError("output_prefix must be a non-empty path prefix.")
    out_dir = os.path.dirname(output_prefix) or "."
    os.makedirs(out_dir, exist_ok=True)

    def array_sink(key, arr):
        path = f"{output_prefix}_{key}.npy"
        np.save(path, arr)
        return os.path.basename(path)

    summary = _to_jsonable(results, array_sink, "")
    json_path = f"{output_prefix}.json"
    with open(json_path, "w") as f:
        json.dump(summary, f, indent=2, allow_nan=True)
    return json_path


def read_results(json_path: str, load_arrays: Optional[bool] = True):
    """Read a summary written by :func:`save_results` back into a Bunch."""
    with open(json_path, "r") as f:
        summary = json.load(f)
    base_dir = os.path.dirname(json_path) or "."

    def restore(value):
        if isinstance(value, dict):
            return Bunch(**{k: restore(v) for k, v in value.items()})
        if load_arrays and isinstance(value, str) and value.endswith(".npy"):
            return np.load(os.path.join(base_dir, value))
        return value

    return restore(summary)
