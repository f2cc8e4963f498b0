import numpy as np


class MergeSort:
    """
    Non-recursive, stable merge sort of an index array by a key.

    Besides sorting, :meth:`sort` returns the number of swaps a bubble sort
    would need, i.e. the number of index pairs (i < j) with
    ``key[index[i]] > key[index[j]]``.

    Parameters
    ----------
    index : array-like of int
        Positions into ``key``; sorted in place of a copy.
    key : array-like
        Values compared through the index.

    Example
    -------
    >>> ms = MergeSort([0, 1, 2, 3], key=[3, 1, 2, 0])
    >>> ms.sort()
    5
    >>> ms.sorted.tolist()
    [3, 1, 2, 0]
    """

    def __init__(self, index, key):
        self._index = [int(i) for i in np.asarray(index).ravel()]
        self._key = np.asarray(key).ravel().tolist()

    @property
    def sorted(self):
        return np.asarray(self._index, dtype=np.intp)

    def sort(self):
        """Sort the index array. Returns the equivalent number of bubble-sort swaps."""
        key = self._key
        index = self._index
        n = len(index)
        swaps = 0
        # in-place merge sorts exist, but they are slower than O(n log n)
        buffer = [0] * n
        step = 1
        while step < n:
            begin = 0
            k = 0
            while True:
                begin2 = begin + step
                end = begin2 + step
                if end >= n:
                    if begin2 >= n:
                        break
                    end = n

                i = begin
                j = begin2
                while i < begin2 and j < end:
                    if key[index[i]] > key[index[j]]:
                        swaps += begin2 - i
                        buffer[k] = index[j]
                        j += 1
                    else:
                        buffer[k] = index[i]
                        i += 1
                    k += 1
                if i < begin2:
                    buffer[k:k + begin2 - i] = index[i:begin2]
                    k += begin2 - i
                else:
                    buffer[k:k + end - j] = index[j:end]
                    k += end - j
                begin = end
            if k < n:
                buffer[k:n] = index[k:n]
            index, buffer = buffer, index
            step <<= 1
        self._index = index
        return swaps


def count_inversions(values):
    """Number of pairs (i < j) with values[i] > values[j], in O(n log n)."""
    values = np.asarray(values).ravel()
    return MergeSort(np.arange(values.shape[0]), values).sort()
