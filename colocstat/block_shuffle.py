import math
from typing import List, NamedTuple, Tuple

import numpy as np


class Block(NamedTuple):
    """Axis-aligned block of the image lattice, clipped at the image border."""

    origin: Tuple[int, ...]
    shape: Tuple[int, ...]

    def slices(self):
        return tuple(slice(o, o + s) for o, s in zip(self.origin, self.shape))


def block_size_for(shape):
    """Edge length floor(sqrt(extent)) per axis, at least 1."""
    return tuple(max(1, int(math.floor(math.sqrt(extent)))) for extent in shape)


class BlockShuffler:
    """
    Permutes the positions of sqrt-sized blocks of an n-dimensional image.

    Each block's content is copied verbatim; only the block order changes.
    Blocks at the far border of an axis that is not a multiple of the block
    edge are clipped to the image. A block only trades places with blocks of
    the same clipped shape (interior with interior, edge strips with edge
    strips of the same axis), so every output pixel receives exactly one
    source pixel and the value multiset of the image is preserved.

    Parameters
    ----------
    image : array-like
        The image to shuffle (any number of dimensions, no empty axes).
    random_state : int, np.random.Generator or None
        Seed of the shuffler's own generator, used by successive
        :meth:`shuffle` calls without an explicit ``random_state``.
    """

    def __init__(self, image, random_state=None):
        self.image = np.asarray(image)
        if self.image.ndim == 0:
            raise ValueError("BlockShuffler needs an image with at least one dimension.")
        if any(extent == 0 for extent in self.image.shape):
            raise ValueError(f"Cannot block-shuffle an empty image of shape {self.image.shape}.")
        self.rng = np.random.default_rng(random_state)

        self.block_size = block_size_for(self.image.shape)
        self.n_blocks_per_dim = tuple(
            -(-extent // size) for extent, size in zip(self.image.shape, self.block_size)
        )
        self.n_blocks = int(np.prod(self.n_blocks_per_dim))
        self._blocks = self._lattice()

        # positions sharing a clipped shape, in order of first appearance
        classes = {}
        for i, block in enumerate(self._blocks):
            classes.setdefault(block.shape, []).append(i)
        self._classes = [np.asarray(members, dtype=np.intp) for members in classes.values()]

    def _lattice(self):
        blocks = []
        for pos in np.ndindex(*self.n_blocks_per_dim):
            origin = tuple(g * s for g, s in zip(pos, self.block_size))
            shape = tuple(
                min(s, extent - o) for o, s, extent in zip(origin, self.block_size, self.image.shape)
            )
            blocks.append(Block(origin=origin, shape=shape))
        return blocks

    @property
    def blocks(self) -> List[Block]:
        """Blocks in C order of their grid position."""
        return list(self._blocks)

    def permutation(self, random_state=None):
        """
        Block assignment of one shuffle: output block j takes input block perm[j].
        ``perm[j]`` always has the same clipped shape as block j.
        """
        rng = self.rng if random_state is None else np.random.default_rng(random_state)
        perm = np.arange(self.n_blocks)
        for members in self._classes:
            perm[members] = members[rng.permutation(members.shape[0])]
        return perm

    def shuffle(self, random_state=None):
        """
        A new image of the same shape and dtype with block positions permuted.

        Parameters
        ----------
        random_state : int, np.random.Generator or None
            Explicit seed for this shuffle; None draws from the shuffler's
            own generator.
        """
        perm = self.permutation(random_state)
        shuffled = np.zeros_like(self.image)
        for target, source in zip(self._blocks, perm):
            shuffled[target.slices()] = self.image[self._blocks[source].slices()]
        return shuffled


def block_shuffle(image, seed=None):
    """Block-shuffled surrogate of ``image``, see :class:`BlockShuffler`."""
    return BlockShuffler(image, random_state=seed).shuffle()
