"""
btrfs transparent compression settings.
"""

from enum import Enum
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigurationError


class CompressionAlgorithm(Enum):
    """Algorithms supported by btrfs."""
    ZLIB = "zlib"
    LZO = "lzo"
    ZSTD = "zstd"


MAX_COMPRESSION_LEVEL = {
    CompressionAlgorithm.ZLIB: 9,
    CompressionAlgorithm.LZO: 1,
    CompressionAlgorithm.ZSTD: 15
}


@dataclass(frozen=True)
class CompressionSetting:
    """A validated algorithm/level pair."""
    algorithm: CompressionAlgorithm
    level: int

    @property
    def max_level(self) -> int:
        return MAX_COMPRESSION_LEVEL[self.algorithm]

    def mount_option(self) -> str:
        """Value for `mount -o`, e.g. compress=zstd:3."""
        # lzo has no levels
        if self.algorithm == CompressionAlgorithm.LZO:
            return f"compress={self.algorithm.value}"
        return f"compress={self.algorithm.value}:{self.level}"

    def property_value(self) -> str:
        """Value for the `compression` subvolume property."""
        return self.algorithm.value


def create_compression(algorithm: str, level: Optional[int] = None) -> CompressionSetting:
    """
    Build a compression setting, validating algorithm and level.

    Args:
        algorithm: One of zlib, lzo, zstd
        level: Compression level; defaults to the maximum for lzo and 3 otherwise

    Raises:
        ConfigurationError: Unknown algorithm or level out of range
    """
    try:
        algo = CompressionAlgorithm(algorithm.lower())
    except ValueError:
        expected = ', '.join(a.value for a in CompressionAlgorithm)
        raise ConfigurationError(
            f"wrong compression algorithm is passed. Expected: {expected}. Got: {algorithm}"
        )

    max_level = MAX_COMPRESSION_LEVEL[algo]
    if level is None:
        level = min(3, max_level)

    if not 0 < level <= max_level:
        raise ConfigurationError(
            f"wrong compression level passed for {algo.value}. Supports value from 1 to {max_level}"
        )

    return CompressionSetting(algorithm=algo, level=level)
