"""
Deterministic pseudo-randomness from string seeds.

FNV-1a (32-bit) over UTF-16 code units, so the same seed string produces the
same value as the storefront clients. Used for jitter and tie-breaking only,
never for anything security related.
"""

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619
UINT32_MAX = 0xFFFFFFFF


def fnv1a_32(value: str) -> int:
    """32-bit FNV-1a hash of the UTF-16 code units of `value`."""
    h = FNV_OFFSET_BASIS
    data = value.encode("utf-16-le", errors="surrogatepass")
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * FNV_PRIME) & UINT32_MAX
    return h


def hash_hex(value: str) -> str:
    """Eight-char lowercase hex digest."""
    return format(fnv1a_32(value), "08x")


class SeededRandom:
    """
    Maps seed strings onto [0, 1] and symmetric jitter.

    Stateless: two calls with the same seed always agree.
    """

    @staticmethod
    def unit(seed: str) -> float:
        return fnv1a_32(seed) / UINT32_MAX

    @classmethod
    def jitter(cls, seed: str, amplitude: float) -> float:
        """Value in [-amplitude, +amplitude]."""
        return (cls.unit(seed) - 0.5) * 2.0 * amplitude


def seeded_jitter(seed: str, amplitude: float) -> float:
    return SeededRandom.jitter(seed, amplitude)
