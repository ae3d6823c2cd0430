from __future__ import annotations
from typing import Iterator, Sequence, TypeVar

T = TypeVar("T")

def plan_chunks(start_block: int, end_block: int, step: int) -> list[tuple[int, int]]:
    if step <= 0: raise ValueError("step must be positive")
    out: list[tuple[int, int]] = []
    b = start_block
    while b <= end_block:
        fb, tb = b, min(end_block, b + step - 1)
        out.append((fb, tb))
        b = tb + 1
    return out

def split_range(fb: int, tb: int) -> list[tuple[int, int]]:
    """Halve an inclusive range; the left half comes first."""
    mid = (fb + tb) // 2
    return [iv for iv in ((fb, mid), (mid + 1, tb)) if iv[0] <= iv[1]]

def windows(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0: raise ValueError("size must be positive")
    for i in range(0, len(items), size):
        yield items[i:i + size]
