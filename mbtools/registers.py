"""
RegisterMap: the slave's holding register bank.

- Registers are unsigned 16-bit, read/write.
- Addresses are 0-based: 0..size-1, no gaps.
- FC03 and FC04 read the same bank (there is no separate input bank).
- Every access is range-checked before the storage is touched.
"""

from __future__ import annotations

import threading
from typing import List

from mbtools.errors import IllegalAddressError

DEFAULT_SIZE = 32


class RegisterMap:
    def __init__(self, size: int = DEFAULT_SIZE):
        if size <= 0:
            raise ValueError("register map size must be positive")
        self._lock = threading.Lock()
        self._values = [0] * size

    def __len__(self) -> int:
        return len(self._values)

    @property
    def size(self) -> int:
        return len(self._values)

    def read(self, address: int, count: int = 1) -> List[int]:
        with self._lock:
            self._check_range(address, count)
            return self._values[address : address + count]

    def write(self, address: int, value: int) -> None:
        # check-then-mutate under one lock hold
        with self._lock:
            self._check_range(address, 1)
            self._values[address] = value & 0xFFFF

    def snapshot(self) -> List[int]:
        with self._lock:
            return list(self._values)

    def _check_range(self, address: int, count: int) -> None:
        if address < 0 or count <= 0:
            raise IllegalAddressError(f"invalid address/count {address}/{count}")
        if address + count > len(self._values):
            raise IllegalAddressError(
                f"illegal address {address} (count {count}, size {len(self._values)})"
            )
