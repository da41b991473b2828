"""In-memory hash index of package records.

Separate chaining over prime-sized bucket arrays, FNV-1a hashing, and
load-factor driven growth and shrinkage.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from ..core.defensive import ensure, validate_size
from ..core.errors import InvalidInputError, NullArgumentError
from ..core.types import PackageName, PackageRecord

logger = logging.getLogger(__name__)

MIN_CAPACITY = 2
MAX_TABLE_CAPACITY = 1_000_000
GROW_LOAD_FACTOR = 0.75
SHRINK_LOAD_FACTOR = 0.25

FNV_OFFSET_BASIS_32 = 0x811C9DC5
FNV_PRIME_32 = 0x01000193


def fnv1a_32(data: bytes) -> int:
    """32-bit FNV-1a hash of data."""
    h = FNV_OFFSET_BASIS_32
    for byte in data:
        h ^= byte
        h = (h * FNV_PRIME_32) & 0xFFFFFFFF
    return h


def is_prime(n: int) -> bool:
    if n <= 1:
        return False
    if n <= 3:
        return True
    if n % 2 == 0 or n % 3 == 0:
        return False
    i = 5
    while i * i <= n:
        if n % i == 0 or n % (i + 2) == 0:
            return False
        i += 6
    return True


def next_prime(n: int) -> int:
    """Smallest prime >= n."""
    if n <= 2:
        return 2
    if n % 2 == 0:
        n += 1
    while not is_prime(n):
        n += 2
    return n


class _Node:
    """Chain link owning one record."""

    __slots__ = ("record", "next")

    def __init__(self, record: PackageRecord, next: _Node | None = None):
        self.record = record
        self.next = next


class HashIndex:
    """Package name -> PackageRecord map with chained buckets.

    Args:
        initial_capacity: Requested bucket count (rounded up to a prime)
        grow_threshold: Load factor above which an insert doubles capacity
        shrink_threshold: Load factor below which a remove halves capacity
        min_capacity: Smallest capacity the index will use

    Invariants:
        - Capacity is always a prime >= min_capacity
        - Names are unique; a chain holds at most one node per name
        - Every record reachable from the buckets is owned by the index
          (inserted as a deep copy, never shared with the caller)
    """

    def __init__(
        self,
        initial_capacity: int = MIN_CAPACITY,
        *,
        grow_threshold: float = GROW_LOAD_FACTOR,
        shrink_threshold: float = SHRINK_LOAD_FACTOR,
        min_capacity: int = MIN_CAPACITY,
    ):
        ensure(validate_size(initial_capacity, MAX_TABLE_CAPACITY, "capacity"), "hash table size")
        ensure(validate_size(min_capacity, MAX_TABLE_CAPACITY, "capacity"), "minimum hash table size")
        if not 0.0 < shrink_threshold < grow_threshold <= 1.0:
            raise InvalidInputError(
                f"Invalid load factor thresholds: shrink={shrink_threshold}, grow={grow_threshold}"
            )

        self.grow_threshold = grow_threshold
        self.shrink_threshold = shrink_threshold
        self.min_capacity = next_prime(max(min_capacity, MIN_CAPACITY))

        capacity = next_prime(max(initial_capacity, self.min_capacity))
        self._buckets: list[_Node | None] = [None] * capacity
        self._count = 0

        logger.debug(f"Hash index created with capacity {capacity}")

    @property
    def capacity(self) -> int:
        return len(self._buckets)

    @property
    def load_factor(self) -> float:
        return self._count / len(self._buckets)

    def __len__(self) -> int:
        return self._count

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.search(name) is not None

    def __iter__(self) -> Iterator[PackageRecord]:
        return self.records()

    def _bucket(self, name: PackageName, capacity: int | None = None) -> int:
        return fnv1a_32(name.encode("utf-8")) % (capacity or len(self._buckets))

    def _find(self, name: PackageName) -> tuple[int, _Node | None, _Node | None]:
        """Return (bucket, previous node, matching node)."""
        index = self._bucket(name)
        prev = None
        node = self._buckets[index]
        while node is not None:
            if node.record.name == name:
                return index, prev, node
            prev = node
            node = node.next
        return index, prev, None

    def search(self, name: PackageName) -> PackageRecord | None:
        """Return the live record for name, or None.

        The record is owned by the index; it stays valid only until the next
        insert_or_update or remove of the same name.
        """
        if not name or not isinstance(name, str):
            return None
        _, _, node = self._find(name)
        return node.record if node is not None else None

    def insert_or_update(self, record: PackageRecord) -> None:
        """Store a deep copy of record, replacing any entry with its name.

        Raises:
            NullArgumentError: record is None
            InvalidInputError: record has no name
            RunepkgError: a field fails validation; the index is unchanged
        """
        if record is None:
            raise NullArgumentError("Cannot insert a None record")
        if not record.name:
            raise InvalidInputError("Cannot insert a record without a name")

        # The copy is complete before the index is touched.
        owned = record.clone()

        _, _, node = self._find(owned.name)
        if node is not None:
            logger.debug(f"Package '{owned.name}' already indexed, updating")
            node.record = owned
            return

        if (self._count + 1) / len(self._buckets) > self.grow_threshold:
            self._resize(len(self._buckets) * 2)

        index = self._bucket(owned.name)
        self._buckets[index] = _Node(owned, self._buckets[index])
        self._count += 1
        logger.debug(f"Package '{owned.name}' added to hash index")

    def remove(self, name: PackageName) -> bool:
        """Drop the record for name. Returns False if it was not present."""
        if not name or not isinstance(name, str):
            return False

        index, prev, node = self._find(name)
        if node is None:
            return False

        if prev is None:
            self._buckets[index] = node.next
        else:
            prev.next = node.next
        node.next = None
        self._count -= 1
        logger.debug(f"Package '{name}' removed from hash index")

        if (
            self._count > self.min_capacity
            and self._count / len(self._buckets) < self.shrink_threshold
        ):
            self._resize(len(self._buckets) // 2)
        return True

    def _resize(self, requested: int) -> None:
        """Relink every node into a new bucket array of prime size."""
        new_capacity = next_prime(max(requested, self.min_capacity))
        if new_capacity == len(self._buckets):
            return
        ensure(validate_size(new_capacity, MAX_TABLE_CAPACITY * 2, "capacity"), "resize target")

        logger.debug(f"Resizing hash index from {len(self._buckets)} to {new_capacity} buckets")
        new_buckets: list[_Node | None] = [None] * new_capacity
        for head in self._buckets:
            node = head
            while node is not None:
                next_node = node.next
                index = self._bucket(node.record.name, new_capacity)
                node.next = new_buckets[index]
                new_buckets[index] = node
                node = next_node
        self._buckets = new_buckets

    def records(self) -> Iterator[PackageRecord]:
        """Iterate owned records in bucket order."""
        for head in self._buckets:
            node = head
            while node is not None:
                yield node.record
                node = node.next

    def list(self) -> list[PackageName]:
        """Return all indexed names in lexicographic order."""
        return sorted(record.name for record in self.records())

    def clear(self) -> None:
        """Drop every record and return to the minimum capacity."""
        self._buckets = [None] * self.min_capacity
        self._count = 0

    def destroy(self) -> None:
        """Release every record; the index is empty afterwards."""
        for head in self._buckets:
            node = head
            while node is not None:
                next_node = node.next
                node.next = None
                node = next_node
        self.clear()
        logger.debug("Hash index destroyed")
