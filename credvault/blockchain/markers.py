"""
Remark Markers
==============

Wire format of the remark strings written to the ledger, and the pure
functions that split, encode, parse and reassemble them.

Chunk markers:

    KIND:userAddress:dataHash[:integrityHash]:chunkIndex:chunkCount:payload

The integrity hash is present only for the SECURE_* kinds. Single remark
markers:

    CREDENTIAL_PALLET:userAddress:dataHash:payload

Reference anchors:

    CREDENTIAL:userAddress:blobHash:credentialHash:timestampMs

Version: 0.1.0
"""

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from credvault.models.chain import AnchorStrategy, ChainReference

SEPARATOR = ":"
REFERENCE_KIND = "CREDENTIAL"


class MarkerKind(str, Enum):
    """Prefix identifying what a remark carries."""

    CREDENTIAL_DATA = "CREDENTIAL_DATA"
    CREDENTIAL_BATCH = "CREDENTIAL_BATCH"
    CREDENTIAL_PALLET = "CREDENTIAL_PALLET"
    SECURE_CREDENTIAL = "SECURE_CREDENTIAL"
    SECURE_BATCH = "SECURE_BATCH"

    @property
    def is_secure(self) -> bool:
        return self in (MarkerKind.SECURE_CREDENTIAL, MarkerKind.SECURE_BATCH)

    @classmethod
    def for_strategy(cls, strategy: AnchorStrategy, secure: bool = False) -> "MarkerKind":
        if strategy == AnchorStrategy.REMARK:
            return cls.SECURE_CREDENTIAL if secure else cls.CREDENTIAL_DATA
        if strategy == AnchorStrategy.BATCH:
            return cls.SECURE_BATCH if secure else cls.CREDENTIAL_BATCH
        if secure:
            raise ValueError("Single remark markers carry no integrity hash")
        return cls.CREDENTIAL_PALLET


@dataclass(frozen=True)
class ChunkMarker:
    """One decoded chunk remark."""

    kind: MarkerKind
    user_address: str
    data_hash: str
    chunk_index: int
    chunk_count: int
    payload: str
    integrity_hash: str | None = None


def split_into_chunks(data: str, chunk_size: int) -> list[str]:
    """Split `data` into consecutive slices of at most `chunk_size` characters."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be positive")
    return [data[i : i + chunk_size] for i in range(0, len(data), chunk_size)]


def chunk_count_for(size: int, chunk_size: int) -> int:
    """Number of chunks `split_into_chunks` produces for `size` characters."""
    return -(-size // chunk_size)


def encode_chunk_marker(
    kind: MarkerKind,
    user_address: str,
    data_hash: str,
    chunk_index: int,
    chunk_count: int,
    payload: str,
    integrity_hash: str | None = None,
) -> str:
    """Build a chunk remark string."""
    if kind == MarkerKind.CREDENTIAL_PALLET:
        raise ValueError("Use encode_pallet_marker for single remark markers")
    if kind.is_secure != (integrity_hash is not None):
        raise ValueError(f"{kind.value} markers require integrity_hash iff secure")

    fields = [kind.value, user_address, data_hash]
    if integrity_hash is not None:
        fields.append(integrity_hash)
    fields.extend([str(chunk_index), str(chunk_count), payload])
    return SEPARATOR.join(fields)


def parse_chunk_marker(remark: str) -> ChunkMarker | None:
    """
    Decode a chunk remark.

    Returns None for anything that is not a well-formed chunk marker.
    """
    kind_text, _, _ = remark.partition(SEPARATOR)
    try:
        kind = MarkerKind(kind_text)
    except ValueError:
        return None
    if kind == MarkerKind.CREDENTIAL_PALLET:
        return None

    # Payload is everything after the fixed fields
    field_count = 7 if kind.is_secure else 6
    parts = remark.split(SEPARATOR, field_count - 1)
    if len(parts) != field_count:
        return None

    integrity_hash = parts[3] if kind.is_secure else None
    index_text, count_text, payload = parts[-3:]
    try:
        chunk_index = int(index_text)
        chunk_count = int(count_text)
    except ValueError:
        return None
    if chunk_count < 1 or not 0 <= chunk_index < chunk_count:
        return None

    return ChunkMarker(
        kind=kind,
        user_address=parts[1],
        data_hash=parts[2],
        chunk_index=chunk_index,
        chunk_count=chunk_count,
        payload=payload,
        integrity_hash=integrity_hash,
    )


def encode_pallet_marker(user_address: str, data_hash: str, payload: str) -> str:
    """Build a single remark carrying a whole payload."""
    return SEPARATOR.join([MarkerKind.CREDENTIAL_PALLET.value, user_address, data_hash, payload])


def parse_pallet_marker(remark: str) -> tuple[str, str, str] | None:
    """Decode a single remark marker into (user_address, data_hash, payload)."""
    parts = remark.split(SEPARATOR, 3)
    if len(parts) != 4 or parts[0] != MarkerKind.CREDENTIAL_PALLET.value:
        return None
    return parts[1], parts[2], parts[3]


def encode_reference_marker(
    user_address: str,
    blob_hash: str,
    credential_hash: str,
    timestamp_ms: int,
) -> str:
    """Build a reference anchor remark."""
    return SEPARATOR.join(
        [REFERENCE_KIND, user_address, blob_hash, credential_hash, str(timestamp_ms)]
    )


def parse_reference_marker(
    remark: str,
    block_hash: str,
    extrinsic_hash: str,
    block_number: int | None = None,
) -> ChainReference | None:
    """Decode a reference anchor remark into a ChainReference."""
    parts = remark.split(SEPARATOR)
    if len(parts) != 5 or parts[0] != REFERENCE_KIND:
        return None
    try:
        timestamp = int(parts[4])
    except ValueError:
        return None
    return ChainReference(
        user_address=parts[1],
        blob_hash=parts[2],
        credential_hash=parts[3],
        timestamp=timestamp,
        block_hash=block_hash,
        extrinsic_hash=extrinsic_hash,
        block_number=block_number,
    )


class ChunkAssembler:
    """
    Collects the chunk markers of one anchoring, in any order, until the
    set is complete.

    The first payload seen for an index wins and markers disagreeing with
    the first seen chunk count are ignored.
    """

    def __init__(self) -> None:
        self._chunks: dict[int, str] = {}
        self._count: int | None = None
        self._integrity_hash: str | None = None

    @property
    def integrity_hash(self) -> str | None:
        return self._integrity_hash

    @property
    def complete(self) -> bool:
        return self._count is not None and len(self._chunks) == self._count

    def add(self, marker: ChunkMarker) -> str | None:
        """Add a chunk; return the joined payload once the set is complete."""
        if self._count is None:
            self._count = marker.chunk_count
            self._integrity_hash = marker.integrity_hash
        elif marker.chunk_count != self._count:
            return None

        self._chunks.setdefault(marker.chunk_index, marker.payload)
        return self.result()

    def result(self) -> str | None:
        if not self.complete:
            return None
        return "".join(self._chunks[i] for i in range(self._count or 0))


class ScanAssembler:
    """
    Reassembles payloads from chunk markers met in block scan order.

    Chunks of one anchoring are submitted in index order, so a scan meets
    them as a run of indices moving in the scan direction. A marker that
    breaks the run starts a new anchoring, and chunks of different
    anchorings are never joined. A repeated chunk with the same payload is
    a resubmission and stays in its run.

    Usage:
        assembler = ScanAssembler(newest_first=True)
        for marker in markers_in_scan_order:
            payload = assembler.add(marker)
            if payload is not None:
                break
    """

    def __init__(self, newest_first: bool = True) -> None:
        self._step = -1 if newest_first else 1
        self._current = ChunkAssembler()
        self._last: ChunkMarker | None = None

    @property
    def integrity_hash(self) -> str | None:
        return self._current.integrity_hash

    def _continues_run(self, marker: ChunkMarker) -> bool:
        last = self._last
        if last is None:
            return True
        if (marker.chunk_count, marker.integrity_hash) != (last.chunk_count, last.integrity_hash):
            return False
        moved = (marker.chunk_index - last.chunk_index) * self._step
        return moved > 0 or (moved == 0 and marker.payload == last.payload)

    def add(self, marker: ChunkMarker) -> str | None:
        """Add the next marker in scan order; return a payload once an anchoring completes."""
        if not self._continues_run(marker):
            self._current = ChunkAssembler()
        self._last = marker
        return self._current.add(marker)


def reassemble_chunks(markers: Iterable[ChunkMarker]) -> str | None:
    """
    Join the chunk payloads of one anchoring in index order.

    An empty marker set is the empty payload; a non-empty set missing a
    chunk gives None.
    """
    assembler = ChunkAssembler()
    seen = False
    for marker in markers:
        seen = True
        payload = assembler.add(marker)
        if payload is not None:
            return payload
    return None if seen else ""
