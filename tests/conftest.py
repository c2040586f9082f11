"""Builders for synthetic jPKG archives."""

import struct
from collections import namedtuple

import lz4.block
import pytest

from jpkg_crypto import decrypt
from jpkg_format import HEADER_SIZE, MAGIC, MAX_BLOCK_SIZE

# data: the whole container; regions: (offset, size) of each block/file body
Archive = namedtuple('Archive', ['data', 'regions'])


def build_v3(files, stored_blocks=(), files_count=None, blocks_count=None):
    """
    files: list of (hash, payload). Payloads are laid out back to back and the
    result is zero-padded to whole blocks.
    """
    logical = bytearray()
    nodes = []
    for file_hash, payload in files:
        nodes.append(struct.pack('<Qqq', file_hash, len(logical), len(payload)))
        logical += payload
    if not logical or len(logical) % MAX_BLOCK_SIZE:
        logical += bytes(MAX_BLOCK_SIZE - len(logical) % MAX_BLOCK_SIZE)

    chunks = [bytes(logical[i:i + MAX_BLOCK_SIZE]) for i in range(0, len(logical), MAX_BLOCK_SIZE)]
    files_size = len(nodes) * 24
    blocks_size = len(chunks) * 16
    offset = HEADER_SIZE + files_size + blocks_size

    entries = []
    bodies = []
    regions = []
    for i, chunk in enumerate(chunks):
        if i in stored_blocks:
            body = chunk
        else:
            body = lz4.block.compress(chunk, store_size=False)
            assert len(body) < MAX_BLOCK_SIZE
        entries.append(struct.pack('<qii', offset, len(body), 0))
        bodies.append(decrypt(body))
        regions.append((offset, len(body)))
        offset += len(body)

    header = struct.pack(
        '<4sq9i', MAGIC, 3, 0,
        len(nodes) if files_count is None else files_count,
        len(chunks) if blocks_count is None else blocks_count,
        files_size, blocks_size, HEADER_SIZE + files_size + blocks_size, 0, offset, 0,
    )
    data = decrypt(header) + decrypt(b''.join(nodes) + b''.join(entries)) + b''.join(bodies)
    return Archive(data, regions)


def build_v4(files, files_count=None):
    """files: list of (hash, payload, compress)."""
    files_size = len(files) * 32
    offset = HEADER_SIZE + files_size

    records = []
    bodies = []
    regions = []
    for file_hash, payload, compress in files:
        body = lz4.block.compress(payload, store_size=False) if compress else payload
        if compress:
            assert len(body) < len(payload)
        records.append(struct.pack('<Qqqq', file_hash, offset, len(payload), len(body)))
        bodies.append(decrypt(body))
        regions.append((offset, len(body)))
        offset += len(body)

    header = struct.pack(
        '<4sqq7i', MAGIC, 4, 0,
        len(files) if files_count is None else files_count,
        files_size, HEADER_SIZE + files_size, 0, 0, offset, 0,
    )
    data = decrypt(header) + decrypt(b''.join(records)) + b''.join(bodies)
    return Archive(data, regions)


def replace_region(data, region, fill):
    offset, size = region
    assert len(fill) == size
    return data[:offset] + fill + data[offset + size:]


@pytest.fixture
def write_archive(tmp_path):
    def write(data, name='sample.jpkg'):
        path = tmp_path / name
        path.write_bytes(data)
        return path
    return write
