"""
jPKG 封包结构：文件头、文件表，以及读取时抛出的结构性错误。

所有整数均为小端序。文件头和每张表都用 jpkg_crypto.decrypt 解密，
每个区域单独解密。
"""
import struct
from collections import namedtuple

from jpkg_crypto import decrypt

MAGIC = b'jPKG'
HEADER_SIZE = 48
MAX_BLOCK_SIZE = 0x40000
# 单个文件的大小上限，与 int32 一致
MAX_FILE_SIZE = 0x7FFFFFFF


class JPKGError(Exception):
    pass


class BadMagicError(JPKGError):
    pass


class UnsupportedVersionError(JPKGError):
    pass


class TableCountMismatchError(JPKGError):
    pass


class CorruptTableError(JPKGError):
    pass


class TruncatedArchiveError(JPKGError):
    pass


class DecompressionError(JPKGError):
    pass


HeaderV3 = namedtuple('HeaderV3', [
    'signature', 'version', 'unk0', 'files_count', 'blocks_count',
    'files_size', 'blocks_size', 'data_offset', 'unk1', 'size', 'unk2',
])
HeaderV3.format = '<4sq9i'

HeaderV4 = namedtuple('HeaderV4', [
    'signature', 'version', 'unk0', 'files_count', 'files_size',
    'data_offset', 'unk1', 'unk2', 'size', 'unk3',
])
HeaderV4.format = '<4sqq7i'

# v3 文件：offset/size 指向拼接后的数据块空间
Node = namedtuple('Node', ['hash', 'offset', 'size'])
Node.format = '<Qqq'

# v3 数据块：offset/size 指向原始封包文件
Entry = namedtuple('Entry', ['offset', 'size', 'type'])
Entry.format = '<qii'

FileV4 = namedtuple('FileV4', ['hash', 'offset', 'uncompressed_size', 'size'])
FileV4.format = '<Qqqq'

HEADER_FORMATS = {
    3: HeaderV3,
    4: HeaderV4,
}


def read_exact(f, size):
    data = f.read(size)
    if len(data) != size:
        raise TruncatedArchiveError(f'Expected {size} bytes at offset {f.tell() - len(data)}, '
                                    f'got {len(data)} instead!')
    return data


def read_header(f):
    """解密 48 字节的文件头，返回 HeaderV3 或 HeaderV4。"""
    header = decrypt(read_exact(f, HEADER_SIZE))

    if header[:4] != MAGIC:
        raise BadMagicError("Invalid magic! This doesn't look like a jPKG file!")

    version = struct.unpack_from('<q', header, 4)[0]
    header_type = HEADER_FORMATS.get(version)
    if header_type is None:
        raise UnsupportedVersionError(f'Version {version} is not supported!')

    return header_type._make(struct.unpack(header_type.format, header))


def parse_records(record_type, data, name):
    record_size = struct.calcsize(record_type.format)
    if len(data) % record_size:
        raise CorruptTableError(f'{name} table is {len(data)} bytes, '
                                f'not a multiple of the {record_size}-byte record size')
    return [record_type._make(fields) for fields in struct.iter_unpack(record_type.format, data)]


def check_count(records, expected, name):
    if len(records) != expected:
        raise TableCountMismatchError(f'Expected {expected} {name}, got {len(records)} instead!')


def read_v3_tables(f, header):
    """
    读取紧跟在文件头之后的 v3 合并表。

    两张子表作为一个区域一次解密：先是 files_size 字节的 Node 记录，
    然后是 blocks_size 字节的 Entry 记录。
    """
    if header.files_size < 0 or header.blocks_size < 0:
        raise CorruptTableError(f'Negative table size: files {header.files_size}, '
                                f'blocks {header.blocks_size}')

    table = decrypt(read_exact(f, header.files_size + header.blocks_size))

    files = parse_records(Node, table[:header.files_size], 'file')
    check_count(files, header.files_count, 'files')

    blocks = parse_records(Entry, table[header.files_size:], 'block')
    check_count(blocks, header.blocks_count, 'blocks')

    for node in files:
        if node.offset < 0 or node.size < 0:
            raise CorruptTableError(f'File {node.hash:08X} has a negative offset or size')
    for block in blocks:
        if block.offset < 0 or not 0 <= block.size <= MAX_BLOCK_SIZE:
            raise CorruptTableError(f'Block at offset {block.offset} has invalid size {block.size}')

    return files, blocks


def read_v4_table(f, header):
    """读取紧跟在文件头之后的 v4 文件表。"""
    if header.files_size < 0:
        raise CorruptTableError(f'Negative table size: files {header.files_size}')

    table = decrypt(read_exact(f, header.files_size))

    files = parse_records(FileV4, table, 'file')
    check_count(files, header.files_count, 'files')

    for entry in files:
        if entry.offset < 0 or entry.size < 0 or entry.uncompressed_size < 0:
            raise CorruptTableError(f'File {entry.hash:08X} has a negative offset or size')
        if entry.size > MAX_FILE_SIZE or entry.uncompressed_size > MAX_FILE_SIZE:
            raise CorruptTableError(f'File {entry.hash:08X} is too large: size {entry.size}, '
                                    f'uncompressed size {entry.uncompressed_size}')

    return files
