# 文件名: unpack_jpkg.py
# 描述: jPKG (.jpkg) 游戏封包解包工具，支持第 3 版和第 4 版格式。
#
# 使用方法:
#   python unpack_jpkg.py <封包文件>
#   python unpack_jpkg.py <封包文件> -o <输出根目录>
#
# 解出的文件保存在 output/<去掉扩展名的封包名>/ 下，命名为 <hash>.<ext>，
# 扩展名由每个文件的前 4 个字节决定。

import os
import argparse

import lz4.block
from tqdm import tqdm

from jpkg_crypto import decrypt
from jpkg_format import (
    MAX_BLOCK_SIZE,
    CorruptTableError,
    DecompressionError,
    read_exact,
    read_header,
    read_v3_tables,
    read_v4_table,
)

OUTPUT_ROOT = 'output'

MAGIC_EXTENSIONS = {
    b'OggS': 'ogg',
    b'jTOC': 'jtoc',
    b'jARC': 'jarc',
    b'jLUA': 'jlua',
    b'jlev': 'jlev',
    b'jpfb': 'jpfb',
    b'jMSG': 'jmsg',
    b'coli': 'coli',
    b'soli': 'soli',
    b'jtex': 'jtex',
    b'jmo2': 'jmo2',
    b'OTTO': 'otto',
    b'jSHD': 'jshd',
    b'jprj': 'jprj',
    b'BKHD': 'bnk',
    b'jIDT': 'jidt',
    b'jTXS': 'jtxs',
    b'jSDF': 'jsdf',
    b'jfxc': 'jfxc',
    b'jvfx': 'jvfx',
    b'mesh': 'mesh',
    b'skel': 'skel',
    b'jSWD': 'jswd',
    b'jSCR': 'jscr',
}


# ==============================================================================
# 文件类型识别
# ==============================================================================

def get_ext(data: bytes) -> str:
    return MAGIC_EXTENSIONS.get(bytes(data[:4]), 'dat')


def get_text_magic(data: bytes) -> str | None:
    """4 字节标签是可打印 ASCII 时返回其文本，否则返回 None。"""
    tag = bytes(data[:4])
    if len(tag) != 4:
        return None
    try:
        text = tag.decode('ascii')
    except UnicodeDecodeError:
        return None
    if text.encode('ascii') != tag or not text.isprintable():
        return None
    return text


def classify(data: bytes, file_hash: int) -> str:
    """
    生成文件的输出文件名。

    标签是文本但不在 MAGIC_EXTENSIONS 中，多半是还没收录的格式，
    所以打印提示；文件仍然保存为 .dat。
    """
    ext = get_ext(data)
    file_name = f'{file_hash:08X}.{ext}'

    if ext == 'dat':
        magic = get_text_magic(data)
        if magic is not None:
            tqdm.write(f'Unknown magic in file {file_name}: {magic}')

    return file_name


# ==============================================================================
# 解密与解压
# ==============================================================================

def lz4_decompress(data, size, what):
    try:
        result = lz4.block.decompress(data, uncompressed_size=size)
    # OverflowError/ValueError/MemoryError: 声明的解压大小超出 lz4 能分配的范围
    except (lz4.block.LZ4BlockError, OverflowError, ValueError, MemoryError) as e:
        raise DecompressionError(f'Lz4 decompression error in {what}: {e}') from e

    if len(result) != size:
        raise DecompressionError(f'Lz4 decompression error in {what}, '
                                 f'wrote {len(result)} bytes but expected {size} bytes')
    return result


def read_blocks(f, blocks):
    """
    按表中顺序解密每个 v3 数据块，拼接成一块连续的缓冲区。

    大小正好是 MAX_BLOCK_SIZE 的块未压缩，原样拼接；更小的块是 LZ4 数据，
    解压后必须正好是 MAX_BLOCK_SIZE 字节。最后一块也不例外：
    最后一块解压后较短的封包同样抛出 DecompressionError，不会被接受。
    """
    buffer = bytearray()
    for block in blocks:
        f.seek(block.offset)
        data = decrypt(read_exact(f, block.size))

        if block.size == MAX_BLOCK_SIZE:
            buffer += data
        else:
            buffer += lz4_decompress(data, MAX_BLOCK_SIZE, f'block at offset {block.offset}')
    return buffer


def iter_v3_files(f, files, blocks):
    buffer = read_blocks(f, blocks)

    for node in files:
        end = node.offset + node.size
        if end > len(buffer):
            raise CorruptTableError(f'File {node.hash:08X} [{node.offset}, {end}) is outside '
                                    f'the {len(buffer)} bytes of block data')
        yield node.hash, bytes(buffer[node.offset:end])


def read_v4_file(f, entry):
    f.seek(entry.offset)
    data = decrypt(read_exact(f, entry.size))

    if entry.uncompressed_size == entry.size:
        return data
    return lz4_decompress(data, entry.uncompressed_size, f'file {entry.hash:08X}')


def iter_v4_files(f, files):
    for entry in files:
        yield entry.hash, read_v4_file(f, entry)


# ==============================================================================
# 解包
# ==============================================================================

def unpack(path, output_root=OUTPUT_ROOT):
    folder_name = os.path.splitext(os.path.basename(path))[0]
    folder_path = os.path.join(output_root, folder_name)

    with open(path, 'rb') as f:
        header = read_header(f)
        print(f'jPKG version {header.version}, {header.files_count} files')

        # 写出任何文件之前先完整校验文件表
        if header.version == 3:
            files, blocks = read_v3_tables(f, header)
            payloads = iter_v3_files(f, files, blocks)
        else:
            files = read_v4_table(f, header)
            payloads = iter_v4_files(f, files)

        os.makedirs(folder_path, exist_ok=True)

        for file_hash, data in tqdm(payloads, total=len(files), desc='Extracting', unit='file'):
            file_name = classify(data, file_hash)
            with open(os.path.join(folder_path, file_name), 'wb') as out_f:
                out_f.write(data)

    print('Done!')
    return folder_path


def main(argv=None):
    parser = argparse.ArgumentParser(prog='jpkg-unpack', description='jPKG 封包解包工具')
    parser.add_argument('path', type=str, help='要解包的 jPKG 封包文件路径')
    parser.add_argument('-o', '--output', type=str, default=OUTPUT_ROOT,
                        help=f'解包输出的根目录 (默认: {OUTPUT_ROOT})')
    opt = parser.parse_args(argv)

    if not os.path.isfile(opt.path):
        print('File does not exist!')
        return

    unpack(opt.path, opt.output)


if __name__ == '__main__':
    main()
