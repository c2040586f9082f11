import struct

# ==============================================================================
# 密钥流种子 (KEY SEED)
#
# 每次调用 decrypt() 都从这个值重新开始：文件表和每个数据块/文件
# 都是各自独立加密的区域，并不是贯穿整个文件的一条密钥流。
KEY_SEED = 0x9A44EDF5
# ==============================================================================


def decrypt(data: bytes) -> bytes:
    """
    以小端 uint32 为单位，与 xorshift 密钥流逐字异或。

    末尾 len(data) % 4 个字节不加密，原样拷贝。
    密钥流与数据无关，所以同一个函数也可以用来加密。
    """
    word_count = len(data) >> 2
    words = struct.unpack_from(f'<{word_count}I', data)

    key = KEY_SEED
    out = []
    for word in words:
        tmp = ((key << 13) & 0xFFFFFFFF) ^ key
        tmp = (tmp >> 17) ^ tmp
        key = ((tmp << 5) & 0xFFFFFFFF) ^ tmp
        out.append(word ^ key)

    return struct.pack(f'<{word_count}I', *out) + bytes(data[word_count << 2:])
