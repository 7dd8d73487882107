# The memory side of the core's memory port.

from amaranth.lib.enum import Enum

class MemWidth(Enum, shape = 2):
    BYTE = 0b00
    HALF = 0b01
    WORD = 0b10

    @property
    def nbytes(self):
        return 1 << self.value

class ByteMemory:
    """A little-endian byte-addressed memory implementing the core's memory
    adapter contract.

    Reads return the whole aligned word containing the address, and the core
    picks the lane it wants out of it. Writes store the low bytes of the data
    at the address aligned down to the access width. Addresses wrap around at
    the end of memory, as though the top address bits weren't decoded.

    Parameters
    ----------
    size (integer): size in bytes. Must be a power of two, and at least 4.
    contents (bytes): initial contents, loaded at address 0.
    """

    def __init__(self, *, size = 1 << 16, contents = b""):
        assert size >= 4 and size & (size - 1) == 0, \
                f"memory size must be a power of two: {size}"
        assert len(contents) <= size, "contents don't fit in memory"

        self.size = size
        self.data = bytearray(size)
        self.load(0, contents)

    @classmethod
    def from_words(cls, words, *, size = 1 << 16):
        m = cls(size = size)
        for i, word in enumerate(words):
            m.write(4 * i, MemWidth.WORD, word)
        return m

    def load(self, address, data):
        for i, byte in enumerate(data):
            self.data[(address + i) & (self.size - 1)] = byte

    def read(self, address, width):
        """Reads the aligned word containing `address`. `width` doesn't change
        the result; it's accepted for symmetry with the bus."""
        base = address & (self.size - 1) & ~3
        return int.from_bytes(self.data[base:base + 4], "little")

    def write(self, address, width, data):
        n = MemWidth(width).nbytes
        base = address & (self.size - 1) & ~(n - 1)
        self.data[base:base + n] = (data & ((1 << (8 * n)) - 1)).to_bytes(n, "little")

    def read_word(self, address):
        return self.read(address, MemWidth.WORD)
