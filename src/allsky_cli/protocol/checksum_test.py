import unittest

from .checksum import append_checksum, block_checksum, checksum


class TestChecksum(unittest.TestCase):

    def test_empty_sequence_is_zero(self):
        self.assertEqual(checksum(b''), 0)
        self.assertEqual(checksum(''), 0)

    def test_single_opcodes(self):
        """Known opcode checksums: complement, low 7 bits."""
        self.assertEqual(checksum(b'E'), 0x3A)
        self.assertEqual(checksum(b'V'), 0x29)
        self.assertEqual(checksum(b'K'), 0x34)
        self.assertEqual(checksum(b'X'), 0x27)

    def test_str_and_bytes_agree(self):
        self.assertEqual(checksum('Vr'), checksum(b'Vr'))

    def test_accumulates_with_xor(self):
        # 'g' -> 0x18, 0x01 -> 0x7E
        self.assertEqual(checksum(b'g\x01'), 0x18 ^ 0x7E)
        self.assertEqual(checksum(b'g\x00'), 0x18 ^ 0x7F)

    def test_result_fits_in_seven_bits(self):
        for value in range(256):
            self.assertLess(checksum(bytes([value, 0xFF - value])), 0x80)

    def test_deterministic(self):
        frame = b'T\x00\x27\x10\x00\x01'
        self.assertEqual(checksum(frame), checksum(bytearray(frame)))
        self.assertEqual(checksum(frame), checksum(memoryview(frame)))

    def test_append_checksum(self):
        self.assertEqual(append_checksum(b'E'), b'E\x3a')
        self.assertEqual(append_checksum(bytearray(b'V')), b'V\x29')


class TestBlockChecksum(unittest.TestCase):

    def test_plain_xor(self):
        self.assertEqual(block_checksum(b''), 0)
        self.assertEqual(block_checksum(b'\x01\x02\x04'), 0x07)
        self.assertEqual(block_checksum(b'\xff\x0f'), 0xF0)

    def test_pairs_cancel_out(self):
        self.assertEqual(block_checksum(b'\xab\xab\xcd\xcd'), 0)


if __name__ == '__main__':
    unittest.main()
