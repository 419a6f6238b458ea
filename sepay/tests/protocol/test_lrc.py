from __future__ import annotations

from sepay.protocol.core.lrc import lrc


def test_lrc_empty_buffer_is_zero():
    assert lrc(b"") == 0


def test_lrc_is_xor_of_all_bytes():
    assert lrc(b"\x01\x02\x04") == 0x07
    assert lrc(b"\xFF\xFF") == 0x00


def test_lrc_enquiry_frame_body():
    # LEN_HI LEN_LO CMD SEP ETX of an empty ENQ (0x05) frame
    assert lrc(b"\x00\x02\x05\x7C\x03") == 0x78


def test_lrc_accepts_iterables_of_ints():
    assert lrc([0x10, 0x20, 0x30]) == 0x00
