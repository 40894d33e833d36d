import pytest

from devtree.values import ValueFormatError, encode_value, show_data


def test_empty_value_shows_nothing():
    assert show_data(b"") == ""


def test_strings_are_joined_with_spaces():
    assert show_data(b"hello\0world\0") == "hello world"


def test_forced_string_type():
    assert show_data(b"abc\0", "s") == "abc"


def test_unterminated_string_raises():
    with pytest.raises(ValueFormatError):
        show_data(b"abcd", "s")


def test_length_not_multiple_of_size_raises():
    with pytest.raises(ValueFormatError):
        show_data(b"\x00\x01\x02", "x", 2)


def test_encode_strings():
    assert encode_value(["hello", "world"], "s") == b"hello\0world\0"


def test_string_round_trip():
    encoded = encode_value(["alpha", "beta"], "s")
    assert show_data(encoded) == "alpha beta"


def test_integer_round_trip_default():
    encoded = encode_value(["1", "2", "300"])
    assert len(encoded) == 12
    assert show_data(encoded) == "1 2 300"


def test_negative_cell():
    encoded = encode_value(["-1"])
    assert encoded == b"\xff\xff\xff\xff"
    assert show_data(encoded) == "-1"


def test_unsigned_display_of_negative_cell():
    encoded = encode_value(["-1"])
    assert show_data(encoded, "u") == str(0xFFFFFFFF)


def test_hex_bytes():
    assert encode_value(["ff"], "x", 1) == b"\xff"
    assert show_data(b"\xff", "x", 1) == "ff"


@pytest.mark.parametrize("size", [1, 2, 4])
def test_hex_round_trip_sizes(size):
    encoded = encode_value(["1a", "7"], "x", size)
    assert len(encoded) == 2 * size
    assert show_data(encoded, "x", size) == "1a 7"


def test_base_detecting_integer():
    assert encode_value(["0x10"], "i") == encode_value(["16"])
    assert encode_value(["010"], "i") == encode_value(["8"])


def test_odd_length_defaults_to_bytes():
    data = bytes([1, 2, 3])
    assert show_data(data, "d") == "1 2 3"


def test_unparsable_number_raises():
    with pytest.raises(ValueFormatError):
        encode_value(["zz"])


def test_invalid_size_rejected():
    with pytest.raises(ValueError):
        encode_value(["1"], None, 3)
    with pytest.raises(ValueError):
        show_data(b"\x01", "q")
    with pytest.raises(ValueError):
        show_data(b"\x01", None, 8)