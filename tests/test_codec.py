import pytest

from sealhub.utils.codec import base64_to_key, key_to_base64


def test_key_to_base64_uses_padded_standard_alphabet() -> None:
    assert key_to_base64(b"\xfb\xff") == "+/8="


def test_base64_to_key_roundtrip() -> None:
    raw = bytes(range(32))
    assert base64_to_key(key_to_base64(raw)) == raw


def test_base64_to_key_tolerates_surrounding_whitespace() -> None:
    assert base64_to_key("  AAEC\n") == b"\x00\x01\x02"


@pytest.mark.parametrize("bad", ["not base64!", "abc", "-_8="])
def test_base64_to_key_rejects_invalid_input(bad: str) -> None:
    with pytest.raises(ValueError):
        base64_to_key(bad)
