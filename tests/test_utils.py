"""Unit tests for input normalization helpers."""

import io

import pytest

from walbucket.exceptions import ValidationError
from walbucket.utils import (
    file_to_bytes,
    generate_share_token,
    get_file_name,
    guess_content_type,
    sha256_hex,
    strip_hex_prefix,
)


class TestFileToBytes:
    def test_bytes_like_inputs(self):
        assert file_to_bytes(b'abc') == b'abc'
        assert file_to_bytes(bytearray(b'abc')) == b'abc'
        assert file_to_bytes(memoryview(b'abc')) == b'abc'

    def test_path_inputs(self, sample_file):
        assert file_to_bytes(sample_file) == b'0123456789'
        assert file_to_bytes(str(sample_file)) == b'0123456789'

    def test_binary_file_object(self):
        assert file_to_bytes(io.BytesIO(b'stream')) == b'stream'

    def test_text_file_object_rejected(self):
        with pytest.raises(ValidationError, match='binary mode'):
            file_to_bytes(io.StringIO('text'))

    def test_missing_path(self, tmp_path):
        with pytest.raises(ValidationError, match='Cannot read file'):
            file_to_bytes(tmp_path / 'nope.bin')

    def test_unsupported_type(self):
        with pytest.raises(ValidationError, match='Unsupported'):
            file_to_bytes(12345)


class TestFileName:
    def test_from_path(self, sample_file):
        assert get_file_name(sample_file) == 'a.txt'
        assert get_file_name('dir\\sub\\photo.png') == 'photo.png'

    def test_from_named_file_object(self, sample_file):
        with open(sample_file, 'rb') as f:
            assert get_file_name(f) == 'a.txt'

    def test_unnamed_input(self):
        assert get_file_name(b'raw') == 'untitled'
        assert get_file_name(io.BytesIO(b'raw')) == 'untitled'


@pytest.mark.parametrize('name,expected', [
    ('a.txt', 'text/plain'),
    ('photo.png', 'image/png'),
    ('untitled', 'application/octet-stream'),
])
def test_guess_content_type(name, expected):
    assert guess_content_type(name) == expected


def test_sha256_hex_accepts_text_and_bytes():
    assert sha256_hex('abc') == sha256_hex(b'abc')
    assert sha256_hex('abc') == 'ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad'


def test_share_tokens_are_unique_and_url_safe():
    tokens = {generate_share_token() for _ in range(50)}

    assert len(tokens) == 50
    assert all('/' not in token and '+' not in token for token in tokens)


def test_strip_hex_prefix():
    assert strip_hex_prefix('0xAB') == 'AB'
    assert strip_hex_prefix('0XAB') == 'AB'
    assert strip_hex_prefix('ab') == 'ab'
