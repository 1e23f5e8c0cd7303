#!/usr/bin/env python3

import pytest

from gen_provenance.utils import (
    decode_text,
    is_binary_content,
    is_executable_name,
    normalize_line_endings,
    to_posix_relpath,
)


class TestUtils:
    """Test cases for shared helpers"""

    @pytest.mark.parametrize(
        "data,expected",
        [
            (b"hello\n", False),
            (b"", False),
            (b"\x89PNG\x00\x00", True),
            (b"a" * 9000 + b"\x00", False),
        ],
    )
    def test_is_binary_content(self, data, expected):
        assert is_binary_content(data) is expected

    def test_decode_keeps_invalid_utf8(self):
        data = b"ok \xff\xfe end"
        assert decode_text(data).encode("utf-8", errors="surrogateescape") == data

    def test_normalize_line_endings(self):
        assert normalize_line_endings("a\r\nb\rc\n") == "a\nb\nc\n"

    @pytest.mark.parametrize(
        "path,root,expected",
        [
            ("sdk/models/pet.go", None, "sdk/models/pet.go"),
            ("./a//b/../c.txt", None, "a/c.txt"),
            ("/repo/sdk/pet.go", "/repo", "sdk/pet.go"),
        ],
    )
    def test_to_posix_relpath(self, path, root, expected):
        assert to_posix_relpath(path, root) == expected

    @pytest.mark.parametrize("path", ["../escape.py", "", ".", "/abs/path.py", "bad\nname.py"])
    def test_to_posix_relpath_rejects(self, path):
        with pytest.raises(ValueError):
            to_posix_relpath(path)

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("build.sh", True),
            ("scripts/setup.bash", True),
            ("x.zsh", True),
            ("gradlew", True),
            ("tools/mvnw", True),
            ("main.py", False),
            ("gradlew.bat", False),
        ],
    )
    def test_is_executable_name(self, name, expected):
        assert is_executable_name(name) is expected
