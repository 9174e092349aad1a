# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.21
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# tests/test_mapping.py

from pathlib import Path

import pytest

from greycrypt.config.mapping import PathMapping
from greycrypt.system.exceptions import MappingError


@pytest.fixture
def mapping():
    return PathMapping({"home": "/home/alice", "DOCS": "/home/alice/docs"})


class TestLookups:
    def test_keywords_are_upper_cased(self, mapping):
        assert set(mapping.keyword_to_dir) == {"HOME", "DOCS"}

    def test_lookup_keyword_case_insensitive(self, mapping):
        assert mapping.lookup_keyword("/home/alice") == "HOME"
        assert mapping.lookup_keyword("/HOME/Alice/") == "HOME"
        assert mapping.lookup_keyword("/home/bob") is None

    def test_lookup_dir(self, mapping):
        assert mapping.lookup_dir("docs") == "/home/alice/docs"
        assert mapping.lookup_dir("NOPE") is None

    def test_invalid_value(self):
        with pytest.raises(MappingError):
            PathMapping({"HOME": ""})


class TestKeywordAndRelpath:
    def test_most_specific_ancestor_wins(self, mapping):
        assert mapping.get_keyword_and_relpath("/home/alice/docs/x.txt") == ("DOCS", "/x.txt")
        assert mapping.get_keyword_and_relpath("/home/alice/music/y.mp3") == ("HOME", "/music/y.mp3")

    def test_case_insensitive_ancestor_keeps_relpath_case(self, mapping):
        assert mapping.get_keyword_and_relpath("/HOME/ALICE/Music/Song.mp3") == ("HOME", "/Music/Song.mp3")

    def test_component_boundary(self):
        mapping = PathMapping({"AL": "/home/al"})
        assert mapping.get_keyword_and_relpath("/home/alice/x.txt") is None

    def test_unmapped(self, mapping):
        assert mapping.get_keyword_and_relpath("/tmp/x.txt") is None

    def test_mapped_dir_itself_has_no_relpath(self, mapping):
        assert mapping.get_keyword_and_relpath("/home") is None


class TestNativePathFor:
    def test_inverse(self, mapping):
        assert mapping.native_path_for("DOCS", "/sub/x.txt") == Path("/home/alice/docs/sub/x.txt")

    def test_unknown_keyword(self, mapping):
        with pytest.raises(MappingError):
            mapping.native_path_for("WORK", "/x.txt")

    def test_rejects_parent_components(self, mapping):
        with pytest.raises(MappingError):
            mapping.native_path_for("HOME", "/../bob/.ssh/id_rsa")
