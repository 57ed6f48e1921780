"""
Archive tests for adhoc-fetch.
Tests lazy archive views and selective extraction.
"""

import io
import tarfile
import zipfile
from unittest.mock import Mock

import pytest

from adhoc_fetch.archives import ArchiveTree, copy_to, matches
from adhoc_fetch.error_handling import ArchiveError

from conftest import tar_gz_bytes, zip_bytes

TOOL_URL = "https://example.org/pkg/tool-1.2.tar.gz"


class TestPatterns:
    """Test Ant-style entry patterns."""

    @pytest.mark.parametrize(
        "path, pattern, expected",
        [
            ("kawa-3.0/lib/kawa.jar", "kawa-*/lib/kawa.jar", True),
            ("kawa-3.0/lib/other.jar", "kawa-*/lib/kawa.jar", False),
            ("a/b/c/x.jar", "**/*.jar", True),
            ("x.jar", "**/*.jar", True),
            ("a/x.txt", "**/*.jar", False),
            ("JLex/Main.java", "JLex/", True),
            ("JLexer/Main.java", "JLex/", False),
            ("a/b.jar", "*.jar", False),
        ],
    )
    def test_matches(self, path, pattern, expected):
        """Test single-segment and multi-segment wildcards."""
        assert matches(path, pattern) is expected


class TestArchiveTree:
    """Test listing and extracting archive entries."""

    def test_tree_is_lazy(self, tmp_path):
        """Test that the source is only read when entries are requested."""
        archive = tmp_path / "lib.zip"
        archive.write_bytes(zip_bytes({"lib/a.jar": b"a"}))
        source = Mock(return_value=archive)

        tree = ArchiveTree(source)
        source.assert_not_called()

        assert [e.path for e in tree.entries()] == ["lib/a.jar"]
        source.assert_called_once()

    def test_select_and_flatten(self, tmp_path):
        """Test extracting one jar out of a versioned directory."""
        archive = tmp_path / "kawa-3.0.zip"
        archive.write_bytes(
            zip_bytes(
                {
                    "kawa-3.0/": b"",
                    "kawa-3.0/lib/kawa.jar": b"kawa",
                    "kawa-3.0/doc/README": b"docs",
                }
            )
        )

        written = ArchiveTree(archive).extract(
            tmp_path / "out", include=["kawa-*/lib/kawa.jar"], flatten=True
        )

        assert written == [tmp_path / "out" / "kawa.jar"]
        assert written[0].read_bytes() == b"kawa"

    def test_strip_components(self, tmp_path):
        """Test dropping the top-level directory of a tarball."""
        archive = tmp_path / "tool-1.2.tar.gz"
        archive.write_bytes(
            tar_gz_bytes({"tool-1.2/bin/tool": b"#!", "tool-1.2/share/x/y.txt": b"y"})
        )

        ArchiveTree(archive).extract(tmp_path / "out", strip_components=1)

        assert (tmp_path / "out" / "bin" / "tool").read_bytes() == b"#!"
        assert (tmp_path / "out" / "share" / "x" / "y.txt").exists()

    def test_all_jars_flat(self, tmp_path):
        """Test copying every jar, wherever it lives, into one directory."""
        archive = tmp_path / "dist.tar.gz"
        archive.write_bytes(
            tar_gz_bytes({"a/one.jar": b"1", "a/b/two.jar": b"2", "a/notes.txt": b"n"})
        )

        written = ArchiveTree(archive).extract(tmp_path / "out", include=["**/*.jar"], flatten=True)

        assert sorted(p.name for p in written) == ["one.jar", "two.jar"]

    def test_exclude(self, tmp_path):
        """Test that excluded entries are skipped."""
        archive = tmp_path / "src.zip"
        archive.write_bytes(zip_bytes({"src/A.java": b"a", "src/test/B.java": b"b"}))

        written = ArchiveTree(archive).extract(tmp_path / "out", exclude=["src/test/"])

        assert written == [tmp_path / "out" / "src" / "A.java"]

    def test_rename(self, tmp_path):
        """Test renaming the extracted file."""
        archive = tmp_path / "jlex.zip"
        archive.write_bytes(zip_bytes({"JLex/Main.java": b"class Main {}"}))

        written = ArchiveTree(archive).extract(
            tmp_path / "out", flatten=True, rename=lambda name: "JLexMain.java"
        )

        assert written == [tmp_path / "out" / "JLexMain.java"]

    def test_rename_cannot_escape(self, tmp_path):
        """Test that a renamed entry must stay a plain file name."""
        archive = tmp_path / "jlex.zip"
        archive.write_bytes(zip_bytes({"JLex/Main.java": b"class Main {}"}))

        with pytest.raises(ArchiveError, match="plain file name"):
            ArchiveTree(archive).extract(tmp_path / "out", rename=lambda name: "../Main.java")
        assert not (tmp_path / "Main.java").exists()

    def test_rename_of_several_files_is_rejected(self, tmp_path):
        """Test that two entries renamed to one file do not overwrite each other."""
        archive = tmp_path / "src.zip"
        archive.write_bytes(zip_bytes({"src/A.java": b"a", "src/B.java": b"b"}))

        with pytest.raises(ArchiveError, match="already wrote"):
            ArchiveTree(archive).extract(tmp_path / "out", flatten=True, rename=lambda name: "Main.java")

    def test_empty_dirs(self, tmp_path):
        """Test that empty directories are only created on request."""
        archive = tmp_path / "layout.zip"
        archive.write_bytes(zip_bytes({"data/": b"", "data/empty/": b""}))

        ArchiveTree(archive).extract(tmp_path / "plain")
        ArchiveTree(archive).extract(tmp_path / "full", include_empty_dirs=True)

        assert not (tmp_path / "plain" / "data").exists()
        assert (tmp_path / "full" / "data" / "empty").is_dir()

    def test_leading_slash_members(self, tmp_path):
        """Test that absolute member names are made relative."""
        archive = tmp_path / "abs.zip"
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr(zipfile.ZipInfo("/lib/abs.jar"), b"abs")
        archive.write_bytes(buffer.getvalue())

        written = ArchiveTree(archive).extract(tmp_path / "out")

        assert written == [tmp_path / "out" / "lib" / "abs.jar"]

    def test_parent_traversal_is_rejected(self, tmp_path):
        """Test that entries cannot escape the destination."""
        archive = tmp_path / "evil.tar"
        with tarfile.open(archive, "w") as tf:
            info = tarfile.TarInfo("../evil.txt")
            info.size = 4
            tf.addfile(info, io.BytesIO(b"evil"))

        with pytest.raises(ArchiveError, match="escapes"):
            ArchiveTree(archive).extract(tmp_path / "out")
        assert not (tmp_path / "evil.txt").exists()

    def test_not_an_archive(self, tmp_path):
        """Test a plain file presented as an archive."""
        plain = tmp_path / "Main.java"
        plain.write_text("class Main {}")

        with pytest.raises(ArchiveError):
            ArchiveTree(plain).entries()

    def test_corrupt_archive(self, tmp_path):
        """Test that a truncated archive is reported as an archive error."""
        broken = tmp_path / "broken.zip"
        broken.write_bytes(b"PK\x03\x04 not really a zip")

        with pytest.raises(ArchiveError):
            ArchiveTree(broken).entries()

    def test_tree_of_downloaded_dependency(self, project, server, tmp_path):
        """Test that a detached dependency's tree downloads on first use."""
        server.serve(TOOL_URL, tar_gz_bytes({"tool-1.2/bin/tool": b"#!"}))
        tree = project.ad_hoc_download("https://example.org/pkg", "tool", "1.2", ext="tar.gz").tree()

        assert server.requests == []
        assert [e.path for e in tree.entries()] == ["tool-1.2/bin/tool"]
        assert server.requests == [TOOL_URL]


class TestCopyTo:
    """Test copying a non-archive download."""

    def test_copy_with_new_name(self, tmp_path):
        """Test copying a single file under a different name."""
        source = tmp_path / "JLex-1.2.6.java"
        source.write_text("class Main {}")

        target = copy_to(lambda: source, tmp_path / "src", name="Main.java")

        assert target == tmp_path / "src" / "Main.java"
        assert target.read_text() == "class Main {}"
