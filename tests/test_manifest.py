"""
Manifest tests for adhoc-fetch.
Tests loading download manifests and running the declared downloads.
"""

import json

import pytest

from adhoc_fetch.error_handling import ArchiveError, BuildConfigurationError, ResolutionError
from adhoc_fetch.manifest import (
    DownloadTask,
    ExtractSpec,
    declare_downloads,
    load_manifest,
    run_downloads,
)

from conftest import zip_bytes

KAWA_YAML = """
downloads:
  kawa:
    uri: https://ftp.gnu.org/pub/gnu/kawa
    name: kawa
    version: "3.0"
    ext: zip
    extract:
      include: ["kawa-*/lib/kawa.jar"]
      flatten: true
  jlex:
    uri: https://www.cs.princeton.edu/~appel/modern/java/JLex/Archive/1.2.6
    name: Main
    ext: java
"""


class TestLoadManifest:
    """Test manifest parsing in every supported format."""

    def test_yaml(self, temp_dir):
        """Test a YAML manifest with an extract block."""
        path = temp_dir / "downloads.yaml"
        path.write_text(KAWA_YAML)

        kawa, jlex = load_manifest(path)

        assert kawa.key == "kawa"
        assert kawa.version == "3.0"
        assert kawa.extract == ExtractSpec(include=["kawa-*/lib/kawa.jar"], flatten=True)
        assert jlex.extract is None
        assert jlex.version is None

    def test_json(self, temp_dir):
        """Test a JSON manifest."""
        path = temp_dir / "downloads.json"
        path.write_text(
            json.dumps(
                {"downloads": {"tool": {"uri": "https://example.org/pkg", "name": "tool", "ext": "tar.gz"}}}
            )
        )

        (tool,) = load_manifest(path)

        assert tool.uri == "https://example.org/pkg"
        assert tool.ext == "tar.gz"

    def test_toml(self, temp_dir):
        """Test a TOML manifest with a numeric version."""
        path = temp_dir / "downloads.toml"
        path.write_text(
            '[downloads.tool]\nuri = "https://example.org/pkg"\nname = "tool"\n'
            'version = 1.2\next = "tar.gz"\n\n[downloads.tool.extract]\nstrip_components = 1\n'
        )

        (tool,) = load_manifest(path)

        assert tool.version == "1.2"
        assert tool.extract.strip_components == 1

    @pytest.mark.parametrize(
        "content, message",
        [
            ("downloads: []", "downloads"),
            ("downloads:\n  x:\n    uri: https://example.org\n    name: x\n", "ext"),
            ("downloads:\n  x:\n    uri: https://example.org\n    name: x\n    ext: zip\n    colour: red\n", "unknown"),
            ("downloads:\n  x:\n    uri: https://example.org\n    name: x\n    ext: zip\n    extract:\n      strip_components: -1\n", "strip_components"),
            ("downloads:\n  x:\n    uri: https://example.org\n    name: x\n    ext: zip\n    extract:\n      rename: ../evil.jar\n", "rename"),
        ],
    )
    def test_invalid(self, temp_dir, content, message):
        """Test that malformed manifests are configuration errors."""
        path = temp_dir / "bad.yaml"
        path.write_text(content)

        with pytest.raises(BuildConfigurationError, match=message):
            load_manifest(path)

    def test_unparseable(self, temp_dir):
        """Test a file that is not valid YAML."""
        path = temp_dir / "broken.yaml"
        path.write_text("downloads: [unclosed")

        with pytest.raises(BuildConfigurationError, match="could not read manifest"):
            load_manifest(path)

    def test_unsupported_type(self, temp_dir):
        """Test a manifest with an unknown extension."""
        path = temp_dir / "downloads.ini"
        path.write_text("[downloads]")

        with pytest.raises(BuildConfigurationError, match="unsupported"):
            load_manifest(path)


class TestDeclareDownloads:
    """Test turning declarations into download tasks."""

    def test_extract_and_copy(self, project, server, temp_dir):
        """Test one archive extraction and one plain file copy."""
        server.serve(
            "https://ftp.gnu.org/pub/gnu/kawa/kawa-3.0.zip",
            zip_bytes({"kawa-3.0/lib/kawa.jar": b"kawa", "kawa-3.0/README": b"r"}),
        )
        server.serve(
            "https://www.cs.princeton.edu/~appel/modern/java/JLex/Archive/1.2.6/Main.java",
            b"class Main {}",
        )
        manifest = temp_dir / "downloads.yaml"
        manifest.write_text(KAWA_YAML)

        refs = declare_downloads(project, load_manifest(manifest), temp_dir / "out")

        assert server.requests == []
        assert project.tasks.names() == ["download-kawa", "download-jlex"]

        tasks = run_downloads(project, list(refs.values()), jobs=2)

        assert all(isinstance(task, DownloadTask) for task in tasks)
        assert (temp_dir / "out" / "kawa" / "kawa.jar").read_bytes() == b"kawa"
        assert (temp_dir / "out" / "jlex" / "Main.java").read_text() == "class Main {}"
        assert tasks[0].outputs == [temp_dir / "out" / "kawa" / "kawa.jar"]

    def test_failure_propagates(self, project, server, temp_dir):
        """Test that a failing download fails the whole run."""
        manifest = temp_dir / "downloads.json"
        manifest.write_text(
            json.dumps(
                {"downloads": {"gone": {"uri": "https://example.org/pkg", "name": "gone", "ext": "zip"}}}
            )
        )
        refs = declare_downloads(project, load_manifest(manifest), temp_dir / "out")

        with pytest.raises(ResolutionError, match="https://example.org/pkg/gone.zip"):
            run_downloads(project, list(refs.values()), jobs=1)

    def test_rename_matching_several_files_fails(self, project, server, temp_dir):
        """Test that a single-file rename fails instead of overwriting its own output."""
        server.serve(
            "https://example.org/dist/lib-2.0.zip",
            zip_bytes({"lib-2.0/a.jar": b"a", "lib-2.0/b.jar": b"b"}),
        )
        manifest = temp_dir / "downloads.json"
        manifest.write_text(
            json.dumps(
                {
                    "downloads": {
                        "lib": {
                            "uri": "https://example.org/dist",
                            "name": "lib",
                            "version": "2.0",
                            "ext": "zip",
                            "extract": {"flatten": True, "rename": "lib.jar"},
                        }
                    }
                }
            )
        )
        refs = declare_downloads(project, load_manifest(manifest), temp_dir / "out")

        with pytest.raises(ArchiveError, match="already wrote"):
            run_downloads(project, list(refs.values()), jobs=1)
