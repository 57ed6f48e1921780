"""
Integration tests for adhoc-fetch.
Tests complete build workflows: declare, configure, execute.
"""

import pytest

from adhoc_fetch.error_handling import (
    ArchiveError,
    BuildConfigurationError,
    ErrorCategory,
    ResolutionError,
    get_error_handler,
)
from adhoc_fetch.native import add_jvm_library
from adhoc_fetch.rpath import add_rpaths
from adhoc_fetch.tasks import Task, configure

from conftest import zip_bytes


class TestBuildWorkflow:
    """Test a small multi-task build."""

    def test_download_extract_compile_link(self, project, server, make_java_home, tmp_path):
        """Test a native binary that links the JVM and consumes an ad-hoc download."""
        server.serve(
            "https://downloads.example.org/jdk-headers/jni-extra-1.0.zip",
            zip_bytes({"jni-extra-1.0/include/extra.h": b"#pragma once"}),
        )
        headers = project.ad_hoc_download(
            "https://downloads.example.org/jdk-headers", "jni-extra", "1.0", ext="zip"
        )
        unpacked = tmp_path / "build" / "jni-extra"

        def unpack(task):
            task.outputs = headers.tree().extract(unpacked, strip_components=1)

        def setup_unpack(task):
            task.inputs.add(headers)
            task.do_last(unpack)

        unpack_ref = project.register("unpackHeaders", configuration=setup_unpack)

        home = make_java_home(["lib/server/libjvm.so"])
        binary = project.native_binary("bridge", "linux")
        add_jvm_library(binary, home)

        def use_headers(task):
            task.include(unpacked / "include")
            task.depends_on(unpack_ref)

        configure(binary.compile_task, use_headers)
        add_rpaths(binary.link_task)

        assert server.requests == []

        executed = project.execute("linkBridge")

        assert executed == ["unpackHeaders", "compileBridge", "linkBridge"]
        assert (unpacked / "include" / "extra.h").read_bytes() == b"#pragma once"
        link = binary.link_task.get()
        assert link.libs.files == [home / "lib/server/libjvm.so"]
        assert link.resolved_linker_args() == [f"-Wl,-rpath,{home / 'lib/server'}"]
        assert binary.compile_task.get().includes.files == [
            home / "include",
            home / "include" / "linux",
            unpacked / "include",
        ]

    def test_execute_runs_each_task_once(self, project):
        """Test that shared dependencies execute a single time."""
        runs = []
        base = project.register("base", configuration=lambda t: t.do_last(lambda _: runs.append("base")))
        project.register("a", configuration=lambda t: t.depends_on(base))
        project.register("b", configuration=lambda t: t.depends_on(base))

        executed = project.execute("a", "b")

        assert runs == ["base"]
        assert executed == ["base", "a", "b"]

    def test_cycle_is_reported(self, project):
        """Test that a dependency cycle is a configuration error."""
        a = project.register("a")
        b = project.register("b", configuration=lambda t: t.depends_on(a))
        a.configure(lambda t: t.depends_on(b))

        with pytest.raises(BuildConfigurationError, match="cycle"):
            project.execute("a")

    def test_configuration_ends_at_execution(self, project):
        """Test that execute closes the configuration phase."""
        project.register("noop", Task)
        project.execute()

        assert project.configured
        with pytest.raises(BuildConfigurationError):
            project.ad_hoc_download("https://example.org/pkg", "late", ext="zip")


class TestErrorReporting:
    """Test that failures are reported through the error handler."""

    def test_failed_download_is_reported(self, project, server):
        """Test that an HTTP failure reaches category callbacks."""
        reported = []
        get_error_handler().register_callback(reported.append, ErrorCategory.NETWORK)
        server.serve("https://example.org/pkg/tool-1.2.tar.gz", status=503)
        dependency = project.ad_hoc_download("https://example.org/pkg", "tool", "1.2", ext="tar.gz")

        with pytest.raises(ResolutionError, match="HTTP 503"):
            dependency.resolve()

        assert len(reported) == 1
        assert reported[0].details["status_code"] == 503

    def test_corrupt_archive_is_reported(self, project, server, tmp_path):
        """Test that unreadable downloads are reported as archive errors."""
        server.serve("https://example.org/pkg/tool-1.2.tar.gz", b"not a tarball")
        tree = project.ad_hoc_download("https://example.org/pkg", "tool", "1.2", ext="tar.gz").tree()

        with pytest.raises(ArchiveError):
            tree.extract(tmp_path / "out")

        assert get_error_handler().get_error_stats() == {"ARCHIVE_ERROR": 1}
