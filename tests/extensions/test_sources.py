"""
Tests for extension source resolution: local paths, tarballs and GitHub.
"""

import io
import tarfile

import httpx
import pytest

from extensions.errors import SourceResolutionError
from extensions.sources import GitHubSource, SourceResolver, is_github_source


def build_tarball(files: dict[str, str], prefix: str = "repo-main") -> bytes:
    """Create an in-memory .tar.gz with files under a single top directory."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for rel_path, content in files.items():
            data = content.encode("utf-8")
            info = tarfile.TarInfo(f"{prefix}/{rel_path}")
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


MANIFEST = "name: hello-commit\nversion: 1.0.0\n"


class TestGitHubSource:
    """Test parsing GitHub references."""

    @pytest.mark.parametrize(
        "uri,expected",
        [
            ("github:acme/hello", ("acme", "hello", "", "")),
            ("github:acme/hello#v1.0", ("acme", "hello", "", "v1.0")),
            ("github:acme/kits/ext/hello#dev", ("acme", "kits", "ext/hello", "dev")),
            ("https://github.com/acme/hello", ("acme", "hello", "", "")),
            ("https://github.com/acme/hello.git", ("acme", "hello", "", "")),
            ("https://github.com/acme/kits/tree/dev/ext/hello", ("acme", "kits", "ext/hello", "dev")),
        ],
    )
    def test_parse(self, uri, expected):
        ref = GitHubSource.parse(uri)
        assert (ref.owner, ref.repo, ref.path, ref.ref) == expected

    @pytest.mark.parametrize(
        "uri",
        [
            "github:acme",
            "gitlab:acme/x",
            "https://github.com/acme",
            "github:acme/kits/../../../etc#main",
            "github:acme/kits/ext/./hello",
            "https://github.com/acme/kits/tree/main/../../outside",
        ],
    )
    def test_parse_invalid(self, uri):
        with pytest.raises(SourceResolutionError):
            GitHubSource.parse(uri)

    def test_format(self):
        assert GitHubSource("acme", "kits", "ext/hello", "dev").format() == "github:acme/kits/ext/hello#dev"

    def test_is_github_source(self):
        assert is_github_source("github:a/b")
        assert is_github_source("https://github.com/a/b")
        assert not is_github_source("./github:a/b")


class TestLocalSources:
    """Test local directory and tarball sources."""

    def test_local_directory(self, project_dir, hello_commit):
        resolver = SourceResolver(base_dir=project_dir)

        with resolver.resolve(str(hello_commit)) as resolved:
            assert resolved.manifest.name == "hello-commit"
            assert resolved.root == hello_commit
            assert resolved.temp_dir is None

    def test_relative_path(self, tmp_path, hello_commit):
        resolver = SourceResolver(base_dir=tmp_path)
        relative = hello_commit.relative_to(tmp_path)

        with resolver.resolve(str(relative)) as resolved:
            assert resolved.root == hello_commit

    def test_tarball(self, tmp_path):
        archive = tmp_path / "hello.tar.gz"
        archive.write_bytes(build_tarball({"manifest.yaml": MANIFEST}))

        with SourceResolver(base_dir=tmp_path).resolve(str(archive)) as resolved:
            temp_dir = resolved.temp_dir
            assert resolved.manifest.version == "1.0.0"
            assert (resolved.root / "manifest.yaml").exists()

        assert not temp_dir.exists()

    def test_missing_source(self, tmp_path):
        with pytest.raises(SourceResolutionError, match="not found"):
            SourceResolver(base_dir=tmp_path).resolve("./nowhere")

    def test_directory_without_manifest(self, tmp_path):
        (tmp_path / "empty").mkdir()
        with pytest.raises(SourceResolutionError, match="Invalid extension"):
            SourceResolver(base_dir=tmp_path).resolve("empty")


class TestGitHubResolver:
    """Test GitHub downloads against a mock transport."""

    def make_resolver(self, tmp_path, handler):
        return SourceResolver(
            base_dir=tmp_path,
            github_api_url="https://api.test",
            github_url="https://gh.test",
            transport=httpx.MockTransport(handler),
            token="secret",
        )

    def test_default_branch_lookup(self, tmp_path):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            assert request.headers["Authorization"] == "Bearer secret"
            if request.url.host == "api.test":
                return httpx.Response(200, json={"default_branch": "trunk"})
            return httpx.Response(200, content=build_tarball({"manifest.yaml": MANIFEST}, "hello-trunk"))

        resolver = self.make_resolver(tmp_path, handler)
        with resolver.resolve("github:acme/hello") as resolved:
            assert resolved.manifest.name == "hello-commit"
            assert resolved.source == "github:acme/hello"

        assert seen == [
            "https://api.test/repos/acme/hello",
            "https://gh.test/acme/hello/archive/trunk.tar.gz",
        ]

    def test_explicit_ref_and_subpath(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/acme/kits/archive/v2.tar.gz"
            return httpx.Response(
                200,
                content=build_tarball({"ext/hello/manifest.yaml": MANIFEST, "README.md": "kits"}),
            )

        resolver = self.make_resolver(tmp_path, handler)
        with resolver.resolve("github:acme/kits/ext/hello#v2") as resolved:
            assert resolved.root.name == "hello"

    def test_api_failure_falls_back_to_main(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "api.test":
                return httpx.Response(403)
            assert request.url.path.endswith("/main.tar.gz")
            return httpx.Response(200, content=build_tarball({"manifest.yaml": MANIFEST}))

        with self.make_resolver(tmp_path, handler).resolve("github:acme/hello") as resolved:
            assert resolved.manifest.name == "hello-commit"

    def test_download_not_found(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        with pytest.raises(SourceResolutionError, match="HTTP 404"):
            self.make_resolver(tmp_path, handler).resolve("github:acme/hello#nope")

    def test_missing_subpath(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=build_tarball({"manifest.yaml": MANIFEST}))

        with pytest.raises(SourceResolutionError, match="not found"):
            self.make_resolver(tmp_path, handler).resolve("github:acme/hello/missing#main")

    def test_subpath_cannot_escape_archive(self, tmp_path):
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url)
            return httpx.Response(200, content=build_tarball({"manifest.yaml": MANIFEST}))

        with pytest.raises(SourceResolutionError, match="Relative path"):
            self.make_resolver(tmp_path, handler).resolve("github:acme/hello/../../x#main")
        assert requested == []

    def test_fetch_without_manifest(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=build_tarball({"skills/lint/SKILL.md": "# Lint\n"}))

        with self.make_resolver(tmp_path, handler).fetch("github:acme/skills#main") as tree:
            temp_dir = tree.temp_dir
            assert (tree.root / "skills" / "lint" / "SKILL.md").exists()
            assert tree.github.ref == "main"

        assert not temp_dir.exists()

    def test_latest_version(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/repos/acme/skills":
                return httpx.Response(200, json={"default_branch": "trunk"})
            assert request.url.path == "/repos/acme/skills/commits/trunk"
            assert request.headers["Accept"] == "application/vnd.github.sha"
            return httpx.Response(200, text="0123456789abcdef0123\n")

        resolver = self.make_resolver(tmp_path, handler)

        assert resolver.latest_version("github:acme/skills") == "0123456789ab"
        assert resolver.latest_version(str(tmp_path)) is None

    def test_latest_version_lookup_failure(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        assert self.make_resolver(tmp_path, handler).latest_version("github:acme/skills#v1") is None
