"""Extension source resolution.

Turns a user supplied source string into a validated manifest plus a file
tree on local disk. Supported sources:

- a local extension directory
- a local ``.tar.gz`` / ``.tgz`` archive
- a GitHub repository: ``github:owner/repo[/path][#ref]`` or
  ``https://github.com/owner/repo[/tree/<ref>[/path]]``
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path

import httpx

from extensions.errors import ManifestError, SourceResolutionError
from extensions.manifest import ExtensionManifest

logger = logging.getLogger(__name__)

DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_GITHUB_URL = "https://github.com"

_TARBALL_SUFFIXES = (".tar.gz", ".tgz")


@dataclass
class GitHubSource:
    """A parsed GitHub source reference."""

    owner: str
    repo: str
    path: str = ""
    ref: str = ""

    @classmethod
    def parse(cls, uri: str) -> GitHubSource:
        """Parse a github: URI or a github.com URL.

        Examples:
            github:owner/repo                         -> owner/repo
            github:owner/repo/skills/x#dev            -> path skills/x, ref dev
            https://github.com/owner/repo/tree/dev/x  -> path x, ref dev

        Raises:
            SourceResolutionError: If the URI is not a GitHub reference.
        """
        for prefix in ("https://github.com/", "http://github.com/"):
            if uri.startswith(prefix):
                return cls._parse_url(uri[len(prefix):])

        if not uri.startswith("github:"):
            raise SourceResolutionError(
                f"Unsupported source format: {uri!r}. "
                "Use github:owner/repo or https://github.com/owner/repo"
            )

        body = uri[len("github:"):]
        ref = ""
        if "#" in body:
            body, ref = body.split("#", 1)

        parts = _split_path(body, uri)
        if len(parts) < 2:
            raise SourceResolutionError(
                f"Invalid GitHub source: {uri!r}. Expected github:owner/repo"
            )
        return cls(owner=parts[0], repo=parts[1], path="/".join(parts[2:]), ref=ref)

    @classmethod
    def _parse_url(cls, rest: str) -> GitHubSource:
        rest = rest.rstrip("/")
        if rest.endswith(".git"):
            rest = rest[: -len(".git")]
        parts = _split_path(rest, rest)
        if len(parts) < 2:
            raise SourceResolutionError(f"Invalid GitHub URL: {rest!r}")

        owner, repo = parts[0], parts[1]
        if len(parts) >= 4 and parts[2] == "tree":
            return cls(owner=owner, repo=repo, path="/".join(parts[4:]), ref=parts[3])
        return cls(owner=owner, repo=repo)

    def format(self) -> str:
        """Canonical github: URI."""
        uri = f"github:{self.owner}/{self.repo}"
        if self.path:
            uri += f"/{self.path}"
        if self.ref:
            uri += f"#{self.ref}"
        return uri


def _split_path(body: str, uri: str) -> list[str]:
    parts = [p for p in body.split("/") if p]
    if any(part in (".", "..") for part in parts):
        raise SourceResolutionError(f"Relative path segments are not allowed: {uri!r}")
    return parts


def is_github_source(source: str) -> bool:
    return source.startswith(("github:", "https://github.com/", "http://github.com/"))


@dataclass
class FetchedTree:
    """A source file tree on local disk and the source it came from.

    Use as a context manager to delete temporary download directories.
    """

    root: Path
    source: str
    temp_dir: Path | None = None
    github: GitHubSource | None = None

    def cleanup(self) -> None:
        if self.temp_dir is not None and self.temp_dir.exists():
            shutil.rmtree(self.temp_dir, ignore_errors=True)
            self.temp_dir = None

    def __enter__(self):
        return self

    def __exit__(self, *args) -> None:
        self.cleanup()


@dataclass
class ResolvedSource(FetchedTree):
    """A fetched tree holding a validated extension manifest."""

    manifest: ExtensionManifest | None = None


class SourceResolver:
    """Resolve extension sources into local trees.

    Example:
        >>> resolver = SourceResolver()
        >>> with resolver.resolve("./my-extension") as resolved:
        ...     print(resolved.manifest.name)
    """

    def __init__(
        self,
        base_dir: Path | None = None,
        github_api_url: str = DEFAULT_GITHUB_API_URL,
        github_url: str = DEFAULT_GITHUB_URL,
        timeout: float = 60.0,
        token: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the resolver.

        Args:
            base_dir: Directory relative local paths are resolved against.
            github_api_url: GitHub REST API base URL.
            github_url: GitHub web base URL used for archive downloads.
            timeout: HTTP timeout in seconds.
            token: Optional GitHub token for private repositories.
            transport: Optional httpx transport (used by tests).
        """
        self.base_dir = Path(base_dir or Path.cwd())
        self.github_api_url = github_api_url.rstrip("/")
        self.github_url = github_url.rstrip("/")
        self.timeout = timeout
        self.token = token
        self.transport = transport

    def resolve(self, source: str) -> ResolvedSource:
        """Resolve a source string into an extension.

        Args:
            source: Local path, tarball path, or GitHub reference.

        Returns:
            ResolvedSource with a validated manifest.

        Raises:
            SourceResolutionError: If the source cannot be fetched or holds
                no valid manifest. No project state is touched.
        """
        tree = self.fetch(source)
        try:
            manifest = self._load_manifest(tree.root)
        except BaseException:
            tree.cleanup()
            raise
        return ResolvedSource(
            root=tree.root,
            source=source,
            temp_dir=tree.temp_dir,
            github=tree.github,
            manifest=manifest,
        )

    def fetch(self, source: str) -> FetchedTree:
        """Locate or download a source tree without validating its contents.

        Raises:
            SourceResolutionError: If the source cannot be fetched.
        """
        if is_github_source(source):
            return self._fetch_github(source)

        path = Path(source).expanduser()
        if not path.is_absolute():
            path = self.base_dir / path

        if path.is_dir():
            return FetchedTree(root=path, source=source)
        if path.is_file() and path.name.endswith(_TARBALL_SUFFIXES):
            temp_dir = Path(tempfile.mkdtemp(prefix="skillfactory-src-"))
            try:
                root = self._extract(path, temp_dir / "tree")
            except BaseException:
                shutil.rmtree(temp_dir, ignore_errors=True)
                raise
            return FetchedTree(root=root, source=source, temp_dir=temp_dir)

        raise SourceResolutionError(f"Source not found: {source}")

    def latest_version(self, source: str) -> str | None:
        """Short commit id a GitHub source currently points at.

        Returns:
            The first 12 characters of the commit sha, or None for local
            sources and when the lookup fails.
        """
        if not is_github_source(source):
            return None
        ref = GitHubSource.parse(source)
        with self._client() as client:
            if not ref.ref:
                ref.ref = self._default_branch(client, ref)
            return self._commit_sha(client, ref)

    def _fetch_github(self, source: str) -> FetchedTree:
        ref = GitHubSource.parse(source)
        temp_dir = Path(tempfile.mkdtemp(prefix="skillfactory-src-"))
        try:
            with self._client() as client:
                if not ref.ref:
                    ref.ref = self._default_branch(client, ref)
                tarball_path = temp_dir / f"{ref.repo}.tar.gz"
                self._download(client, ref, tarball_path)

            root = self._extract(tarball_path, temp_dir / "tree")
            if ref.path:
                top = root.resolve()
                root = (root / ref.path).resolve()
                if not root.is_relative_to(top) or not root.is_dir():
                    raise SourceResolutionError(
                        f"Path {ref.path!r} not found in {ref.owner}/{ref.repo}@{ref.ref}"
                    )
        except BaseException:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise

        logger.info("Resolved %s to %s@%s", source, ref.format(), ref.ref)
        return FetchedTree(root=root, source=source, temp_dir=temp_dir, github=ref)

    def _client(self) -> httpx.Client:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.Client(
            timeout=self.timeout,
            follow_redirects=True,
            headers=headers,
            transport=self.transport,
        )

    def _default_branch(self, client: httpx.Client, ref: GitHubSource) -> str:
        """Ask the GitHub API for the default branch; fall back to main."""
        url = f"{self.github_api_url}/repos/{ref.owner}/{ref.repo}"
        try:
            response = client.get(url)
            response.raise_for_status()
            branch = response.json().get("default_branch")
            if branch:
                return branch
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("Default branch lookup failed for %s: %s", url, e)
        return "main"

    def _commit_sha(self, client: httpx.Client, ref: GitHubSource) -> str | None:
        url = f"{self.github_api_url}/repos/{ref.owner}/{ref.repo}/commits/{ref.ref}"
        try:
            response = client.get(url, headers={"Accept": "application/vnd.github.sha"})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.debug("Commit lookup failed for %s: %s", url, e)
            return None
        return response.text.strip()[:12] or None

    def _download(self, client: httpx.Client, ref: GitHubSource, dest: Path) -> None:
        url = f"{self.github_url}/{ref.owner}/{ref.repo}/archive/{ref.ref}.tar.gz"
        try:
            response = client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SourceResolutionError(
                f"Failed to download {url} (HTTP {e.response.status_code}). "
                f"Check that {ref.owner}/{ref.repo} exists and ref {ref.ref!r} is correct."
            )
        except httpx.RequestError as e:
            raise SourceResolutionError(f"Connection error while downloading {url}: {e}")
        dest.write_bytes(response.content)

    def _extract(self, tarball_path: Path, dest: Path) -> Path:
        """Extract an archive and return the extension root inside it."""
        dest.mkdir(parents=True, exist_ok=True)
        try:
            with tarfile.open(tarball_path, "r:gz") as tar:
                tar.extractall(dest, filter="data")
        except (tarfile.TarError, OSError) as e:
            raise SourceResolutionError(f"Cannot extract {tarball_path.name}: {e}")

        # Archives usually wrap everything in a single top-level directory
        entries = list(dest.iterdir())
        if len(entries) == 1 and entries[0].is_dir():
            return entries[0]
        return dest

    def _load_manifest(self, root: Path) -> ExtensionManifest:
        try:
            return ExtensionManifest.from_dir(root)
        except ManifestError as e:
            raise SourceResolutionError(f"Invalid extension at {root}: {e}")
