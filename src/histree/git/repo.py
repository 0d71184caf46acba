"""Git plumbing over the ``git`` executable.

Security requirements:
- shell=False always (no command injection).
- URL scheme whitelist: https://, http://, git@ only.
- Temp dirs created with mode=0o700; cleaned via try/finally + atexit.
- GIT_TOKEN injected into URL in-memory; never logged, never in error output.
"""

from __future__ import annotations

import atexit
import logging
import os
import re
import shutil
import subprocess
import tempfile
import urllib.parse
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from histree.errors import GitError
from histree.git.diff import FileDiff, parse_diff

logger = logging.getLogger(__name__)

# URL schemes that are allowed for remote git repositories.
_ALLOWED_SCHEMES = {"https", "http"}
_GIT_SSH_PREFIX = "git@"

# Regex to sanitise clone URLs in error messages (strip credentials).
_CRED_RE = re.compile(r"(https?://)([^@/]+@)", re.IGNORECASE)

_LOG_FORMAT = "%H%x00%P%x00%at%x00%ct"


def _sanitise_url(url: str) -> str:
    """Remove embedded credentials from a URL for safe logging / error messages."""
    return _CRED_RE.sub(r"\1***@", url)


@dataclass
class CommitInfo:
    """A commit as listed by ``git log``; dates are unix seconds."""

    sha: str
    author_date: int
    commit_date: int
    parents: list[str] = field(default_factory=list)

    @property
    def is_merge(self) -> bool:
        return len(self.parents) > 1


class GitRepository:
    """Read-only access to a local repository (working tree or bare)."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).resolve()
        if not self.path.is_dir():
            raise GitError(f"Repository path does not exist: {path}")
        self._run("rev-parse", "--git-dir")

    def _run(self, *args: str) -> bytes:
        """Run a git command in the repository and return its stdout.

        Raises:
            GitError: If git is missing or exits non-zero.
        """
        try:
            result = subprocess.run(
                ["git", "-c", "core.quotePath=false", *args],
                cwd=self.path,
                shell=False,
                check=True,
                capture_output=True,
            )
        except FileNotFoundError:
            raise GitError("git executable not found on PATH") from None
        except subprocess.CalledProcessError as exc:
            stderr_safe = _sanitise_url(exc.stderr.decode("utf-8", errors="replace").strip())
            raise GitError(f"git {args[0]} failed in {self.path}: {stderr_safe}") from None
        return result.stdout

    # ------------------------------------------------------------------
    # Commits and refs
    # ------------------------------------------------------------------

    def list_commits(self, refs: Sequence[str] = ("HEAD",)) -> list[CommitInfo]:
        """Return every commit reachable from *refs*, parents before children."""
        out = self._run("log", "--topo-order", "--reverse", f"--format={_LOG_FORMAT}", *refs, "--")
        commits = []
        for line in out.decode("ascii").splitlines():
            if not line.strip():
                continue
            sha, parents, author_date, commit_date = line.split("\x00")
            commits.append(
                CommitInfo(
                    sha=sha,
                    author_date=int(author_date),
                    commit_date=int(commit_date),
                    parents=parents.split(),
                )
            )
        return commits

    def resolve_refs(self, names: Sequence[str]) -> dict[str, str]:
        """Map each ref name to the sha of the commit it points at."""
        resolved = {}
        for name in names:
            out = self._run("rev-parse", "--verify", f"{name}^{{commit}}")
            resolved[name] = out.decode("ascii").strip()
        return resolved

    # ------------------------------------------------------------------
    # Diffs and blobs
    # ------------------------------------------------------------------

    def diff(self, parent: str | None, commit: str) -> list[FileDiff]:
        """Zero-context diff of *commit* against *parent* (or the empty tree)."""
        args = ["diff-tree", "-p", "-r", "-U0", "--full-index", "--no-renames", "--no-commit-id"]
        if parent is None:
            args += ["--root", commit]
        else:
            args += [parent, commit]
        return parse_diff(self._run(*args))

    def read_blob(self, blob_id: str) -> bytes:
        return self._run("cat-file", "blob", blob_id)


# ------------------------------------------------------------------
# Remote repositories
# ------------------------------------------------------------------

def is_remote(location: str) -> bool:
    # Any path with a :// scheme or git@ prefix is treated as remote.
    # Unknown schemes are caught by _validate_url().
    return "://" in location or location.startswith(_GIT_SSH_PREFIX)


def _validate_url(url: str) -> None:
    """Raise GitError if *url* uses a disallowed scheme."""
    if url.startswith(_GIT_SSH_PREFIX):
        return
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise GitError(
            f"Unsupported URL scheme '{parsed.scheme}'. "
            f"Allowed: https://, http://, git@"
        )


def _inject_token(url: str) -> str:
    """Inject GIT_TOKEN into an HTTPS/HTTP URL for private repo auth.

    The modified URL is only used for the git clone call and is never
    logged or included in exception messages.
    """
    token = os.environ.get("GIT_TOKEN", "")
    if not token or not url.startswith(("https://", "http://")):
        return url
    parsed = urllib.parse.urlparse(url)
    return parsed._replace(netloc=f"{token}@{parsed.netloc}").geturl()


def _clone(clone_url: str, tmpdir: str, original_url: str) -> None:
    """Run ``git clone --bare`` (shell=False). Raises GitError on failure.

    *original_url* (without credentials) is used in error messages.
    """
    try:
        subprocess.run(
            ["git", "clone", "--bare", "--", clone_url, tmpdir],
            shell=False,
            check=True,
            capture_output=True,
            text=True,
        )
    except subprocess.CalledProcessError as exc:
        stderr_safe = _sanitise_url(exc.stderr or "")
        raise GitError(
            f"git clone failed for {_sanitise_url(original_url)}: {stderr_safe}"
        ) from None


@contextmanager
def open_repository(location: str) -> Iterator[GitRepository]:
    """Yield a GitRepository for a local path or a remote URL.

    Remote repositories are cloned into a private temporary directory that
    is removed when the block exits.
    """
    if not is_remote(location):
        yield GitRepository(location)
        return

    _validate_url(location)
    clone_url = _inject_token(location)
    tmpdir = tempfile.mkdtemp(prefix="histree-")
    os.chmod(tmpdir, 0o700)
    atexit.register(_cleanup_dir, tmpdir)  # safety net for crashes
    try:
        logger.info("Cloning %s", _sanitise_url(location))
        _clone(clone_url, tmpdir, location)
        yield GitRepository(tmpdir)
    finally:
        _cleanup_dir(tmpdir)


def _cleanup_dir(path: str) -> None:
    """Remove a directory tree, ignoring errors (used as atexit handler)."""
    shutil.rmtree(path, ignore_errors=True)
