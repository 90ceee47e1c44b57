"""Git primitives used by the phase sagas: branches, stashes, checkpoints."""

from __future__ import annotations

import subprocess
from pathlib import Path


def _git(*args: str, cwd: Path | None = None, check: bool = False) -> subprocess.CompletedProcess[str]:
    """Run a git command, suppressing stderr noise."""
    return subprocess.run(
        ["git", *args],
        capture_output=True,
        text=True,
        cwd=cwd,
        check=check,
    )


def _require(r: subprocess.CompletedProcess[str], what: str) -> str:
    if r.returncode != 0:
        raise RuntimeError(f"Failed to {what}: {r.stderr.strip() or r.stdout.strip()}")
    return r.stdout.strip()


def is_git_repo(cwd: Path | None = None) -> bool:
    r = _git("rev-parse", "--is-inside-work-tree", cwd=cwd)
    return r.returncode == 0 and r.stdout.strip() == "true"


def current_branch(cwd: Path | None = None) -> str:
    r = _git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd)
    return r.stdout.strip() if r.returncode == 0 else ""


def branch_exists(name: str, cwd: Path | None = None) -> bool:
    r = _git("show-ref", "--verify", "--quiet", f"refs/heads/{name}", cwd=cwd)
    return r.returncode == 0


def default_branch(cwd: Path | None = None) -> str:
    """Remote default branch, else ``main``/``master`` if one exists locally."""
    r = _git("symbolic-ref", "--quiet", "refs/remotes/origin/HEAD", cwd=cwd)
    if r.returncode == 0 and r.stdout.strip():
        return r.stdout.strip().removeprefix("refs/remotes/origin/")
    for candidate in ("main", "master"):
        if branch_exists(candidate, cwd=cwd):
            return candidate
    return "main"


def checkout(branch: str, cwd: Path | None = None) -> bool:
    r = _git("checkout", branch, cwd=cwd)
    return r.returncode == 0


def create_branch(name: str, cwd: Path | None = None) -> bool:
    """Create *name* from HEAD and switch to it."""
    r = _git("checkout", "-b", name, cwd=cwd)
    return r.returncode == 0


def delete_branch(name: str, force: bool = False, cwd: Path | None = None) -> bool:
    flag = "-D" if force else "-d"
    r = _git("branch", flag, name, cwd=cwd)
    return r.returncode == 0


def _pathspec(exclude: str | None) -> list[str]:
    return ["--", ".", f":(exclude){exclude}"] if exclude else []


def has_dirty_worktree(cwd: Path | None = None, exclude: str | None = None) -> bool:
    r = _git("status", "--porcelain", *_pathspec(exclude), cwd=cwd)
    return bool(r.stdout.strip())


# ── stashes ──────────────────────────────────────────────────────

def stash_push_named(message: str, cwd: Path | None = None, exclude: str | None = None) -> bool:
    """Stash tracked and untracked changes under *message*, skipping *exclude*."""
    r = _git("stash", "push", "-u", "-m", message, *_pathspec(exclude), cwd=cwd)
    return r.returncode == 0


def find_stash(message: str, cwd: Path | None = None) -> str | None:
    """Return the ``stash@{n}`` ref whose message contains *message*."""
    r = _git("stash", "list", cwd=cwd)
    if r.returncode != 0:
        return None
    for line in r.stdout.splitlines():
        if message in line:
            return line.split(":", 1)[0]
    return None


def stash_pop(ref: str | None = None, cwd: Path | None = None) -> bool:
    args = ["stash", "pop"] + ([ref] if ref else [])
    r = _git(*args, cwd=cwd)
    return r.returncode == 0


# ── commits ──────────────────────────────────────────────────────

def head_sha(cwd: Path | None = None) -> str:
    return _require(_git("rev-parse", "HEAD", cwd=cwd), "resolve HEAD")


def add_all(cwd: Path | None = None) -> None:
    _require(_git("add", ".", cwd=cwd), "stage changes")


def reset_hard(sha: str, cwd: Path | None = None) -> None:
    _require(_git("reset", "--hard", sha, cwd=cwd), f"reset to {sha}")
