from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import git

from .constants import LOGGER

STORY_KEY_RE = re.compile(r"[A-Z][A-Z0-9]+-\d+")


class GitWorkspaceError(RuntimeError):
    pass


@dataclass
class RepositoryInfo:
    path: str
    branch: str
    is_clean: bool
    remotes: list[str]
    modified_files: int


@dataclass
class CommitSummary:
    hash: str
    author: str
    date: str
    message: str
    files: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def files_changed(self) -> int:
        return len(self.files)


@dataclass
class AuthorStats:
    author: str
    commits: int
    stories: set[str]

    @property
    def commits_per_story(self) -> float:
        return self.commits / len(self.stories) if self.stories else 0.0


@dataclass
class StoryComplexity:
    """Change volume for one story, summed over the commits that mention it."""

    story_key: str
    commits: int = 0
    total_lines: int = 0
    total_files: int = 0
    file_types: dict[str, int] = field(default_factory=dict)
    file_lines: dict[str, int] = field(default_factory=dict)

    @property
    def avg_lines_per_file(self) -> float:
        return self.total_lines / self.total_files if self.total_files else 0.0

    @property
    def avg_lines_per_commit(self) -> float:
        return self.total_lines / self.commits if self.commits else 0.0

    @property
    def most_changed_type(self) -> str:
        if not self.file_types:
            return "unknown"
        return max(self.file_types.items(), key=lambda item: item[1])[0]

    def sorted_file_types(self) -> list[tuple[str, int]]:
        return sorted(self.file_types.items(), key=lambda item: item[1], reverse=True)

    def files_over(self, threshold: int, limit: int = 5) -> list[tuple[str, int]]:
        heavy = [(path, lines) for path, lines in self.file_lines.items() if lines > threshold]
        heavy.sort(key=lambda item: item[1], reverse=True)
        return heavy[:limit]


def file_type(path: str) -> str:
    return Path(path).suffix.lower() or "no-extension"


def _normalize_extension(value: str) -> str:
    value = value.strip().lower()
    if value == "no-extension" or value.startswith("."):
        return value
    return f".{value}"


def story_complexity(
    story_key: str,
    commits: list[CommitSummary],
    file_types: list[str] | None = None,
) -> StoryComplexity:
    """Aggregate per-file line counts; ``file_types`` limits which extensions count."""
    wanted = {_normalize_extension(value) for value in file_types} if file_types else None
    result = StoryComplexity(story_key=story_key, commits=len(commits))
    for commit in commits:
        for path, stats in commit.files.items():
            kind = file_type(path)
            if wanted is not None and kind not in wanted:
                continue
            lines = stats.get("insertions", 0) + stats.get("deletions", 0)
            result.total_lines += lines
            result.total_files += 1
            result.file_types[kind] = result.file_types.get(kind, 0) + 1
            result.file_lines[path] = result.file_lines.get(path, 0) + lines
    return result


def is_git_repository(path: str | Path) -> bool:
    candidate = Path(path)
    if not (candidate / ".git").exists():
        return False
    try:
        git.Repo(candidate)
    except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
        return False
    return True


def find_repositories_in_parents(start: str | Path, max_depth: int = 5) -> list[Path]:
    repos: list[Path] = []
    current = Path(start).resolve()
    for _ in range(max_depth):
        if (current / ".git").exists():
            repos.append(current)
        if current.parent == current:
            break
        current = current.parent
    return repos


def find_repositories(base: str | Path, max_depth: int = 3, _depth: int = 0) -> list[Path]:
    repos: list[Path] = []
    if _depth > max_depth:
        return repos

    try:
        entries = sorted(os.scandir(base), key=lambda entry: entry.name)
    except OSError as error:
        LOGGER.debug("Skipping unreadable directory %s: %s", base, error)
        return repos

    for entry in entries:
        if not entry.is_dir(follow_symlinks=False) or entry.name == ".git":
            continue
        path = Path(entry.path)
        if (path / ".git").exists():
            repos.append(path)
        else:
            repos.extend(find_repositories(path, max_depth, _depth + 1))
    return repos


class GitWorkspace:
    """The repository local git tools operate on; switchable at runtime."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser().resolve()

    @property
    def repo(self) -> git.Repo:
        try:
            return git.Repo(self.path)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as error:
            raise GitWorkspaceError(f"Not a Git repository: {self.path}") from error

    def ensure_repository(self) -> git.Repo:
        if not is_git_repository(self.path) and self.auto_detect() is None:
            raise GitWorkspaceError(
                "No Git repository found. Use auto_detect_repository or "
                "set_working_directory first."
            )
        return self.repo

    def auto_detect(self) -> Path | None:
        if is_git_repository(self.path):
            return self.path

        parents = find_repositories_in_parents(self.path)
        if parents:
            self.path = parents[0]
            return self.path

        local = find_repositories(self.path, max_depth=2)
        if local:
            self.path = local[0].resolve()
            return self.path
        return None

    def switch(self, path: str | Path) -> Path:
        target = Path(path).expanduser()
        if not target.exists():
            raise GitWorkspaceError(f"Path does not exist: {target}")
        if not (target / ".git").exists():
            raise GitWorkspaceError(f"Not a Git repository: {target}")
        self.path = target.resolve()
        LOGGER.info("Switched repository to %s", self.path)
        return self.path

    def current_branch(self) -> str:
        repo = self.ensure_repository()
        if repo.head.is_detached:
            return f"HEAD detached at {repo.head.commit.hexsha[:8]}"
        return repo.active_branch.name

    def branches(self) -> list[str]:
        return [head.name for head in self.ensure_repository().heads]

    def diff(self, target_branch: str = "main") -> str:
        repo = self.ensure_repository()
        current = "HEAD" if repo.head.is_detached else repo.active_branch.name
        try:
            return repo.git.diff(f"{target_branch}...{current}")
        except git.exc.GitCommandError as error:
            raise GitWorkspaceError(f"Failed to get diff: {error.stderr.strip()}") from error

    def info(self) -> RepositoryInfo:
        repo = self.ensure_repository()
        modified = {item.a_path for item in repo.index.diff(None)}
        modified.update(repo.untracked_files)
        if repo.head.is_valid():
            modified.update(item.a_path for item in repo.index.diff("HEAD"))
        return RepositoryInfo(
            path=str(self.path),
            branch=self.current_branch(),
            is_clean=not repo.is_dirty(untracked_files=True),
            remotes=[remote.name for remote in repo.remotes],
            modified_files=len(modified),
        )

    def commits_for_story(
        self,
        story_key: str,
        *,
        since: str | None = None,
        max_count: int = 20,
        branch: str | None = None,
    ) -> list[CommitSummary]:
        repo = self.ensure_repository()
        kwargs: dict[str, object] = {
            "max_count": max_count,
            "grep": story_key,
            "regexp_ignore_case": True,
        }
        if since:
            kwargs["since"] = normalize_since(since)
        try:
            commits = list(repo.iter_commits(branch or "HEAD", **kwargs))
        except git.exc.GitCommandError as error:
            raise GitWorkspaceError(f"Failed to read git log: {error.stderr.strip()}") from error

        return [
            CommitSummary(
                hash=commit.hexsha,
                author=commit.author.name,
                date=commit.committed_datetime.isoformat(),
                message=commit.summary,
                files={
                    str(path): dict(stats) for path, stats in commit.stats.files.items()
                },
            )
            for commit in commits
        ]

    def author_story_stats(self, since: str = "6m", min_stories: int = 3) -> list[AuthorStats]:
        repo = self.ensure_repository()
        stats: dict[str, AuthorStats] = {}
        try:
            for commit in repo.iter_commits("HEAD", since=normalize_since(since)):
                author = commit.author.name
                entry = stats.setdefault(
                    author, AuthorStats(author=author, commits=0, stories=set())
                )
                entry.commits += 1
                entry.stories.update(STORY_KEY_RE.findall(commit.message))
        except git.exc.GitCommandError as error:
            raise GitWorkspaceError(f"Failed to read git log: {error.stderr.strip()}") from error

        qualified = [entry for entry in stats.values() if len(entry.stories) >= min_stories]
        return sorted(qualified, key=lambda entry: entry.commits_per_story)


_SINCE_UNITS = {"d": "days", "w": "weeks", "m": "months", "y": "years"}


def normalize_since(value: str) -> str:
    """Turn shorthand like ``30d`` or ``6m`` into a ``git log --since`` value."""
    match = re.fullmatch(r"\s*(\d+)\s*([dwmy])\s*", value)
    if not match:
        return value
    amount, unit = match.groups()
    return f"{amount} {_SINCE_UNITS[unit]} ago"
