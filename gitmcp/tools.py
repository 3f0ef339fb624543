from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from mcp.types import ToolAnnotations

from auth.errors import ApiRequestError
from auth.oauth_flow import BitbucketOAuth

from .bitbucket import BitbucketAPI
from .constants import LOGGER, SUPPORTED_PLATFORMS, UNSUPPORTED_PLATFORM_MESSAGE
from .git_ops import (
    CommitSummary,
    GitWorkspace,
    StoryComplexity,
    find_repositories,
    story_complexity,
)
from .github import GitHubAPI

if TYPE_CHECKING:
    from fastmcp import FastMCP

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, openWorldHint=False)
READ_ONLY_REMOTE = ToolAnnotations(readOnlyHint=True, destructiveHint=False, openWorldHint=True)
LOCAL_STATE = ToolAnnotations(readOnlyHint=False, destructiveHint=False, openWorldHint=False)
REMOTE_WRITE = ToolAnnotations(readOnlyHint=False, destructiveHint=False, openWorldHint=True)


def _check_platform(platform: str) -> str:
    normalized = platform.strip().lower()
    if normalized not in SUPPORTED_PLATFORMS:
        raise ValueError(UNSUPPORTED_PLATFORM_MESSAGE)
    return normalized


def format_github_comments(pr_number: str, comments: list[dict]) -> str:
    blocks = [
        f"Comment ID: {comment.get('id')}\n"
        f"Author: {comment.get('user', {}).get('login')}\n"
        f"Created: {comment.get('created_at')}\n"
        f"Body: {comment.get('body')}\n---"
        for comment in comments
    ]
    return f"Comments for PR #{pr_number}:\n\n" + ("\n\n".join(blocks) or "No comments found.")


def format_bitbucket_comments(pr_number: str, payload: dict) -> str:
    blocks = [
        f"Comment ID: {comment.get('id')}\n"
        f"Author: {comment.get('user', {}).get('display_name')}\n"
        f"Created: {comment.get('created_on')}\n"
        f"Body: {comment.get('content', {}).get('raw')}\n---"
        for comment in (payload or {}).get("values", [])
    ]
    return f"Comments for PR #{pr_number}:\n\n" + ("\n\n".join(blocks) or "No comments found.")


def format_github_pr(pr_number: str, pr: dict) -> list[str]:
    return [
        f"**Pull Request #{pr_number}**",
        f"Title: {pr.get('title')}",
        f"State: {pr.get('state')}",
        f"Draft: {'Yes' if pr.get('draft') else 'No'}",
        f"Author: {pr.get('user', {}).get('login')}",
        f"Created: {pr.get('created_at')}",
        f"Updated: {pr.get('updated_at')}",
        f"Source Branch: {pr.get('head', {}).get('ref')}",
        f"Target Branch: {pr.get('base', {}).get('ref')}",
        f"Commits: {pr.get('commits')}",
        f"Changed Files: {pr.get('changed_files')}",
        f"Additions: {pr.get('additions')}",
        f"Deletions: {pr.get('deletions')}",
        f"URL: {pr.get('html_url')}",
        "",
        "**Description:**",
        pr.get("body") or "No description provided",
    ]


def format_bitbucket_pr(pr_number: str, pr: dict) -> list[str]:
    return [
        f"**Pull Request #{pr_number}**",
        f"Title: {pr.get('title')}",
        f"State: {pr.get('state')}",
        f"Draft: {'Yes' if pr.get('draft') else 'No'}",
        f"Author: {pr.get('author', {}).get('display_name')}",
        f"Created: {pr.get('created_on')}",
        f"Updated: {pr.get('updated_on')}",
        f"Source Branch: {pr.get('source', {}).get('branch', {}).get('name')}",
        f"Target Branch: {pr.get('destination', {}).get('branch', {}).get('name')}",
        f"Comments: {pr.get('comment_count', 0)}",
        f"URL: {pr.get('links', {}).get('html', {}).get('href')}",
        "",
        "**Description:**",
        pr.get("description") or "No description provided",
    ]


def format_commit(commit: CommitSummary, include_files: bool = True) -> str:
    lines = [
        f"**{commit.hash[:8]}** - {commit.message}",
        f"- Author: {commit.author}",
        f"- Date: {commit.date}",
        f"- Files Changed: {commit.files_changed}",
    ]
    if include_files and commit.files:
        lines.append("- Changed Files:")
        for path, stats in commit.files.items():
            lines.append(
                f"  - {path} (+{stats.get('insertions', 0)}/-{stats.get('deletions', 0)})"
            )
    return "\n".join(lines)


class GitMCPTools:
    def __init__(
        self,
        workspace: GitWorkspace,
        *,
        github: GitHubAPI,
        bitbucket: BitbucketAPI | None = None,
        oauth: BitbucketOAuth | None = None,
    ) -> None:
        self.workspace = workspace
        self.github = github
        self.bitbucket = bitbucket
        self.oauth = oauth

    def _require_bitbucket(self) -> BitbucketAPI:
        if self.bitbucket is None:
            raise ApiRequestError(
                "BITBUCKET_OAUTH_CLIENT_ID environment variable is required for Bitbucket"
            )
        return self.bitbucket

    # -- local git -------------------------------------------------------------

    async def get_git_diff(self, target_branch: str = "main") -> str:
        current = await asyncio.to_thread(self.workspace.current_branch)
        diff = await asyncio.to_thread(self.workspace.diff, target_branch)
        return (
            f"Differences between {current} and {target_branch}:\n\n"
            f"{diff or 'No differences found.'}"
        )

    async def get_current_branch(self) -> str:
        return f"Current branch: {await asyncio.to_thread(self.workspace.current_branch)}"

    async def get_branch_list(self) -> str:
        current = await asyncio.to_thread(self.workspace.current_branch)
        branches = await asyncio.to_thread(self.workspace.branches)
        lines = [f"{name} (current)" if name == current else name for name in branches]
        return "Available branches:\n" + "\n".join(lines)

    async def list_git_repositories(self, max_depth: int = 3, base_path: str | None = None) -> str:
        repos = await asyncio.to_thread(
            find_repositories, base_path or self.workspace.path, max_depth
        )
        if not repos:
            return "No Git repositories found in the specified path."
        lines = [
            f"- {repo}{' (current)' if repo.resolve() == self.workspace.path else ''}"
            for repo in repos
        ]
        return f"Found {len(repos)} Git repository(ies):\n\n" + "\n".join(lines)

    async def switch_git_repository(self, repo_path: str) -> str:
        path = await asyncio.to_thread(self.workspace.switch, repo_path)
        return (
            f"Successfully switched to repository: {path}\n"
            f"Current branch: {await asyncio.to_thread(self.workspace.current_branch)}"
        )

    async def set_working_directory(self, directory: str) -> str:
        path = await asyncio.to_thread(self.workspace.switch, directory)
        return (
            f"Successfully set working directory to: {path}\n"
            f"Current branch: {await asyncio.to_thread(self.workspace.current_branch)}"
        )

    async def get_current_repository_info(self) -> str:
        info = await asyncio.to_thread(self.workspace.info)
        lines = [
            f"Repository Path: {info.path}",
            f"Current Branch: {info.branch}",
            f"Working Directory Clean: {info.is_clean}",
            f"Remotes: {', '.join(info.remotes) if info.remotes else 'None'}",
        ]
        if info.modified_files:
            lines.append(f"Modified Files: {info.modified_files}")
        return "\n".join(lines)

    async def auto_detect_repository(self) -> str:
        detected = await asyncio.to_thread(self.workspace.auto_detect)
        if detected is None:
            return (
                "No Git repository found in current directory or nearby directories.\n"
                "Use set_working_directory to manually specify a repository path."
            )
        info = await asyncio.to_thread(self.workspace.info)
        return (
            f"Automatically detected Git repository: {detected}\n"
            f"Current branch: {info.branch}\n"
            f"Working directory clean: {info.is_clean}\n"
            f"Modified files: {info.modified_files}"
        )

    async def find_and_switch_repository(
        self,
        search_path: str | None = None,
        max_depth: int = 5,
        switch_to: str | None = None,
    ) -> str:
        root = search_path or self.workspace.path
        repos = await asyncio.to_thread(find_repositories, root, max_depth)
        if not repos:
            return f"No Git repositories found in: {root}"

        if switch_to:
            match = next(
                (repo for repo in repos if repo.name == switch_to or switch_to in str(repo)),
                None,
            )
            if match is None:
                listing = "\n".join(f"{index}. {repo}" for index, repo in enumerate(repos, 1))
                return (
                    f'Repository matching "{switch_to}" not found. '
                    f"Available repositories:\n\n{listing}"
                )
            await asyncio.to_thread(self.workspace.switch, match)
            info = await asyncio.to_thread(self.workspace.info)
            return (
                f"Switched to repository: {info.path}\n"
                f"Current branch: {info.branch}\n"
                f"Working directory clean: {info.is_clean}\n"
                f"Modified files: {info.modified_files}"
            )

        listing = "\n".join(
            f"{index}. {repo}{' (current)' if repo.resolve() == self.workspace.path else ''}"
            for index, repo in enumerate(repos, 1)
        )
        return (
            f"Found {len(repos)} Git repository(ies):\n\n{listing}\n\n"
            "To switch to a specific repository, call find_and_switch_repository "
            'with switch_to: "repository_name_or_path"'
        )

    # -- bitbucket -------------------------------------------------------------

    async def bitbucket_auth_status(self) -> str:
        if self.bitbucket is None or self.oauth is None:
            return (
                "Not authenticated with Bitbucket.\n\n"
                "Set BITBUCKET_OAUTH_CLIENT_ID (and optionally "
                "BITBUCKET_OAUTH_CLIENT_SECRET) to enable Bitbucket OAuth."
            )
        if not self.oauth.is_authenticated:
            state = "in progress" if self.oauth.flow_in_progress else "not started"
            return (
                "Not authenticated with Bitbucket.\n\n"
                f"OAuth flow: {state}. Any Bitbucket tool call opens the browser "
                "for consent."
            )
        if not await self.oauth.validate_token():
            return (
                "Authenticated with Bitbucket\n\n"
                "Token Status: Invalid or expired. It will be refreshed on the next "
                "Bitbucket call."
            )
        user = await self.bitbucket.get_current_user()
        return (
            "Authenticated with Bitbucket\n\n"
            f"User: {user.get('display_name')} (@{user.get('username') or user.get('nickname')})\n"
            f"Account Status: {user.get('account_status', 'unknown')}\n\n"
            "Token Status: Valid"
        )

    async def checkout_repository(
        self,
        repository_url: str,
        target_directory: str,
        branch: str = "main",
    ) -> str:
        bitbucket = self._require_bitbucket()
        target = await bitbucket.checkout_repository(repository_url, target_directory, branch)
        await asyncio.to_thread(self.workspace.switch, target)
        info = await asyncio.to_thread(self.workspace.info)
        status = "Clean" if info.is_clean else f"{info.modified_files} modified files"
        return (
            "Successfully cloned repository!\n\n"
            f"Path: {target}\n"
            f"Branch: {info.branch}\n"
            f"Status: {status}\n"
            f"Repository: {repository_url}\n\n"
            "The working directory now points at this repository."
        )

    # -- pull requests ---------------------------------------------------------

    async def _existing_pull_requests(
        self, platform: str, owner: str, repo: str, source: str, target: str
    ) -> list[dict[str, Any]]:
        if platform == "github":
            return await self.github.find_pull_requests(owner, repo, source, target)
        return await self._require_bitbucket().find_pull_requests(owner, repo, source, target)

    async def create_pull_request(
        self,
        title: str,
        repo_owner: str,
        repo_name: str,
        description: str | None = None,
        source_branch: str | None = None,
        target_branch: str = "main",
        is_draft: bool = False,
        platform: str = "github",
        force: bool = False,
        check_existing: bool = True,
    ) -> str:
        platform = _check_platform(platform)
        source = source_branch or await asyncio.to_thread(self.workspace.current_branch)

        if check_existing and not force:
            try:
                existing = await self._existing_pull_requests(
                    platform, repo_owner, repo_name, source, target_branch
                )
            except ApiRequestError as error:
                LOGGER.warning("Could not check existing PRs: %s", error)
                existing = []
            if existing:
                listing = "\n".join(f"- {pr['title']} ({pr['url']})" for pr in existing)
                return (
                    f"PR already exists from {source} to {target_branch}:\n\n{listing}\n\n"
                    "Use force: true to create a new PR anyway, or check_existing: false "
                    "to skip this check."
                )

        if platform == "github":
            pr = await self.github.create_pull_request(
                repo_owner,
                repo_name,
                title=title,
                head=source,
                base=target_branch,
                body=description,
                draft=is_draft,
            )
            return (
                "Pull request created successfully!\n"
                f"URL: {pr.get('html_url')}\nNumber: {pr.get('number')}"
            )

        pr = await self._require_bitbucket().create_pull_request(
            repo_owner,
            repo_name,
            title=title,
            source_branch=source,
            target_branch=target_branch,
            description=description,
            draft=is_draft,
        )
        return (
            "Pull request created successfully!\n"
            f"URL: {pr.get('links', {}).get('html', {}).get('href')}\nID: {pr.get('id')}"
        )

    async def get_pull_request_comments(
        self,
        pr_number: str,
        repo_owner: str,
        repo_name: str,
        platform: str = "github",
    ) -> str:
        if _check_platform(platform) == "github":
            comments = await self.github.get_pull_request_comments(
                repo_owner, repo_name, pr_number
            )
            return format_github_comments(pr_number, comments)
        payload = await self._require_bitbucket().get_pull_request_comments(
            repo_owner, repo_name, pr_number
        )
        return format_bitbucket_comments(pr_number, payload)

    async def reply_to_comment(
        self,
        pr_number: str,
        comment_id: str,
        reply_text: str,
        repo_owner: str,
        repo_name: str,
        platform: str = "github",
    ) -> str:
        if _check_platform(platform) == "github":
            comment = await self.github.add_comment(
                repo_owner, repo_name, pr_number, reply_text, in_reply_to=comment_id
            )
        else:
            comment = await self._require_bitbucket().add_pull_request_comment(
                repo_owner, repo_name, pr_number, reply_text, parent_id=comment_id
            )
        return f"Reply posted successfully!\nComment ID: {comment.get('id')}"

    async def get_pull_request_details(
        self,
        pr_number: str,
        repo_owner: str,
        repo_name: str,
        platform: str = "github",
        include_diff: bool = True,
    ) -> str:
        if _check_platform(platform) == "github":
            pr = await self.github.get_pull_request(repo_owner, repo_name, pr_number)
            details = format_github_pr(pr_number, pr)
            if include_diff:
                diff = await self.github.get_pull_request_diff(repo_owner, repo_name, pr_number)
                details += ["", "**Changes/Diff:**", "```diff", diff, "```"]
            return "\n".join(details)

        bitbucket = self._require_bitbucket()
        pr = await bitbucket.get_pull_request(repo_owner, repo_name, pr_number)
        details = format_bitbucket_pr(pr_number, pr)
        if include_diff:
            diff = await bitbucket.get_pull_request_diff(repo_owner, repo_name, pr_number)
            details += ["", "**Changes/Diff:**", "```diff", diff, "```"]
        return "\n".join(details)

    # -- story history ---------------------------------------------------------

    async def get_story_code_changes(
        self,
        story_keys: list[str],
        max_results: int = 20,
        time_range: str | None = None,
    ) -> str:
        seen: dict[str, tuple[str, CommitSummary]] = {}
        for key in story_keys:
            commits = await asyncio.to_thread(
                self.workspace.commits_for_story, key, since=time_range, max_count=max_results
            )
            for commit in commits:
                seen.setdefault(commit.hash, (key, commit))

        changes = sorted(seen.values(), key=lambda item: item[1].date, reverse=True)
        changes = changes[:max_results]

        lines = [f"Code changes for stories: {', '.join(story_keys)}", ""]
        if not changes:
            lines.append("No commits found referencing these stories.")
            return "\n".join(lines)

        for key, commit in changes:
            lines.append(f"[{key}] {format_commit(commit)}")
            lines.append("")

        insertions = sum(
            stats.get("insertions", 0)
            for _, commit in changes
            for stats in commit.files.values()
        )
        deletions = sum(
            stats.get("deletions", 0)
            for _, commit in changes
            for stats in commit.files.values()
        )
        lines += [
            "**Summary:**",
            f"- Commits: {len(changes)}",
            f"- Lines Added: {insertions}",
            f"- Lines Removed: {deletions}",
        ]
        return "\n".join(lines)

    async def get_latest_commits(
        self,
        story_key: str,
        branch: str | None = None,
        max_commits: int = 20,
        include_files: bool = True,
        time_range: str | None = None,
    ) -> str:
        commits = await asyncio.to_thread(
            self.workspace.commits_for_story,
            story_key,
            since=time_range,
            max_count=max_commits,
            branch=branch,
        )
        lines = [
            f"**Latest Commits for {story_key}**",
            "",
            f"Found {len(commits)} commit(s):",
            "",
        ]
        for commit in commits:
            lines.append(format_commit(commit, include_files))
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"

    async def _story_complexity(
        self, story_key: str, file_types: list[str] | None = None
    ) -> StoryComplexity:
        commits = await asyncio.to_thread(self.workspace.commits_for_story, story_key)
        return story_complexity(story_key, commits, file_types)

    async def analyze_code_complexity(
        self,
        story_keys: list[str],
        include_metrics: bool = True,
        include_file_types: list[str] | None = None,
    ) -> str:
        await asyncio.to_thread(self.workspace.ensure_repository)
        lines = [
            "**Code Complexity Analysis**",
            "",
            f"Analyzing code changes for stories: {', '.join(story_keys)}",
            "",
        ]
        for key in story_keys:
            result = await self._story_complexity(key, include_file_types)
            lines += [f"**{key}**", f"- Total Commits: {result.commits}"]
            if include_metrics:
                lines.append("- File Types Changed:")
                lines += [f"  - {kind}: {count} files" for kind, count in result.sorted_file_types()]
                lines += [
                    "- Complexity Metrics:",
                    f"  - Total Lines Changed: {result.total_lines}",
                    f"  - Average Lines per Change: {result.avg_lines_per_commit:.1f}",
                    f"  - Most Changed File Type: {result.most_changed_type}",
                ]
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"

    async def get_story_complexity_stats(
        self,
        story_keys: list[str],
        include_file_breakdown: bool = True,
        complexity_threshold: int = 10,
    ) -> str:
        await asyncio.to_thread(self.workspace.ensure_repository)
        lines = [
            "**Story Complexity Statistics**",
            "",
            f"Analyzing complexity for stories: {', '.join(story_keys)}",
            "",
        ]
        for key in story_keys:
            result = await self._story_complexity(key)
            lines += [
                f"**{key}**",
                f"- Total Commits: {result.commits}",
                f"- Total Lines Changed: {result.total_lines}",
                f"- Total Files Changed: {result.total_files}",
                f"- Average Lines per File: {result.avg_lines_per_file:.1f}",
            ]
            if include_file_breakdown:
                lines.append("- File Type Breakdown:")
                lines += [f"  - {kind}: {count} files" for kind, count in result.sorted_file_types()]
                heavy = result.files_over(complexity_threshold)
                if heavy:
                    lines.append(f"- High Complexity Files (>{complexity_threshold} lines):")
                    lines += [f"  - {path}: {count} lines" for path, count in heavy]
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"

    async def analyze_developer_performance(
        self, time_range: str = "6m", min_stories: int = 3
    ) -> str:
        stats = await asyncio.to_thread(
            self.workspace.author_story_stats, time_range, min_stories
        )
        lines = ["**Developer Performance Analysis**", "", f"Analyzing history over: {time_range}", ""]
        if not stats:
            lines.append(f"No developers with at least {min_stories} stories in this period.")
            return "\n".join(lines)

        for entry in stats:
            lines += [
                f"**{entry.author}**",
                f"- Commits: {entry.commits}",
                f"- Stories: {len(entry.stories)}",
                f"- Commits per Story: {entry.commits_per_story:.1f}",
                f"- Story Keys: {', '.join(sorted(entry.stories))}",
                "",
            ]
        return "\n".join(lines).rstrip() + "\n"


def register_tools(mcp: "FastMCP", tools: GitMCPTools) -> None:
    local_tools = (
        (tools.get_git_diff, READ_ONLY, "Get differences between current branch and target branch"),
        (tools.get_current_branch, READ_ONLY, "Get the current branch name"),
        (tools.get_branch_list, READ_ONLY, "Get list of all branches"),
        (
            tools.list_git_repositories,
            READ_ONLY,
            "List Git repositories in the current directory and subdirectories",
        ),
        (tools.switch_git_repository, LOCAL_STATE, "Switch to a different Git repository"),
        (tools.set_working_directory, LOCAL_STATE, "Set the working directory for Git operations"),
        (
            tools.get_current_repository_info,
            READ_ONLY,
            "Get information about the current Git repository",
        ),
        (
            tools.auto_detect_repository,
            LOCAL_STATE,
            "Automatically detect and set the best Git repository for the current context",
        ),
        (
            tools.find_and_switch_repository,
            LOCAL_STATE,
            "Find all Git repositories and switch to the one you specify",
        ),
        (
            tools.get_story_code_changes,
            READ_ONLY,
            "Get commits referencing Jira story keys to help with effort estimation",
        ),
        (
            tools.get_latest_commits,
            READ_ONLY,
            "Get latest commits for a Jira story key with their file changes",
        ),
        (
            tools.analyze_developer_performance,
            READ_ONLY,
            "Summarize commits and story keys per developer over a time range",
        ),
        (
            tools.analyze_code_complexity,
            READ_ONLY,
            "Analyze code changes per story for effort estimation",
        ),
        (
            tools.get_story_complexity_stats,
            READ_ONLY,
            "Get line and file change statistics for stories, highlighting heavily changed files",
        ),
    )
    remote_tools = (
        (
            tools.checkout_repository,
            REMOTE_WRITE,
            "Clone a Bitbucket repository into a directory using Bitbucket OAuth",
        ),
        (tools.bitbucket_auth_status, READ_ONLY_REMOTE, "Check Bitbucket authentication status"),
        (
            tools.create_pull_request,
            REMOTE_WRITE,
            "Create a new pull request (supports GitHub and Bitbucket)",
        ),
        (
            tools.get_pull_request_comments,
            READ_ONLY_REMOTE,
            "Get comments for a specific pull request",
        ),
        (tools.reply_to_comment, REMOTE_WRITE, "Reply to a specific comment on a pull request"),
        (
            tools.get_pull_request_details,
            READ_ONLY_REMOTE,
            "Get detailed information about a pull request including its diff",
        ),
    )

    for fn, annotations, description in local_tools + remote_tools:
        mcp.tool(fn, name=fn.__name__, description=description, annotations=annotations)


