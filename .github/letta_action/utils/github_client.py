"""GitHub API utilities for the Letta Code action."""

from typing import List, Optional

from github import Auth, Github, GithubException

from .agent_resolver import ThreadComment
from .config import ActionSettings
from .github_context import GitHubEvent


def get_github_client(settings: ActionSettings) -> Github:
    """Get authenticated GitHub client."""
    if not settings.github_token:
        raise ValueError("GITHUB_TOKEN environment variable not set")
    return Github(auth=Auth.Token(settings.github_token))


def get_repo(gh: Github, repo_name: str):
    """Get repository object."""
    if not repo_name:
        raise ValueError("Repository name not provided")
    return gh.get_repo(repo_name)


def to_thread_comment(comment) -> ThreadComment:
    """Convert a PyGithub comment into a ThreadComment."""
    user = comment.user
    return ThreadComment(
        id=comment.id,
        body=comment.body or "",
        author_login=(user.login if user else "") or "",
        author_id=user.id if user else None,
        author_type=user.type if user else None,
        created_at=comment.created_at,
    )


def get_issue_comments(repo, issue_number: int) -> List[ThreadComment]:
    """Get all comments on an issue or PR, newest first."""
    comments = [to_thread_comment(c) for c in repo.get_issue(issue_number).get_comments()]
    return sorted(comments, key=lambda c: c.created_at, reverse=True)


class IssueCommentLister:
    """Comment listing for agent discovery, backed by a PyGithub repository."""

    def __init__(self, repo):
        self.repo = repo

    def list_comments(self, issue_number: int) -> List[ThreadComment]:
        return get_issue_comments(self.repo, issue_number)


# === Tracking comment ===


def create_tracking_comment(repo, event: GitHubEvent, body: str) -> int:
    """
    Post the initial tracking comment and return its ID.

    Review-comment triggers get a reply in the same review thread.
    """
    if event.is_review_comment and event.comment_id:
        try:
            pr = repo.get_pull(event.thread_number)
            comment = pr.create_review_comment_reply(event.comment_id, body)
            print(f"Created tracking reply {comment.id} on PR #{event.thread_number}")
            return comment.id
        except GithubException as e:
            print(f"Warning: Could not reply in review thread ({e.status}), using a PR comment")

    comment = repo.get_issue(event.thread_number).create_comment(body)
    print(f"Created tracking comment {comment.id} on #{event.thread_number}")
    return comment.id


def get_tracking_comment_body(
    repo, thread_number: int, comment_id: int, is_review_comment: bool = False
) -> str:
    """Read the current body of the tracking comment."""
    if is_review_comment:
        try:
            return repo.get_pull(thread_number).get_review_comment(comment_id).body or ""
        except GithubException as e:
            if e.status != 404:
                raise
    return repo.get_issue(thread_number).get_comment(comment_id).body or ""


def update_tracking_comment(
    repo, thread_number: int, comment_id: int, body: str, is_review_comment: bool = False
) -> dict:
    """
    Replace the tracking comment body.

    A review comment that no longer resolves (404) is retried as an issue
    comment; any other failure propagates.
    """
    if is_review_comment:
        try:
            comment = repo.get_pull(thread_number).get_review_comment(comment_id)
            comment.edit(body)
            return {"id": comment.id, "html_url": comment.html_url}
        except GithubException as e:
            if e.status != 404:
                raise
            print(f"Review comment {comment_id} not found, falling back to issue comment API")

    comment = repo.get_issue(thread_number).get_comment(comment_id)
    comment.edit(body)
    return {"id": comment.id, "html_url": comment.html_url}


# === Branches ===


def check_agent_branch(
    repo, branch: Optional[str], base_branch: Optional[str], server_url: str
) -> Optional[str]:
    """
    Return the branch URL if the agent's branch exists and has commits.

    An existing branch without commits is deleted.
    """
    if not branch:
        return None

    try:
        repo.get_branch(branch)
    except GithubException as e:
        if e.status != 404:
            print(f"Warning: Error checking if branch exists: {e}")
        print(f"Branch {branch} does not exist remotely, no branch link will be added")
        return None

    branch_url = f"{server_url}/{repo.full_name}/tree/{branch}"
    base = base_branch or repo.default_branch

    try:
        comparison = repo.compare(base, branch)
    except GithubException as e:
        print(f"Warning: Error comparing commits on branch {branch}: {e}")
        return branch_url

    if comparison.total_commits > 0:
        return branch_url

    print(f"Branch {branch} has no commits from Letta, deleting it")
    try:
        repo.get_git_ref(f"heads/{branch}").delete()
        print(f"Deleted empty branch: {branch}")
    except GithubException as e:
        print(f"Warning: Failed to delete branch {branch}: {e}")
    return None
