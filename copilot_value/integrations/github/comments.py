"""Pull request comments linking developers to their Copilot survey."""

import logging
from typing import Any
from urllib.parse import urlencode

from .app import GitHubApp, GitHubAppError, InstallationNotFoundError
from .client import GitHubAPIError

logger = logging.getLogger(__name__)


def survey_link(base_url: str, survey_id: int, pr_url: str, author: str) -> str:
    query = urlencode({"url": pr_url, "author": author})
    return f"{base_url.rstrip('/')}/copilot/surveys/new/{survey_id}?{query}"


def survey_request_body(link: str, author: str) -> str:
    return (
        f"Hi @{author}! Please take a moment to tell us how GitHub Copilot helped with this "
        f"pull request.\n\n[Fill out the Copilot survey]({link})"
    )


def thank_you_body(user_id: str) -> str:
    return f"Thanks for filling out the copilot survey @{user_id}!"


async def post_survey_request(
    app: GitHubApp,
    org: str,
    repo: str,
    pr_number: int,
    body: str,
) -> dict[str, Any]:
    """Comment on a pull request as the installation of ``org``."""
    installation = app.get_installation(org)
    return await installation.client.post(
        f"/repos/{org}/{repo}/issues/{pr_number}/comments",
        json={"body": body},
    )


async def thank_for_survey(app: GitHubApp, survey: dict[str, Any]) -> bool:
    """Replace the app's survey request comment with a thank-you note.

    Failures are logged and reported as ``False``; they never reach the
    caller who submitted the survey.
    """
    org, repo, pr_number = survey.get("org"), survey.get("repo"), survey.get("prNumber")
    if not (org and repo and pr_number):
        return False
    try:
        installation = app.get_installation(org)
        comments = await installation.client.paginate(f"/repos/{org}/{repo}/issues/{pr_number}/comments")
        slug = app.slug or ""
        comment = next(
            (c for c in comments if ((c.get("user") or {}).get("login") or "").startswith(slug)),
            None,
        )
        if comment is None:
            logger.info(f"No comment found for survey from {slug}")
            return False
        await installation.client.patch(
            f"/repos/{org}/{repo}/issues/comments/{comment['id']}",
            json={"body": thank_you_body(survey.get("userId"))},
        )
        return True
    except InstallationNotFoundError:
        logger.warning(f"No installation for {org}, survey comment not updated")
    except (GitHubAPIError, GitHubAppError) as e:
        logger.error(f"Failed to update survey comment on {org}/{repo}#{pr_number}: {e}")
    return False
