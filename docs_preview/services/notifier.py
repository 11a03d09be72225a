"""
Notifier component.

Keeps one comment per pull request up to date with the preview URL. The
comment carries a hidden tag marker (``<!-- docs-preview -->``); later runs
edit the tagged comment instead of posting another one.
"""

import asyncio
from typing import Optional, Protocol

from azure.devops.connection import Connection
from azure.devops.v7_0.git.models import Comment, CommentThread
from msrest.authentication import BasicAuthentication

from docs_preview.exceptions import DocsPreviewError
from docs_preview.utils.logging import get_logger, log_api_call

logger = get_logger(__name__)

# Azure DevOps thread status "active"
_THREAD_STATUS_ACTIVE = 1


class NotifierError(DocsPreviewError):
    """Raised when the pull request comment cannot be written."""
    pass


class Notifier(Protocol):
    async def upsert_comment(self, pr_number: int, tag: str, body: str) -> None:
        ...


def tag_marker(tag: str) -> str:
    return f"<!-- {tag} -->"


def format_preview_comment(preview_url: str, help_url: Optional[str] = None) -> str:
    """
    Build the body of the preview comment.

    A blank line separates paragraphs in the rendered markdown.
    """
    parts = [
        f"**📖 The documentation preview has been published to {preview_url}.** "
        "It will take about 30 seconds before the preview is available.",
        "",
        "---",
        "",
    ]

    footer = "<sup>If the preview isn't working, please file an issue."
    if help_url:
        footer += f" To build the docs locally, see [Previewing the HTML documentation]({help_url})."
    parts.append(footer + "</sup>")

    return "\n".join(parts)


class AzureDevOpsNotifier:
    """Posts the preview comment as an Azure DevOps pull request thread."""

    def __init__(
        self,
        organization: str,
        personal_access_token: str,
        repository_id: str,
        project: Optional[str] = None,
        git_client=None
    ):
        self.repository_id = repository_id
        self.project = project

        if git_client is None:
            credentials = BasicAuthentication('', personal_access_token)
            connection = Connection(
                base_url=f'https://dev.azure.com/{organization}',
                creds=credentials
            )
            git_client = connection.clients.get_git_client()

        self._git_client = git_client

    async def upsert_comment(self, pr_number: int, tag: str, body: str) -> None:
        """
        Create or edit the tagged comment on a pull request.

        Args:
            pr_number: Validated pull request number
            tag: Comment tag identifying the comment to edit
            body: Markdown body (the tag marker is appended)

        Raises:
            NotifierError: If the Azure DevOps API call fails
        """
        marker = tag_marker(tag)
        content = f"{body}\n\n{marker}"

        try:
            threads = await asyncio.to_thread(
                self._git_client.get_threads,
                self.repository_id,
                pr_number,
                self.project
            )

            for thread in threads or []:
                for comment in thread.comments or []:
                    if getattr(comment, "is_deleted", False):
                        continue
                    if comment.content and marker in comment.content:
                        await asyncio.to_thread(
                            self._git_client.update_comment,
                            Comment(content=content),
                            self.repository_id,
                            pr_number,
                            thread.id,
                            comment.id,
                            self.project
                        )
                        log_api_call(logger, "azure_devops", f"pullRequests/{pr_number}/threads/{thread.id}", "PATCH")
                        return

            thread = CommentThread(
                comments=[Comment(content=content)],
                status=_THREAD_STATUS_ACTIVE
            )
            await asyncio.to_thread(
                self._git_client.create_thread,
                thread,
                self.repository_id,
                pr_number,
                self.project
            )
            log_api_call(logger, "azure_devops", f"pullRequests/{pr_number}/threads", "POST")

        except Exception as e:
            log_api_call(logger, "azure_devops", f"pullRequests/{pr_number}/threads", "UPSERT", error=str(e))
            raise NotifierError(f"Failed to upsert {tag} comment on PR {pr_number}: {e}") from e


class LogNotifier:
    """Notifier that only logs; used for dry runs and local setups."""

    async def upsert_comment(self, pr_number: int, tag: str, body: str) -> None:
        logger.info(
            f"Would upsert {tag} comment on PR {pr_number}",
            extra={"pr_number": pr_number, "body": body}
        )
