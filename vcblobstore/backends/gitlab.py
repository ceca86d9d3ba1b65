"""
GitLab-hosted backend.

Blobs are files at the root of one GitLab project. Each mutation is sent
as a single multi-action commit request, so the provider applies it
entirely or not at all. Requests share the GitLabClient's session pool.
"""

import base64
import binascii
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from urllib.parse import quote

from ..context import OperationContext, check_context
from ..domain import BlobInfo, CommitMetadata, validate_key
from ..errors import (
    BlobNotFoundError,
    BlobStoreError,
    ConfigError,
    IntegrityError,
    NotFoundError,
    OperationCancelled,
    ProtocolError,
    RetryBudgetExceeded,
    UnrecoverableError,
)
from ..infra.client_pool import DEFAULT_POOL_SIZE, DEFAULT_REQUEST_TIMEOUT
from ..infra.gitlab_client import (
    DEFAULT_BASE_URL,
    DEFAULT_RATE_LIMIT_LOW_WATER,
    GitLabClient,
    decode_json,
)
from .base import commit_failure_simulated

logger = logging.getLogger(__name__)

VERSION_HEADER = "X-Gitlab-Last-Commit-Id"
NEXT_PAGE_HEADER = "X-Next-Page"
TREE_PAGE_SIZE = 100


@dataclass
class GitLabConfig:
    """Connection and retry settings of a GitLab-backed store."""
    namespace_path: str
    project_path: str
    access_token: str = field(default="", repr=False)
    main_branch: str = "main"
    base_url: str = DEFAULT_BASE_URL
    pool_size: int = DEFAULT_POOL_SIZE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    create_max_attempts: int = 20
    create_retry_delay: float = 1.0
    rate_limit_low_water: int = DEFAULT_RATE_LIMIT_LOW_WATER

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GitLabConfig':
        """Create from the `gitlab` configuration section, ignoring unknown keys."""
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


class CreationConflict(Enum):
    """Transient reasons GitLab gives for refusing to create a project."""
    STILL_BEING_DELETED = "The project is still being deleted. Please try again later."
    PATH_TAKEN = "has already been taken"


# Provider wording of a delete action on an absent file.
_MISSING_FILE_MESSAGE = "doesn't exist"


def classify_creation_conflict(body: str) -> Optional[CreationConflict]:
    """
    Recognize a retryable project-creation failure.

    Args:
        body: Response body of a 400 answer to POST /projects

    Returns:
        The matching CreationConflict, or None if the failure is not transient
    """
    for conflict in CreationConflict:
        if conflict.value in body:
            return conflict
    return None


def is_missing_file_error(body: str) -> bool:
    """Check if a rejected commit complained about a file that does not exist."""
    return _MISSING_FILE_MESSAGE in body


class CommitActionType(Enum):
    CREATE = "create"
    DELETE = "delete"
    MOVE = "move"
    UPDATE = "update"
    CHMOD = "chmod"


@dataclass
class CommitAction:
    """One file change of a multi-action commit."""
    action: CommitActionType
    file_path: str
    content: bytes = b""

    def to_dict(self) -> Dict[str, Any]:
        """
        Render as an entry of the commit request's `actions` list.

        Content longer than one byte is sent base64-encoded; shorter
        content is left out together with its encoding.
        """
        data: Dict[str, Any] = {
            'action': self.action.value,
            'file_path': self.file_path,
        }
        if len(self.content) > 1:
            data['content'] = base64.b64encode(self.content).decode('ascii')
            data['encoding'] = 'base64'
        return data


def build_commit_body(
    branch: str,
    author_name: str,
    commit_message: str,
    actions: List[CommitAction],
) -> Dict[str, Any]:
    """Build the JSON body of POST /projects/:id/repository/commits."""
    return {
        'branch': branch,
        'author_name': author_name,
        'commit_message': commit_message,
        'actions': [action.to_dict() for action in actions],
    }


class GitLabRepository:
    """
    Blob store kept in a GitLab project.

    Example:
        config = GitLabConfig("my-group", "blobs", access_token=token)
        repo = GitLabRepository(config)
        repo.create_repository()
        repo.add_blob(BlobInfo("zazie-icon", data, modified_by="ux"))
    """

    def __init__(
        self,
        config: GitLabConfig,
        client: Optional[GitLabClient] = None,
        ctx: Optional[OperationContext] = None,
    ):
        """
        Initialize GitLabRepository and resolve its namespace.

        Args:
            config: Project and connection settings
            client: API client to use (built from config if None)
            ctx: Context for the namespace lookup

        Raises:
            ConfigError: If no token is configured or the namespace is not owned
        """
        if not config.access_token:
            raise ConfigError("No API token for GitLab repository")
        self.config = config
        self.client = client or GitLabClient(
            config.access_token,
            base_url=config.base_url,
            pool_size=config.pool_size,
            request_timeout=config.request_timeout,
            rate_limit_low_water=config.rate_limit_low_water,
        )
        self.namespace_id = self.client.get_namespace_id(config.namespace_path, ctx=ctx)
        self.project_id: Optional[int] = None

    @property
    def project_full_path(self) -> str:
        return f"{self.config.namespace_path}/{self.config.project_path}"

    @property
    def branch(self) -> str:
        return self.config.main_branch

    def __str__(self) -> str:
        return f"GitLab repository at {self.project_full_path}?ref={self.branch}"

    def _project_url(self, suffix: str = "") -> str:
        if self.project_id is not None:
            ref = str(self.project_id)
        else:
            ref = quote(self.project_full_path, safe="")
        return f"/projects/{ref}{suffix}"

    def _file_url(self, key: str) -> str:
        return self._project_url(f"/repository/files/{quote(validate_key(key), safe='')}")

    # Repository lifecycle

    def create_repository(self, ctx: Optional[OperationContext] = None) -> None:
        """
        Create the project, retrying while GitLab reports a transient conflict.

        A project left over under the same path is deleted before retrying.

        Raises:
            RetryBudgetExceeded: If the conflicts persist for every attempt
            ProtocolError: If GitLab refuses the project for another reason
        """
        body = {
            'namespace_id': self.namespace_id,
            'path': self.config.project_path,
        }
        delay = self.config.create_retry_delay
        attempts = self.config.create_max_attempts

        for attempt in range(1, attempts + 1):
            check_context(ctx, f"create {self}")
            response = self.client.request("POST", "/projects", json=body, ctx=ctx)
            if response.status_code == 201:
                self.project_id = decode_json(response, "project creation").get('id')
                logger.info(f"GitLab repository created: {self.project_full_path}")
                return

            conflict = None
            if response.status_code == 400:
                conflict = classify_creation_conflict(response.text)
            if conflict is None:
                raise ProtocolError(
                    f"Failed to create project {self.project_full_path}",
                    response.status_code,
                    response.text,
                )

            logger.warning(
                f"Transient error while creating {self.project_full_path} "
                f"({conflict.name}, attempt {attempt}/{attempts}), retrying in {delay}s"
            )
            time.sleep(delay)
            if conflict is CreationConflict.PATH_TAKEN:
                try:
                    self.delete_repository(ctx=ctx)
                except BlobStoreError as e:
                    logger.warning(f"Failed to delete leftover project {self.project_full_path}: {e}")
                time.sleep(delay)

        raise RetryBudgetExceeded(f"create GitLab repository {self.project_full_path}", attempts)

    def delete_repository(self, ctx: Optional[OperationContext] = None) -> None:
        """Delete the project; a project that does not exist counts as deleted."""
        response = self.client.request("DELETE", self._project_url(), ctx=ctx)
        if response.status_code not in (202, 404):
            raise ProtocolError(
                f"Failed to delete GitLab repository {self.project_full_path}",
                response.status_code,
                response.text,
            )
        self.project_id = None
        logger.info(f"GitLab repository deleted: {self.project_full_path}")

    def reset_repository(self, ctx: Optional[OperationContext] = None) -> None:
        """
        Raises:
            UnrecoverableError: If the delete fails
        """
        try:
            self.delete_repository(ctx=ctx)
        except OperationCancelled:
            raise
        except BlobStoreError as e:
            raise UnrecoverableError(f"Failed to reset {self}: {e}") from e
        self.create_repository(ctx=ctx)

    # Mutations

    def _commit(
        self,
        author_name: str,
        commit_message: str,
        actions: List[CommitAction],
        ctx: Optional[OperationContext],
    ) -> None:
        if commit_failure_simulated():
            raise IntegrityError(f"Simulated commit failure on {self}")
        if not author_name:
            logger.warning(f"{commit_message}: modifying user is not specified")

        body = build_commit_body(self.branch, author_name, commit_message, actions)
        response = self.client.request(
            "POST",
            self._project_url("/repository/commits"),
            params={'ref': self.branch},
            json=body,
            ctx=ctx,
        )
        if response.status_code == 201:
            return

        if response.status_code == 400 and is_missing_file_error(response.text):
            missing = [a.file_path for a in actions if a.action is not CommitActionType.CREATE]
            raise BlobNotFoundError(", ".join(missing), response.text)
        raise IntegrityError(
            f"Failed to commit to {self}: ({response.status_code}) {response.text}"
        )

    def _write_action(self, key: str, content: bytes, ctx: Optional[OperationContext]) -> CommitAction:
        action = CommitActionType.UPDATE if self.get_version_for(key, ctx=ctx) else CommitActionType.CREATE
        return CommitAction(action, key, content)

    def add_blob(self, blob: BlobInfo, ctx: Optional[OperationContext] = None) -> None:
        validate_key(blob.key)
        logger.debug(f"About to commit {blob.key} ({len(blob.content)} bytes)")
        action = self._write_action(blob.key, blob.content, ctx)
        self._commit(blob.modified_by, f"Adding blob: {blob.key}", [action], ctx)
        logger.info(f"Blob {blob.key} added to {self.project_full_path}")

    def copy_blob(
        self,
        source_key: str,
        destination_key: str,
        modified_by: str,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """
        Raises:
            BlobNotFoundError: If source_key does not exist
        """
        validate_key(destination_key)
        content = self.get_blob(source_key, ctx=ctx)
        action = self._write_action(destination_key, content, ctx)
        self._commit(modified_by, f"Copying blob: {source_key} -> {destination_key}", [action], ctx)
        logger.info(f"Blob {source_key} copied to {destination_key} in {self.project_full_path}")

    def delete_blob(self, key: str, modified_by: str, ctx: Optional[OperationContext] = None) -> None:
        """
        Raises:
            BlobNotFoundError: If nothing is stored under key
        """
        validate_key(key)
        self._commit(modified_by, f"Deleting blob: {key}", [CommitAction(CommitActionType.DELETE, key)], ctx)
        logger.info(f"Blob {key} deleted from {self.project_full_path}")

    # Queries

    def get_blob(self, key: str, ctx: Optional[OperationContext] = None) -> bytes:
        """
        Raises:
            BlobNotFoundError: If nothing is stored under key
            ProtocolError: If the content is not base64-encoded
        """
        response = self.client.request("GET", self._file_url(key), params={'ref': self.branch}, ctx=ctx)
        if response.status_code == 404:
            raise BlobNotFoundError(key)
        if response.status_code != 200:
            raise ProtocolError(f"Failed to get blob {key}", response.status_code, response.text)

        data = decode_json(response, f"blob {key}")
        encoding = data.get('encoding')
        if encoding != 'base64':
            raise ProtocolError(f"Unexpected encoding for blob {key}: {encoding}")
        try:
            return base64.b64decode(data.get('content') or '', validate=True)
        except binascii.Error as e:
            raise ProtocolError(f"Failed to decode content of blob {key}: {e}") from e

    def list_blob_keys(self, ctx: Optional[OperationContext] = None) -> Set[str]:
        """Paths of every file in the branch tree; empty for a project without commits."""
        keys: Set[str] = set()
        page = "1"
        while page:
            response = self.client.request(
                "GET",
                self._project_url("/repository/tree"),
                params={
                    'ref': self.branch,
                    'recursive': 'true',
                    'per_page': TREE_PAGE_SIZE,
                    'page': page,
                },
                ctx=ctx,
            )
            if response.status_code == 404:
                return keys
            if response.status_code != 200:
                raise ProtocolError(
                    f"Failed to get repository tree of {self.project_full_path}",
                    response.status_code,
                    response.text,
                )
            for item in decode_json(response, "repository tree"):
                if item.get('type') == 'blob':
                    keys.add(item['path'])
            page = response.headers.get(NEXT_PAGE_HEADER, "")
        return keys

    def get_state_id(self, ctx: Optional[OperationContext] = None) -> str:
        """
        Raises:
            NotFoundError: If the branch has no commit yet
        """
        response = self.client.request(
            "GET",
            self._project_url("/repository/commits"),
            params={'ref_name': self.branch, 'per_page': 1},
            ctx=ctx,
        )
        if response.status_code == 404:
            raise NotFoundError(f"No commit yet in {self}")
        if response.status_code != 200:
            raise ProtocolError(
                f"Failed to get commit list of {self.project_full_path}",
                response.status_code,
                response.text,
            )
        commits = decode_json(response, "commit list")
        if not commits:
            raise NotFoundError(f"No commit yet in {self}")
        return commits[0]['id']

    def get_version_for(self, key: str, ctx: Optional[OperationContext] = None) -> str:
        """Id of the last commit touching key, or "" if the file does not exist."""
        response = self.client.request("HEAD", self._file_url(key), params={'ref': self.branch}, ctx=ctx)
        if response.status_code == 404:
            return ""
        if response.status_code != 200:
            raise ProtocolError(f"Failed to get version of blob {key}", response.status_code, response.text)
        version = response.headers.get(VERSION_HEADER)
        if not version:
            raise ProtocolError(f"Response for blob {key} has no {VERSION_HEADER} header")
        return version

    def get_version_metadata(self, token: str, ctx: Optional[OperationContext] = None) -> CommitMetadata:
        """
        Raises:
            NotFoundError: If the commit does not exist
        """
        response = self.client.request(
            "GET", self._project_url(f"/repository/commits/{quote(token, safe='')}"), ctx=ctx
        )
        if response.status_code == 404:
            raise NotFoundError(f"No commit {token} in {self}")
        if response.status_code != 200:
            raise ProtocolError(f"Failed to get metadata of commit {token}", response.status_code, response.text)
        data = decode_json(response, f"commit {token}")
        logger.debug(f"Raw metadata extracted for {token}: {data}")
        return CommitMetadata.from_api_response(data)

    def check_status(self, ctx: Optional[OperationContext] = None) -> bool:
        """Always True: GitLab applies commits atomically and reports failures itself."""
        check_context(ctx, "check status")
        return True
