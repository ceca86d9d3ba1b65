"""Build the configured BlobStore backend."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from ..context import OperationContext
from ..errors import ConfigError
from .base import BlobStore
from .gitlab import GitLabConfig, GitLabRepository
from .local import LocalGitRepository

logger = logging.getLogger(__name__)

BACKENDS = ("local", "gitlab")


def make_blob_store(config: Dict[str, Any], ctx: Optional[OperationContext] = None) -> BlobStore:
    """
    Create the backend named by config["backend"].

    Args:
        config: Loaded configuration (see vcblobstore.config)
        ctx: Context for construction-time requests (GitLab namespace lookup)

    Raises:
        ConfigError: If the backend is unknown or its section is incomplete
    """
    backend = config.get("backend", "local")
    logger.debug(f"Creating {backend} backend")

    if backend == "local":
        local = config.get("local", {})
        location = local.get("location")
        if not location:
            raise ConfigError("No location configured for the local backend")
        return LocalGitRepository(
            Path(location).expanduser(),
            metadata_format=local.get("metadata_format", "structured"),
        )

    if backend == "gitlab":
        gitlab = GitLabConfig.from_dict(config.get("gitlab", {}))
        if not gitlab.namespace_path or not gitlab.project_path:
            raise ConfigError("GitLab backend needs gitlab.namespace_path and gitlab.project_path")
        return GitLabRepository(gitlab, ctx=ctx)

    raise ConfigError(f"Unknown backend {backend!r}, expected one of {BACKENDS}")
