"""
Git client infrastructure for vcblobstore.

Provides a clean abstraction over git command execution.
All git operations of the local backend go through this client, making them:
- Easy to mock for testing
- Consistent in error handling
- Isolated from the blob bookkeeping
"""

import os
import subprocess
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import GitCommandError

logger = logging.getLogger(__name__)

# Substituted for the commit verb to exercise the rollback path.
COMMIT_FAILURE_TEST_COMMAND = "procyon lotor"


class GitClient:
    """
    Abstraction over git commands run in one working directory.

    Every call passes an explicit argument vector; nothing goes through a shell.

    Example:
        client = GitClient("/srv/blobs")
        client.add_all()
        client.commit("blob deleted", "ux")
    """

    def __init__(self, location: Path, timeout: Optional[float] = None, executable: str = "git"):
        """
        Initialize GitClient.

        Args:
            location: Working directory of the repository
            timeout: Command timeout in seconds (None = wait indefinitely)
            executable: Git executable name or path
        """
        self.location = Path(location)
        self.timeout = timeout
        self.executable = executable

    def _run(
        self,
        args: Sequence[str],
        check: bool = True,
        env: Optional[Dict[str, str]] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run git with the given arguments.

        Args:
            args: Arguments after the executable name
            check: Raise on non-zero exit
            env: Extra environment variables

        Returns:
            CompletedProcess with text stdout/stderr

        Raises:
            GitCommandError: If check is set and git fails, or git cannot be started
        """
        cmd = [self.executable, *args]
        logger.debug(f"Running {cmd} in {self.location}")

        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        try:
            result = subprocess.run(
                cmd,
                cwd=self.location,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
                env=run_env,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Git command timed out: {cmd}")
            raise GitCommandError(args, -1, f"timed out after {self.timeout}s")
        except OSError as e:
            raise GitCommandError(args, -1, str(e)) from e

        if check and result.returncode != 0:
            # git reports most failures on stderr, some (commit) on stdout
            output = result.stderr or result.stdout
            raise GitCommandError(args, result.returncode, output)

        return result

    def run(self, args: Sequence[str], env: Optional[Dict[str, str]] = None) -> str:
        """Run git and return its stdout."""
        return self._run(args, env=env).stdout

    def init(self) -> str:
        return self.run(["init"])

    def add_all(self) -> None:
        self.run(["add", "-A"])

    def commit(self, message: str, user_name: str, verb: str = "commit") -> None:
        """
        Commit the index as `user_name`.

        The author and the committer are both set to the modifying user,
        which keeps commits independent of the host's git configuration.
        """
        identity = {
            "GIT_COMMITTER_NAME": user_name,
            "GIT_COMMITTER_EMAIL": user_name,
        }
        self.run(
            [verb, "-m", f"{message} by {user_name}", f"--author={user_name} <{user_name}>"],
            env=identity,
        )

    def reset_hard(self) -> None:
        self.run(["reset", "--hard", "HEAD"])

    def clean(self) -> None:
        self.run(["clean", "-qfdx"])

    def clear_index(self) -> None:
        """Empty the index; the reset equivalent before the first commit."""
        self.run(["read-tree", "--empty"])

    def rev_parse_head(self) -> str:
        return self.run(["rev-parse", "HEAD"]).strip()

    def has_commits(self) -> bool:
        """Check if HEAD points at a commit."""
        result = self._run(["rev-parse", "--verify", "--quiet", "HEAD"], check=False)
        return result.returncode == 0

    def ls_tree_names(self) -> List[str]:
        """Paths of all files in the HEAD tree."""
        output = self.run(["ls-tree", "-r", "-z", "HEAD", "--name-only"])
        return [name for name in output.split("\0") if name]

    def last_commit_for(self, path: str) -> str:
        """Id of the most recent commit touching path, or empty string."""
        return self.run(["log", "-n", "1", "--pretty=format:%H", "--", path]).strip()

    def show_head(self, pretty_format: str, date_format: Optional[str] = None) -> str:
        """Show metadata of the HEAD commit without its diff."""
        args = ["show", "--quiet", f"--format={pretty_format}"]
        if date_format:
            args.append(f"--date=format:{date_format}")
        return self.run(args)

    def status_porcelain(self) -> str:
        return self.run(["status", "--porcelain"])

    def toplevel(self) -> Optional[Path]:
        """Top directory of the work tree containing the location, or None outside any."""
        result = self._run(["rev-parse", "--show-toplevel"], check=False)
        if result.returncode != 0:
            return None
        return Path(result.stdout.strip())

    def probe_init(self) -> subprocess.CompletedProcess:
        """Run `git init` without raising, for repository detection."""
        return self._run(["init"], check=False)
