"""
Commit metadata domain object for vcblobstore.

Both backends report provenance as a CommitMetadata. The local backend
reads it from git's own output, the remote backend from the commit
record returned by the REST API; the parsers below normalize either
source into the same shape.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Any, List

from ..errors import MetadataParseError

# Separates fields in the structured `git show` query.
FIELD_SEPARATOR = "\x1f"

# %an <%ae> | %aI | %cn <%ce> | %cI | %B
STRUCTURED_FORMAT = FIELD_SEPARATOR.join([
    "%an <%ae>",
    "%aI",
    "%cn <%ce>",
    "%cI",
    "%B",
])

_AUTHOR_RE = re.compile(r'^Author:\s+(.+)$')
_COMMIT_RE = re.compile(r'^Commit:\s+(.+)$')
# The trailing offset is exactly four digits, `+0200` rather than `+02:00`.
_AUTHOR_DATE_RE = re.compile(r'^AuthorDate:\s+(.+)([0-9]{2})([0-9]{2})$')
_COMMIT_DATE_RE = re.compile(r'^CommitDate:\s+(.+)([0-9]{2})([0-9]{2})$')


@dataclass(frozen=True)
class CommitMetadata:
    """Provenance of one version of the store."""
    author: str
    author_date: datetime
    commit: str
    commit_date: datetime
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'author': self.author,
            'author_date': self.author_date.isoformat(),
            'commit': self.commit,
            'commit_date': self.commit_date.isoformat(),
            'message': self.message,
        }

    @classmethod
    def from_api_response(cls, data: Dict[str, Any]) -> 'CommitMetadata':
        """
        Create from a GitLab commit record.

        Args:
            data: Response of GET /projects/:id/repository/commits/:sha

        Raises:
            MetadataParseError: If a date is missing or not ISO 8601
        """
        return cls(
            author=f"{data.get('author_name', '')} <{data.get('author_email', '')}>",
            author_date=_parse_iso(data.get('authored_date')),
            commit=f"{data.get('committer_name', '')} <{data.get('committer_email', '')}>",
            commit_date=_parse_iso(data.get('committed_date')),
            message=(data.get('message') or '').strip(),
        )


def _parse_iso(value: Any) -> datetime:
    if not isinstance(value, str):
        raise MetadataParseError(f"Missing commit date: {value!r}")
    try:
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError as e:
        raise MetadataParseError(f"Failed to parse time {value!r} as ISO 8601") from e


def _parse_fuller_date(match: 're.Match[str]') -> datetime:
    # Reinsert the colon the `%z` offset lacks: 2022-10-09T13:42:12+0200
    rebuilt = f"{match.group(1)}{match.group(2)}:{match.group(3)}"
    return _parse_iso(rebuilt)


def parse_local_commit_metadata(output: str) -> CommitMetadata:
    """
    Parse `git show --quiet --format=fuller --date=format:%Y-%m-%dT%H:%M:%S%z`.

    This is the textual fallback parser. It recognizes four fixed-prefix
    header fields and the four-space indented message body. Dates must end
    in exactly four offset digits, which are split into hours and minutes.

    Args:
        output: Raw command output

    Returns:
        CommitMetadata

    Raises:
        MetadataParseError: If a date field cannot be parsed
    """
    author = ""
    commit = ""
    author_date = None
    commit_date = None
    message_lines: List[str] = []

    for line in output.split('\n'):
        match = _AUTHOR_RE.match(line)
        if match:
            author = match.group(1)
            continue

        match = _COMMIT_RE.match(line)
        if match:
            commit = match.group(1)
            continue

        match = _AUTHOR_DATE_RE.match(line)
        if match:
            author_date = _parse_fuller_date(match)
            continue

        match = _COMMIT_DATE_RE.match(line)
        if match:
            commit_date = _parse_fuller_date(match)
            continue

        if line.startswith("    "):
            message_lines.append(line.strip(" \t"))

    if author_date is None or commit_date is None:
        raise MetadataParseError("Commit output has no AuthorDate/CommitDate fields")

    return CommitMetadata(
        author=author,
        author_date=author_date,
        commit=commit,
        commit_date=commit_date,
        message="\n".join(message_lines),
    )


def parse_structured_commit_metadata(output: str) -> CommitMetadata:
    """
    Parse the output of `git show --quiet --format=STRUCTURED_FORMAT`.

    Raises:
        MetadataParseError: If the field count or a date is wrong
    """
    fields = output.split(FIELD_SEPARATOR, 4)
    if len(fields) != 5:
        raise MetadataParseError(
            f"Expected 5 commit metadata fields, got {len(fields)}"
        )
    author, author_date, commit, commit_date, message = fields
    return CommitMetadata(
        author=author.strip(),
        author_date=_parse_iso(author_date.strip()),
        commit=commit.strip(),
        commit_date=_parse_iso(commit_date.strip()),
        message=message.strip(),
    )
