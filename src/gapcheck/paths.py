"""On-disk layout for client profiles and assessment sessions.

Layout:
    <root>/
    └── clients/
        └── <clientId>/
            ├── profile.json
            ├── assessments/
            │   └── <frameworkId>_<sessionId>.json
            └── reports/                       # written by exporters
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from pathlib import Path

from gapcheck.errors import ValidationError

# No path separators, no leading dot, no ".." anywhere.
_SAFE_ID = re.compile(r"^(?!.*\.\.)[A-Za-z0-9][A-Za-z0-9._-]*$")


def check_id(value: str, label: str = "id") -> str:
    """Reject ids that would escape their directory."""
    if not isinstance(value, str) or not _SAFE_ID.fullmatch(value):
        raise ValidationError(f"Invalid {label}: {value!r}")
    return value


class PathResolver:
    """Maps entity ids to paths under a data root."""

    PROFILE = "profile.json"
    ASSESSMENTS = "assessments"
    REPORTS = "reports"

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @property
    def clients_dir(self) -> Path:
        return self.root / "clients"

    def client_dir(self, client_id: str) -> Path:
        return self.clients_dir / check_id(client_id, "client id")

    def profile_path(self, client_id: str) -> Path:
        return self.client_dir(client_id) / self.PROFILE

    def assessments_dir(self, client_id: str) -> Path:
        return self.client_dir(client_id) / self.ASSESSMENTS

    def reports_dir(self, client_id: str) -> Path:
        return self.client_dir(client_id) / self.REPORTS

    def session_path(self, client_id: str, framework_id: str, session_id: str) -> Path:
        check_id(framework_id, "framework id")
        check_id(session_id, "session id")
        return self.assessments_dir(client_id) / f"{framework_id}_{session_id}.json"

    # ── Enumeration ───────────────────────────────────────────

    def client_ids(self) -> list[str]:
        """All client directory names, sorted."""
        if not self.clients_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.clients_dir.iterdir() if p.is_dir() and _SAFE_ID.fullmatch(p.name)
        )

    def session_files(self, client_id: str) -> list[Path]:
        """All session records for a client, sorted by file name."""
        directory = self.assessments_dir(client_id)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.glob("*.json") if p.is_file())

    def session_candidates(self, session_id: str) -> Iterator[Path]:
        """Scan every client's assessments for ``*_<sessionId>.json``.

        Framework ids may contain underscores, so a match is only a candidate;
        the caller confirms the id stored in the record.
        """
        check_id(session_id, "session id")
        suffix = f"_{session_id}.json"
        for client_id in self.client_ids():
            for path in self.session_files(client_id):
                if path.name.endswith(suffix):
                    yield path
