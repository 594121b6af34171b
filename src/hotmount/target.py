"""Resolution of the user-supplied mount target."""

import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Tried in order when the target is a directory without an __init__.py
ENTRY_CANDIDATES = ("app.py", "main.py")


class TargetNotFoundError(Exception):
    """Raised when the requested target path does not exist."""

    def __init__(self, path: str | Path):
        self.path = path
        super().__init__(f'Cannot find "{path}"')


@dataclass(frozen=True)
class TargetSpec:
    """The mount target, derived once from user input."""

    requested_path: str
    resolved_path: Path
    containing_directory: Path

    @property
    def is_directory(self) -> bool:
        return self.resolved_path.is_dir()

    @property
    def is_package(self) -> bool:
        return self.is_directory and (self.resolved_path / "__init__.py").is_file()

    @property
    def import_root(self) -> Path:
        """Directory that must be on sys.path for the target's own imports."""
        if self.is_package:
            return self.resolved_path.parent
        return self.containing_directory

    @property
    def module_name(self) -> str:
        if self.is_directory:
            return self.resolved_path.name
        return self.resolved_path.stem

    def entry_candidates(self) -> list[Path]:
        """Every path that could serve as the entry file, in lookup order.

        A directory target lists these even when none exists, so that a
        deleted entry can be watched for until it comes back.
        """
        if not self.is_directory:
            return [self.resolved_path]
        names = ("__init__.py",) + ENTRY_CANDIDATES
        return [self.resolved_path / name for name in names]

    def entry_file(self) -> Path:
        """Locate the file to execute for this target.

        Raises:
            FileNotFoundError: If a directory target has no entry module.
        """
        if not self.is_directory:
            return self.resolved_path

        for path in self.entry_candidates():
            if path.is_file():
                return path

        raise FileNotFoundError(
            f"No entry module in {self.resolved_path} "
            f"(expected __init__.py or one of {', '.join(ENTRY_CANDIDATES)})"
        )


def resolve_target(requested: str | Path, cwd: Path | None = None) -> TargetSpec:
    """Build a TargetSpec from a path given on the command line.

    Raises:
        TargetNotFoundError: If the path does not exist.
    """
    base = cwd or Path.cwd()
    path = Path(requested)
    if not path.is_absolute():
        path = base / path

    if not path.exists():
        raise TargetNotFoundError(requested)

    resolved = path.resolve()
    containing = resolved if resolved.is_dir() else resolved.parent
    logger.debug(f"Resolved target {requested} -> {resolved}")

    return TargetSpec(
        requested_path=str(requested),
        resolved_path=resolved,
        containing_directory=containing,
    )
