"""
App identity and directory classification.

App names are derived from the directory's path relative to the workshop
root, with path separators replaced by ``__sep__`` so that a name can be
used as a single URL segment or cache key. Nothing in this module touches
the filesystem.
"""

import re
from pathlib import Path
from typing import NamedTuple, Optional, Union

from .shared.logger import get_logger

logger = get_logger(__name__)

NAME_SEPARATOR = "__sep__"

STEP_DIR_PATTERN = re.compile(r"^(?P<step_number>\d+)\.(?P<kind>problem|solution)(\.(?P<subtitle>.*))?$")
EXERCISE_DIR_PATTERN = re.compile(r"^(?P<number>\d+)\.")

PathLike = Union[str, Path]


class AppNameError(ValueError):
    """A path or app name that cannot be mapped onto the workshop tree."""


class StepDirInfo(NamedTuple):
    step_number: int
    kind: str
    subtitle: Optional[str]


def name_from_path(root: PathLike, full_path: PathLike) -> str:
    """Return the app name for a directory under ``root``.

    Raises:
        AppNameError: if the path is outside the root or one of its
            segments already contains the separator token.
    """
    root = Path(root)
    full_path = Path(full_path)
    try:
        relative = full_path.relative_to(root)
    except ValueError:
        raise AppNameError(f"{full_path} is not inside the workshop root {root}") from None

    parts = relative.parts
    if not parts:
        raise AppNameError("The workshop root itself is not an app")
    for part in parts:
        if NAME_SEPARATOR in part:
            raise AppNameError(
                f"Directory segment {part!r} of {full_path} contains the reserved token {NAME_SEPARATOR!r}"
            )
    return NAME_SEPARATOR.join(parts)


def path_from_name(root: PathLike, name: str) -> Path:
    """Inverse of :func:`name_from_path`."""
    parts = name.split(NAME_SEPARATOR)
    if any(part in ("", ".", "..") or "/" in part or "\\" in part for part in parts):
        raise AppNameError(f"Invalid app name: {name!r}")
    return Path(root).joinpath(*parts)


def relative_path(root: PathLike, full_path: PathLike) -> str:
    return Path(full_path).relative_to(root).as_posix()


def parse_step_dir(dir_name: str) -> Optional[StepDirInfo]:
    match = STEP_DIR_PATTERN.match(dir_name)
    if not match:
        return None
    step_number = int(match.group("step_number"))
    if step_number < 1:
        return None
    return StepDirInfo(step_number, match.group("kind"), match.group("subtitle"))


def classify_step_dir(dir_name: str) -> Optional[StepDirInfo]:
    """Parse ``<digits>.(problem|solution)(.<subtitle>)?``.

    Directories that do not match (or whose step number is 0) are logged
    and yield ``None``.
    """
    info = parse_step_dir(dir_name)
    if info is None:
        logger.info('Ignoring directory "%s" which does not match %s', dir_name, STEP_DIR_PATTERN.pattern)
    return info


def exercise_number_from_dir(dir_name: str) -> Optional[int]:
    """Return the leading number of an exercise directory, if any."""
    match = EXERCISE_DIR_PATTERN.match(dir_name)
    if not match:
        return None
    number = int(match.group("number"))
    return number or None


def get_relative_path(root: PathLike, file_path: PathLike) -> str:
    """Display path of a file: playground files keep their ``playground/``
    prefix, exercise files are shown relative to ``exercises/``."""
    root = Path(root)
    file_path = Path(file_path)
    for base, prefix in ((root / "playground", ("playground",)), (root / "exercises", ())):
        try:
            rest = file_path.relative_to(base)
        except ValueError:
            continue
        return Path(*prefix, *rest.parts).as_posix()
    return file_path.as_posix()
