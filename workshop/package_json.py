"""
Reading properties out of an app's ``package.json``.
"""

import json
from pathlib import Path
from typing import Any, Union

import aiofiles

_MISSING = object()


class PackageJsonError(RuntimeError):
    """package.json missing, malformed, or lacking a required property."""


async def read_package_json(directory: Union[str, Path]) -> dict:
    pkg_path = Path(directory) / "package.json"
    try:
        async with aiofiles.open(pkg_path, "r", encoding="utf-8") as f:
            data = json.loads(await f.read())
    except (OSError, json.JSONDecodeError) as e:
        raise PackageJsonError(f"Could not read/parse package.json of {directory}: {e}") from e
    if not isinstance(data, dict):
        raise PackageJsonError(f"package.json of {directory} is not an object")
    return data


def has_package_json(directory: Union[str, Path]) -> bool:
    return (Path(directory) / "package.json").is_file()


async def get_pkg_prop(directory: Union[str, Path], prop: str, default: Any = _MISSING) -> Any:
    """Look up a dotted property path, e.g. ``kcd-workshop.scripts.test``.

    Raises:
        PackageJsonError: if the file cannot be read, or the property is
            missing and no default was given.
    """
    value: Any = await read_package_json(directory)
    for key in prop.split("."):
        if not isinstance(value, dict) or key not in value:
            value = None
            break
        value = value[key]

    if value is None:
        if default is _MISSING:
            raise PackageJsonError(f"Could not find required property {prop} in package.json of {directory}")
        return default
    return value
