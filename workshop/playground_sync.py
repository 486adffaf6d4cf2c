"""
Playground sync for the workshop app.

``set_playground`` mirrors a source app directory into ``<root>/playground``:
files are copied (skipping git-ignored files and build output, but always
including ``node_modules`` and ``.env``), unchanged files are left alone so
file watchers and dev servers see as little churn as possible, and files
that only exist in the playground are deleted. Optional hook scripts in the
source app's ``kcdshop/`` folder run before and after the copy, and a
running playground dev server is either notified or restarted.

Calls are serialized per workshop context.
"""

import asyncio
import filecmp
import json
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

import aiofiles
import pathspec

from .catalog import get_app_by_name
from .context import WorkshopContext
from .paths import name_from_path
from .shared.logger import get_logger

logger = get_logger(__name__)

PRE_HOOK = "pre-set-playground"
POST_HOOK = "post-set-playground"
PLAYGROUND_SET_MESSAGE = "playground-set"


class PlaygroundHookError(RuntimeError):
    """A pre/post set-playground hook script exited with an error."""


@dataclass
class PlaygroundSyncResult:
    app_name: str
    copied: int = 0
    skipped: int = 0
    deleted: int = 0
    was_running: bool = False
    is_still_running: bool = False
    restarted: bool = False
    notified: bool = False

    def to_dict(self) -> Dict[str, object]:
        return dict(self.__dict__)


# ============= Copy filter =============


def is_build_output(rel_parts: Tuple[str, ...]) -> bool:
    """``build/`` and ``public/build/`` at the app root."""
    return rel_parts[:1] == ("build",) or rel_parts[:2] == ("public", "build")


def should_copy(rel_path: str, ignored: Set[str]) -> bool:
    parts = Path(rel_path).parts
    if not parts:
        return True
    if is_build_output(parts):
        return False
    # node_modules and .env are copied even when git-ignored
    if "node_modules" in parts:
        return True
    if parts[-1].endswith(".env"):
        return True
    return rel_path not in ignored and f"{rel_path}/" not in ignored


def _walk_relative(root: Path, skip_node_modules: bool = False) -> Iterable[Tuple[str, bool]]:
    """Yield ``(relative posix path, is_directory)`` without following symlinks."""
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        real_dirs = []
        for dirname in sorted(dirnames):
            full = base / dirname
            rel = full.relative_to(root).as_posix()
            if full.is_symlink():
                yield rel, False
                continue
            if skip_node_modules and dirname == "node_modules":
                continue
            yield rel, True
            real_dirs.append(dirname)
        dirnames[:] = real_dirs
        for filename in sorted(filenames):
            yield (base / filename).relative_to(root).as_posix(), False


# ============= Git ignore =============


def _ignore_candidates(src_dir: Path) -> List[str]:
    return [
        f"{rel}/" if is_dir else rel
        for rel, is_dir in _walk_relative(src_dir, skip_node_modules=True)
    ]


def match_gitignore_files(src_dir: Path, candidates: List[str]) -> Set[str]:
    """Apply every ``.gitignore`` under ``src_dir`` to ``candidates``.

    Used when ``src_dir`` is not inside a git work tree (e.g. a workshop
    downloaded as an archive). Each file's patterns apply to the paths below
    its own directory.
    """
    specs = []
    for rel in candidates:
        if rel == ".gitignore" or rel.endswith("/.gitignore"):
            lines = (src_dir / rel).read_text(encoding="utf-8", errors="replace").splitlines()
            specs.append((rel[: -len(".gitignore")], pathspec.GitIgnoreSpec.from_lines(lines)))

    ignored = set()
    for candidate in candidates:
        for prefix, spec in specs:
            if candidate.startswith(prefix) and candidate != prefix and spec.match_file(candidate[len(prefix):]):
                ignored.add(candidate)
                break
    return ignored


async def list_git_ignored(src_dir: Path) -> Set[str]:
    """Relative paths under ``src_dir`` excluded by its .gitignore rules.

    Directories are reported with a trailing slash. Inside a git work tree
    git decides; otherwise the ``.gitignore`` files are matched directly.
    """
    loop = asyncio.get_running_loop()
    candidates = await loop.run_in_executor(None, _ignore_candidates, src_dir)
    if not candidates:
        return set()
    try:
        process = await asyncio.create_subprocess_exec(
            "git", "check-ignore", "--no-index", "-z", "--stdin",
            cwd=src_dir,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        logger.debug("git is not installed; matching .gitignore files in %s", src_dir)
        return await loop.run_in_executor(None, match_gitignore_files, src_dir, candidates)
    stdout, stderr = await process.communicate("\0".join(candidates).encode("utf-8"))
    # 0: some paths ignored, 1: none ignored, anything else: not a git work tree
    if process.returncode not in (0, 1):
        logger.debug("git check-ignore failed in %s: %s", src_dir, stderr.decode(errors="replace").strip())
        return await loop.run_in_executor(None, match_gitignore_files, src_dir, candidates)
    return {path for path in stdout.decode("utf-8").split("\0") if path}


# ============= Mirror =============


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def _same_file(src: Path, dest: Path) -> bool:
    if src.is_symlink() or dest.is_symlink():
        return src.is_symlink() and dest.is_symlink() and os.readlink(src) == os.readlink(dest)
    return dest.is_file() and filecmp.cmp(src, dest, shallow=False)


def copy_tree(src_dir: Path, dest_dir: Path, ignored: Set[str]) -> Tuple[int, int]:
    """Copy ``src_dir`` over ``dest_dir``; returns ``(copied, skipped)``."""
    copied = skipped = 0
    dest_dir.mkdir(parents=True, exist_ok=True)
    for dirpath, dirnames, filenames in os.walk(src_dir):
        base = Path(dirpath)
        rel_base = base.relative_to(src_dir)

        entries: List[str] = []
        kept_dirs = []
        for dirname in sorted(dirnames):
            rel = (rel_base / dirname).as_posix()
            if not should_copy(rel, ignored):
                continue
            if (base / dirname).is_symlink():
                entries.append(dirname)
                continue
            target = dest_dir / rel
            if target.is_symlink() or (target.exists() and not target.is_dir()):
                _remove(target)
            target.mkdir(parents=True, exist_ok=True)
            kept_dirs.append(dirname)
        dirnames[:] = kept_dirs
        entries.extend(sorted(filenames))

        for name in entries:
            rel = (rel_base / name).as_posix()
            if not should_copy(rel, ignored):
                continue
            src = base / name
            dest = dest_dir / rel
            if dest.is_dir() and not dest.is_symlink():
                shutil.rmtree(dest)
            elif _same_file(src, dest):
                skipped += 1
                continue
            elif dest.exists() or dest.is_symlink():
                dest.unlink()
            dest.parent.mkdir(parents=True, exist_ok=True)
            if src.is_symlink():
                os.symlink(os.readlink(src), dest)
            else:
                shutil.copy2(src, dest)
            copied += 1
    return copied, skipped


def _listing(directory: Path) -> Set[str]:
    return {
        rel for rel, _ in _walk_relative(directory)
        if "build" not in Path(rel).parts
    }


def prune_tree(src_dir: Path, dest_dir: Path) -> int:
    """Delete everything in ``dest_dir`` that does not exist in ``src_dir``
    (build output excluded); returns the number of removed entries."""
    # children come before their parents
    orphans = sorted(_listing(dest_dir) - _listing(src_dir), reverse=True)
    deleted = 0
    for rel in orphans:
        target = dest_dir / rel
        if target.is_symlink() or target.is_file():
            target.unlink()
        elif target.is_dir():
            # still holds build output
            if any(target.iterdir()):
                continue
            target.rmdir()
        else:
            continue
        deleted += 1
    return deleted


def mirror_directory(src_dir: Path, dest_dir: Path, ignored: Set[str]) -> Tuple[int, int, int]:
    copied, skipped = copy_tree(src_dir, dest_dir, ignored)
    deleted = prune_tree(src_dir, dest_dir)
    return copied, skipped, deleted


# ============= Hooks =============


def find_hook(ctx: WorkshopContext, src_dir: Path, stem: str) -> Optional[Tuple[str, Path]]:
    for extension, runner in ctx.config.hook_runners.items():
        hook_path = src_dir / "kcdshop" / f"{stem}{extension}"
        if hook_path.is_file():
            return runner, hook_path
    return None


async def run_hook(ctx: WorkshopContext, src_dir: Path, stem: str, env: Dict[str, str]) -> bool:
    """Run a hook script if the source app has one. Non-zero exit raises."""
    hook = find_hook(ctx, src_dir, stem)
    if hook is None:
        return False
    runner, hook_path = hook
    logger.info("Running %s", hook_path)
    process = await asyncio.create_subprocess_exec(
        runner, str(hook_path),
        cwd=ctx.root,
        env={**os.environ, **env},
    )
    returncode = await process.wait()
    if returncode != 0:
        logger.error("%s exited with code %d", hook_path, returncode)
        raise PlaygroundHookError(f"{hook_path} exited with code {returncode}")
    return True


# ============= Playground identity =============


async def write_playground_app_name(ctx: WorkshopContext, app_name: str) -> None:
    info_path = ctx.config.playground_info_path
    info_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiofiles.open(info_path, "w", encoding="utf-8") as f:
        await f.write(json.dumps({"appName": app_name}))


# ============= Sync =============


async def set_playground(
    ctx: WorkshopContext,
    src_dir: Union[str, Path],
    reset: bool = False,
) -> PlaygroundSyncResult:
    """Make the playground a mirror of ``src_dir``."""
    src_dir = Path(src_dir).resolve()
    if not src_dir.is_dir():
        raise FileNotFoundError(f"Source app directory does not exist: {src_dir}")
    if src_dir == ctx.config.playground_dir:
        raise ValueError("Cannot set the playground from itself")

    async with ctx.playground_lock:
        return await _set_playground(ctx, src_dir, reset)


async def _set_playground(ctx: WorkshopContext, src_dir: Path, reset: bool) -> PlaygroundSyncResult:
    dest_dir = ctx.config.playground_dir
    process_manager = ctx.process_manager
    loop = asyncio.get_running_loop()
    app_name = name_from_path(ctx.root, src_dir)
    result = PlaygroundSyncResult(app_name=app_name)

    if ctx.watcher is not None:
        ctx.watcher.unwatch(dest_dir)
    try:
        playground_app = await get_app_by_name(ctx, "playground")
        result.was_running = process_manager.is_running(playground_app) if playground_app else False

        if reset:
            if playground_app:
                await process_manager.stop(playground_app.name)
            await loop.run_in_executor(None, _remove, dest_dir)

        env = {
            "KCDSHOP_PLAYGROUND_TIMESTAMP": str(int(ctx.clock() * 1000)),
            "KCDSHOP_PLAYGROUND_SRC_DIR": str(src_dir),
            "KCDSHOP_PLAYGROUND_DEST_DIR": str(dest_dir),
            "KCDSHOP_PLAYGROUND_WAS_RUNNING": str(result.was_running).lower(),
        }
        await run_hook(ctx, src_dir, PRE_HOOK, env)

        # copying over an existing node_modules is unreliable
        await loop.run_in_executor(None, _remove, dest_dir / "node_modules")

        ignored = await list_git_ignored(src_dir)
        result.copied, result.skipped, result.deleted = await loop.run_in_executor(
            None, mirror_directory, src_dir, dest_dir, ignored
        )
        logger.info(
            "Playground set to %s (%d copied, %d unchanged, %d deleted)",
            app_name, result.copied, result.skipped, result.deleted,
        )

        await write_playground_app_name(ctx, app_name)
        ctx.tracker.record_touched(dest_dir)

        result.is_still_running = process_manager.is_running(playground_app) if playground_app else False
        restart = result.was_running and not result.is_still_running

        await run_hook(ctx, src_dir, POST_HOOK, {
            **env,
            "KCDSHOP_PLAYGROUND_IS_STILL_RUNNING": str(result.is_still_running).lower(),
            "KCDSHOP_PLAYGROUND_RESTART_PLAYGROUND": str(restart).lower(),
        })

        if playground_app:
            if result.was_running and result.is_still_running:
                await process_manager.send_message(playground_app, PLAYGROUND_SET_MESSAGE)
                result.notified = True
            elif restart:
                fresh_app = await get_app_by_name(ctx, "playground") or playground_app
                start = await process_manager.start(fresh_app)
                if start.running:
                    await process_manager.wait_until_healthy(fresh_app)
                result.restarted = start.running
    finally:
        if ctx.watcher is not None:
            ctx.watcher.add(dest_dir)
        ctx.tracker.record_touched(dest_dir)

    return result
