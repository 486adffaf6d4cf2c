"""
Instruction compilation for README.mdx / FINISHED.mdx files.

The catalog only depends on the :class:`MdxCompiler` protocol. The default
:class:`MarkdownCompiler` reads YAML front matter for the title, falls back
to the first level-one heading, and collects ``<EpicVideo url="..." />``
embeds; the compiled code is the document body rendered to HTML.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol, Union

import aiofiles
import markdown
import yaml

from .shared.logger import get_logger

logger = get_logger(__name__)

FRONT_MATTER_PATTERN = re.compile(r"\A---\s*\n(?P<yaml>.*?)\n---\s*(\n|\Z)", re.DOTALL)
HEADING_PATTERN = re.compile(r"^#\s+(?P<title>.+?)\s*#*\s*$", re.MULTILINE)
EPIC_VIDEO_PATTERN = re.compile(r"<EpicVideo\s+[^>]*url=[\"'](?P<url>[^\"']+)[\"']")
MARKDOWN_EXTENSIONS = ["fenced_code", "tables"]


@dataclass
class CompiledMdx:
    code: str
    title: Optional[str] = None
    epic_video_embeds: List[str] = field(default_factory=list)


class MdxCompiler(Protocol):
    async def compile(self, file_path: Union[str, Path]) -> CompiledMdx:
        ...


class MarkdownCompiler:
    """Front-matter aware compiler used when no other compiler is injected."""

    async def compile(self, file_path: Union[str, Path]) -> CompiledMdx:
        async with aiofiles.open(file_path, "r", encoding="utf-8") as f:
            source = await f.read()

        front_matter = {}
        body = source
        match = FRONT_MATTER_PATTERN.match(source)
        if match:
            front_matter = yaml.safe_load(match.group("yaml")) or {}
            if not isinstance(front_matter, dict):
                raise ValueError(f"Front matter of {file_path} must be a mapping")
            body = source[match.end():]

        title = front_matter.get("title")
        if not title:
            heading = HEADING_PATTERN.search(body)
            title = heading.group("title") if heading else None

        return CompiledMdx(
            code=markdown.markdown(body, extensions=MARKDOWN_EXTENSIONS),
            title=str(title) if title else None,
            epic_video_embeds=EPIC_VIDEO_PATTERN.findall(body),
        )


async def compile_mdx_if_exists(compiler: MdxCompiler, file_path: Union[str, Path]) -> Optional[CompiledMdx]:
    """Compile ``file_path`` when it exists; compiler errors degrade to None."""
    if not Path(file_path).is_file():
        return None
    try:
        return await compiler.compile(file_path)
    except Exception as e:
        logger.warning("Error compiling %s: %s", file_path, e)
        return None
