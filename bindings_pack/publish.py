"""Copy, rename and clean up files in the distribution layout."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Mapping, Optional, Sequence, Union

from .errors import BuildError, FileSystemFailure
from .utils import resolve_path

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class ArtifactPublisher:
    """Filesystem operations used to lay out target outputs.

    Relative paths are resolved against ``root``. Batched operations run
    concurrently and fail as a whole when any entry fails.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()

    async def copy(self, mapping: Mapping[PathLike, PathLike], *, ignore: Sequence[str] = ()) -> List[Path]:
        """Copy every source to its destination, recursively and overwriting.

        Names matching an ``ignore`` glob are skipped inside copied directories.
        """

        pairs = [(resolve_path(source, self.root), resolve_path(target, self.root)) for source, target in mapping.items()]
        await asyncio.gather(*(asyncio.to_thread(_copy_entry, source, target, ignore) for source, target in pairs))
        return [target for _, target in pairs]

    async def copy_from_to(self, paths: Iterable[PathLike], source_prefix: str, target_prefix: str) -> List[Path]:
        """Copy each path to the location obtained by swapping ``source_prefix`` for ``target_prefix``."""

        mapping = {}
        for path in paths:
            text = Path(path).as_posix()
            if source_prefix not in text:
                raise BuildError(f"Path {text} does not contain '{source_prefix}'")
            mapping[text] = text.replace(source_prefix, target_prefix, 1)
        return await self.copy(mapping)

    async def move_and_rename(self, pattern: str, suffix: str, *, base: Optional[PathLike] = None) -> List[Path]:
        """Strip ``suffix`` from the names of all files matching ``pattern``.

        ``pattern`` is globbed under ``base`` (the publisher root by default);
        existing files at the renamed location are overwritten.
        """

        search_root = resolve_path(base, self.root) if base is not None else self.root
        moves = []
        for path in sorted(search_root.glob(pattern)):
            if not path.is_file():
                continue
            index = path.name.rfind(suffix)
            if index < 0:
                continue
            renamed = path.with_name(path.name[:index] + path.name[index + len(suffix) :])
            moves.append((path, renamed))
        await asyncio.gather(*(asyncio.to_thread(_replace, source, target) for source, target in moves))
        return [target for _, target in moves]

    async def delete_temporary(self, path: PathLike) -> None:
        target = resolve_path(path, self.root)
        try:
            await asyncio.to_thread(target.unlink)
        except OSError as exc:
            raise FileSystemFailure("delete", target, exc) from exc
        logger.debug("Deleted temporary %s", target)

    @contextmanager
    def scoped_temporary(self, path: PathLike) -> Iterator[Path]:
        """Yield ``path`` and remove it on exit, whether or not the block failed."""

        target = resolve_path(path, self.root)
        try:
            yield target
        finally:
            if target.exists():
                target.unlink()
                logger.debug("Cleaned up temporary %s", target)


def _copy_entry(source: Path, target: Path, ignore: Sequence[str] = ()) -> None:
    try:
        if source.is_dir():
            shutil.copytree(
                source,
                target,
                symlinks=False,
                dirs_exist_ok=True,
                ignore=shutil.ignore_patterns(*ignore) if ignore else None,
            )
        else:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
    except OSError as exc:
        raise FileSystemFailure("copy", source, exc) from exc
    logger.debug("Copied %s -> %s", source, target)


def _replace(source: Path, target: Path) -> None:
    try:
        os.replace(source, target)
    except OSError as exc:
        raise FileSystemFailure("move", source, exc) from exc
    logger.debug("Moved %s -> %s", source, target)
