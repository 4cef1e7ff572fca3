"""The copy generator."""

from __future__ import annotations

import fnmatch
import os
import shutil
import stat
from pathlib import Path
from typing import Iterator, Optional

from imagebuilder.definition import (
    DefinitionTargetLXC,
    DefinitionTargetLXD,
    update_file_access,
)
from imagebuilder.generators.base import Generator
from imagebuilder.lxc import LXCImage
from imagebuilder.lxd import LXDImage


def _join(directory: str, name: str) -> str:
    return name if directory in ("", ".") else os.path.join(directory, name)


def _walk(root: str) -> Iterator[str]:
    """Yield ``root`` and everything below it in lexical order, not following links."""
    yield root
    if not stat.S_ISDIR(os.lstat(root).st_mode):
        return
    for name in sorted(os.listdir(root)):
        yield from _walk(os.path.join(root, name))


class CopyGenerator(Generator):
    """Copies files or directories from the host into the root filesystem.

    The source may be a file, a directory or a wildcard pattern. When several
    files match, they are all copied into the destination directory.
    """

    def run_lxc(self, img: Optional[LXCImage], target: DefinitionTargetLXC) -> None:
        """Copy the files."""
        self.run()

    def run_lxd(self, img: Optional[LXDImage], target: DefinitionTargetLXD) -> None:
        """Copy the files."""
        self.run()

    def run(self) -> None:
        """Copy the source named by the file entry into the root filesystem."""
        src_path = self.def_file.source
        dest_path = self._in_rootfs(self.def_file.path or self.def_file.source)

        directory = os.path.dirname(src_path)
        pattern = os.path.basename(src_path)
        matches = [
            _join(directory, name)
            for name in sorted(os.listdir(directory or "."))
            if fnmatch.fnmatchcase(name, pattern)
        ]

        into_dir = self.def_file.path.endswith("/")
        if not matches:
            os.stat(src_path)
            self._do_copy(src_path, dest_path, into_dir)
        elif len(matches) == 1:
            self._do_copy(matches[0], dest_path, into_dir)
        else:
            for match in matches:
                self._do_copy(match, dest_path, True)

    def _do_copy(self, src: str, dest: Path, into_dir: bool) -> None:
        mode = os.stat(src).st_mode
        if stat.S_ISREG(mode):
            if into_dir:
                dest = dest / os.path.basename(src)
            self._copy_file(src, dest)
        elif stat.S_ISDIR(mode):
            self._copy_dir(src, dest)
        else:
            raise ValueError(f"File type of {src!r} not supported")

    def _copy_dir(self, src_root: str, dest_root: Path) -> None:
        for src in _walk(src_root):
            dest = Path(os.path.normpath(dest_root / os.path.relpath(src, src_root)))
            mode = os.lstat(src).st_mode
            if stat.S_ISREG(mode) or stat.S_ISLNK(mode):
                self._copy_file(src, dest)
            elif stat.S_ISDIR(mode):
                dest.mkdir(parents=True, exist_ok=True)
            else:
                self.logger.warning("File type of %r not supported, skipping", src)

    def _copy_file(self, src: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)

        if stat.S_ISLNK(os.lstat(src).st_mode):
            link_target = os.readlink(src)
            if os.path.lexists(dest):
                os.remove(dest)
            os.symlink(link_target, dest)
            return

        with open(src, "rb") as source, open(dest, "wb") as out:
            shutil.copyfileobj(source, out)
            out.flush()
            update_file_access(out.fileno(), self.def_file)