"""Building LXC images: metadata files and tarballs."""

from __future__ import annotations

import os
import stat
import tarfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

from imagebuilder.definition import (
    Definition,
    LXCConfig,
    TemplateError,
    get_expiry_date,
    render_template,
)

MAX_LXC_COMPAT_LEVEL = 5

# name -> (extension, tarfile mode, level keyword, (min level, max level))
_COMPRESSORS = {
    "": ("", "w", None, None),
    "none": ("", "w", None, None),
    "gzip": (".gz", "w:gz", "compresslevel", (1, 9)),
    "bzip2": (".bz2", "w:bz2", "compresslevel", (1, 9)),
    "xz": (".xz", "w:xz", "preset", (0, 9)),
}

_CONFIG_FILES = {
    "all": ("config", "config-user"),
    "system": ("config",),
    "user": ("config-user",),
}

StrPath = Union[str, os.PathLike]


def _parse_compression(value: str) -> tuple[str, Optional[int]]:
    name, sep, suffix = value.rpartition("-")
    level: Optional[int] = None
    if sep and suffix.isdigit():
        level = int(suffix)
    else:
        name = value
    if name not in _COMPRESSORS:
        raise ValueError(f"Unsupported compression: {value!r}")
    bounds = _COMPRESSORS[name][3]
    if level is not None and (bounds is None or not bounds[0] <= level <= bounds[1]):
        raise ValueError(f"Invalid compression level: {value!r}")
    return name, level


def _pack(target: Path, compression: str, source_dir: Path, names: Iterable[str]) -> Path:
    name, level = _parse_compression(compression)
    extension, mode, level_keyword, _ = _COMPRESSORS[name]
    options = {level_keyword: level} if level is not None and level_keyword else {}
    output = target.with_name(target.name + extension)
    try:
        with tarfile.open(output, mode, **options) as tar:
            for member in names:
                tar.add(source_dir / member, arcname=member)
    except BaseException:
        output.unlink(missing_ok=True)
        raise
    return output


def _config_applies(config: LXCConfig, definition: Definition) -> bool:
    image = definition.image
    architecture = image.architecture_mapped or image.architecture
    checks = (
        (config.releases, image.release),
        (config.architectures, architecture),
        (config.variants, image.variant),
    )
    if any(allowed and value not in allowed for allowed, value in checks):
        return False
    return not config.types or "container" in config.types


def _iter_devices(directory: Path) -> Iterator[str]:
    """Yield the paths of character and block devices below a directory."""
    with os.scandir(directory) as entries:
        for entry in entries:
            mode = entry.stat(follow_symlinks=False).st_mode
            if stat.S_ISCHR(mode) or stat.S_ISBLK(mode):
                yield entry.path
            elif stat.S_ISDIR(mode):
                yield from _iter_devices(Path(entry.path))


class LXCImage:
    """An LXC image assembled from a root filesystem and metadata."""

    def __init__(self, source_dir: StrPath, target_dir: StrPath, cache_dir: StrPath,
                 definition: Definition) -> None:
        self.source_dir = Path(source_dir)
        self.target_dir = Path(target_dir)
        self.cache_dir = Path(cache_dir)
        self.definition = definition
        self._metadata_dir.mkdir(parents=True, exist_ok=True)

    @property
    def _metadata_dir(self) -> Path:
        return self.cache_dir / "metadata"

    def add_template(self, path: str) -> None:
        """Append a path to the templates file."""
        with open(self._metadata_dir / "templates", "a", encoding="utf-8") as handle:
            handle.write(f"{path}\n")

    def build(self, compression: str) -> Path:
        """Write metadata, pack it and pack the root filesystem; return the rootfs tarball."""
        _parse_compression(compression)
        self.create_metadata()
        self.pack_metadata()
        return _pack(self.target_dir / "rootfs.tar", compression, self.source_dir, ["."])

    def create_metadata(self) -> None:
        """Write config, create-message, expiry and excludes-user metadata files."""
        metadata_dir = self._metadata_dir

        for config in self.definition.targets.lxc.config:
            if not _config_applies(config, self.definition):
                continue

            before = config.before or MAX_LXC_COMPAT_LEVEL + 1
            after = config.after
            for level in range(1, MAX_LXC_COMPAT_LEVEL + 1):
                if after < before:
                    if level <= after or level >= before:
                        continue
                elif after >= level >= before:
                    continue

                for name in _CONFIG_FILES.get(config.type, ()):
                    self.write_config(level, metadata_dir / name, config.content)

        self._write_named(metadata_dir / "create-message",
                          self.definition.targets.lxc.create_message)

        expiry = get_expiry_date(datetime.now(timezone.utc), self.definition.image.expiry)
        self._write_named(metadata_dir / "expiry", str(int(expiry.timestamp())))

        self._write_named(metadata_dir / "excludes-user", self._device_excludes())

    def _write_named(self, filename: Path, content: str) -> None:
        try:
            self.write_metadata(filename, content, False)
        except TemplateError as exc:
            raise TemplateError(f"Error writing '{filename.name}': {exc}") from exc

    def _device_excludes(self) -> str:
        dev_dir = self.source_dir / "dev"
        if not dev_dir.exists():
            return ""

        entries = sorted(
            "./" + os.path.relpath(device, self.source_dir)
            for device in _iter_devices(dev_dir)
        )
        return "".join(f"{entry}\n" for entry in entries)

    def pack_metadata(self) -> Path:
        """Pack the metadata files into meta.tar.xz in the target directory."""
        metadata_dir = self._metadata_dir
        files = ["create-message", "expiry", "excludes-user"]
        files.extend(sorted(path.name for path in metadata_dir.glob("config*")))
        if (metadata_dir / "templates").exists():
            files.append("templates")
        return _pack(self.target_dir / "meta.tar", "xz", metadata_dir, files)

    def write_metadata(self, filename: StrPath, content: str, append: bool) -> None:
        """Render content and write it to a file, ending it with a newline."""
        with open(filename, "a" if append else "w", encoding="utf-8") as handle:
            try:
                out = render_template(content, self.definition)
            except TemplateError as exc:
                raise TemplateError(f"Failed to render template: {exc}") from exc
            if not out.endswith("\n"):
                out += "\n"
            handle.write(out)

    def write_config(self, compat_level: int, filename: StrPath, content: str) -> None:
        """Append config content to the file for a compat level."""
        target = Path(filename)
        if compat_level != MAX_LXC_COMPAT_LEVEL:
            target = target.with_name(f"{target.name}.{compat_level}")
        try:
            self.write_metadata(target, content, True)
        except TemplateError as exc:
            raise TemplateError(f"Error writing '{target.name}': {exc}") from exc