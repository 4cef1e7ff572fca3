"""The dump, fstab, remove and template generators."""

from __future__ import annotations

import dataclasses
import shutil
from typing import Optional

from imagebuilder.definition import (
    DefinitionTargetLXC,
    DefinitionTargetLXD,
    TemplateError,
    render_template,
    update_file_access,
)
from imagebuilder.generators.base import Generator, NotSupportedError
from imagebuilder.lxc import LXCImage
from imagebuilder.lxd import LXDImage

_FSTAB = (
    "LABEL=rootfs  /         {fs}  {options}  0 0\n"
    "LABEL=UEFI    /boot/efi vfat  defaults  0 0\n"
)


class DumpGenerator(Generator):
    """Writes the entry's content to a file in the root filesystem."""

    def run_lxc(self, img: Optional[LXCImage], target: DefinitionTargetLXC) -> None:
        """Write the file and register it as an LXC template if requested."""
        self.run()
        if self.def_file.templated:
            img.add_template(self.def_file.path)

    def run_lxd(self, img: Optional[LXDImage], target: DefinitionTargetLXD) -> None:
        """Write the file."""
        self.run()

    def run(self) -> None:
        """Write the file, ending it with a newline, and apply its access settings."""
        path = self._in_rootfs(self.def_file.path)
        path.parent.mkdir(parents=True, exist_ok=True)

        content = self.def_file.content
        if not content.endswith("\n"):
            content += "\n"
        path.write_text(content, encoding="utf-8")

        update_file_access(path, self.def_file)


class FstabGenerator(Generator):
    """Writes /etc/fstab for virtual machine images."""

    def run_lxc(self, img: Optional[LXCImage], target: DefinitionTargetLXC) -> None:
        """Refuse: LXC images have no fstab."""
        raise NotSupportedError("fstab generator not supported for LXC")

    def run_lxd(self, img: Optional[LXDImage], target: DefinitionTargetLXD) -> None:
        """Write /etc/fstab for the root and UEFI partitions."""
        fs = target.vm.filesystem or "ext4"
        options = "defaults,subvol=@" if fs == "btrfs" else "defaults"
        path = self.source_dir / "etc" / "fstab"
        path.write_text(_FSTAB.format(fs=fs, options=options), encoding="utf-8")

    def run(self) -> None:
        """Do nothing for a plain root filesystem."""


class RemoveGenerator(Generator):
    """Removes a path from the root filesystem."""

    def run_lxc(self, img: Optional[LXCImage], target: DefinitionTargetLXC) -> None:
        """Remove the path."""
        self.run()

    def run_lxd(self, img: Optional[LXDImage], target: DefinitionTargetLXD) -> None:
        """Remove the path."""
        self.run()

    def run(self) -> None:
        """Remove the path, whatever it is; a missing path is not an error."""
        path = self._in_rootfs(self.def_file.path)
        if path.is_symlink() or path.is_file():
            path.unlink()
        elif path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()


class TemplateGenerator(Generator):
    """Writes an LXD template file."""

    def run_lxc(self, img: Optional[LXCImage], target: DefinitionTargetLXC) -> None:
        """Do nothing: LXC images have no templates of this kind."""

    def run_lxd(self, img: LXDImage, target: DefinitionTargetLXD) -> None:
        """Write the template and register it in the image metadata."""
        templates_dir = self._templates_dir()
        template = f"{self.def_file.name}.tpl"

        content = self.def_file.content
        if not content.endswith("\n"):
            content += "\n"

        if self.def_file.pongo:
            try:
                content = render_template(content, {"lxd": dataclasses.asdict(target)})
            except TemplateError as exc:
                raise TemplateError(f"Failed to execute template: {exc}") from exc

        (templates_dir / template).write_text(content, encoding="utf-8")

        self._add_lxd_template(img, self.def_file.path, template,
                               self.def_file.template.properties,
                               self.def_file.template.when)

    def run(self) -> None:
        """Do nothing for a plain root filesystem."""