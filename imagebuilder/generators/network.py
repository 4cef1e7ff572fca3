"""The hostname and hosts generators."""

from __future__ import annotations

from imagebuilder.definition import DefinitionTargetLXC, DefinitionTargetLXD
from imagebuilder.generators.base import Generator
from imagebuilder.lxc import LXCImage
from imagebuilder.lxd import LXDImage

_BUILD_HOSTNAME = b"lxd-imagebuilder"
_LXC_NAME = b"LXC_NAME"
_LXD_NAME = b"{{ container.name }}"


def _hosts_with_placeholder(content: bytes, placeholder: bytes) -> bytes:
    content = content.replace(_BUILD_HOSTNAME, placeholder)
    if placeholder not in content:
        content = b"127.0.1.1\t" + placeholder + b"\n" + content
    return content


class HostnameGenerator(Generator):
    """Turns the hostname file into a template filled in at instance creation."""

    def run_lxc(self, img: LXCImage, target: DefinitionTargetLXC) -> None:
        """Replace the hostname with LXC's placeholder and register the template."""
        path = self._in_rootfs(self.def_file.path)
        if not path.exists():
            return
        path.write_bytes(_LXC_NAME + b"\n")
        img.add_template(self.def_file.path)

    def run_lxd(self, img: LXDImage, target: DefinitionTargetLXD) -> None:
        """Write hostname.tpl and register it in the image metadata."""
        if not self._in_rootfs(self.def_file.path).exists():
            return
        template = "hostname.tpl"
        (self._templates_dir() / template).write_bytes(_LXD_NAME + b"\n")
        self._add_lxd_template(img, self.def_file.path, template,
                               self.def_file.template.properties,
                               self.def_file.template.when)

    def run(self) -> None:
        """Do nothing for a plain root filesystem."""


class HostsGenerator(Generator):
    """Turns the hosts file into a template naming the instance."""

    def run_lxc(self, img: LXCImage, target: DefinitionTargetLXC) -> None:
        """Put LXC's placeholder into the hosts file and register the template."""
        path = self._in_rootfs(self.def_file.path)
        if not path.exists():
            return
        path.write_bytes(_hosts_with_placeholder(path.read_bytes(), _LXC_NAME))
        img.add_template(self.def_file.path)

    def run_lxd(self, img: LXDImage, target: DefinitionTargetLXD) -> None:
        """Write hosts.tpl and register it in the image metadata."""
        path = self._in_rootfs(self.def_file.path)
        if not path.exists():
            return
        template = "hosts.tpl"
        templates_dir = self._templates_dir()
        content = _hosts_with_placeholder(path.read_bytes(), _LXD_NAME)
        (templates_dir / template).write_bytes(content)
        self._add_lxd_template(img, self.def_file.path, template,
                               self.def_file.template.properties,
                               self.def_file.template.when)

    def run(self) -> None:
        """Do nothing for a plain root filesystem."""