"""The cloud-init generator."""

from __future__ import annotations

import os
import stat
from typing import Optional

from imagebuilder.definition import DefinitionTargetLXC, DefinitionTargetLXD
from imagebuilder.generators.base import Generator
from imagebuilder.lxc import LXCImage
from imagebuilder.lxd import LXDImage

_OPENRC_SERVICES = frozenset({"cloud-init-local", "cloud-config", "cloud-init", "cloud-final"})

_DEFAULT_CLOUD_CONFIG = "#cloud-config\n{}"

_SEED_DIR = "/var/lib/cloud/seed/nocloud-net"


def _data_template(key: str) -> str:
    return (
        f'{{%- if config_get("cloud-init.{key}", properties.default) == properties.default -%}}\n'
        f'{{{{ config_get("user.{key}", properties.default) }}}}\n'
        "{%- else -%}\n"
        f'{{{{- config_get("cloud-init.{key}", properties.default) }}}}\n'
        "{%- endif %}\n"
    )


_META_DATA_TEMPLATE = (
    "instance-id: {{ container.name }}\n"
    "local-hostname: {{ container.name }}\n"
    '{{ config_get("user.meta-data", "") }}\n'
)

_DEFAULT_NETWORK_CONFIG = (
    "version: 1\n"
    "config:\n"
    "  - type: physical\n"
    '    name: {% if instance.type == "virtual-machine" %}enp5s0{% else %}eth0{% endif %}\n'
    "    subnets:\n"
    "      - type: dhcp\n"
    "        control: auto"
)


def _network_template(default_value: str) -> str:
    return (
        '{%- if config_get("cloud-init.network-config", "") == "" -%}\n'
        '{%- if config_get("user.network-config", "") == "" -%}\n'
        + default_value
        + "\n{%- else -%}\n"
        '{{- config_get("user.network-config", "") -}}\n'
        "{%- endif -%}\n"
        "{%- else -%}\n"
        '{{- config_get("cloud-init.network-config", "") -}}\n'
        "{%- endif %}\n"
    )


class CloudInitGenerator(Generator):
    """Disables cloud-init for LXC and writes cloud-init templates for LXD."""

    def run_lxc(self, img: Optional[LXCImage], target: DefinitionTargetLXC) -> None:
        """Disable cloud-init in the root filesystem."""
        runlevels = self.source_dir / "etc" / "runlevels"
        if runlevels.exists():
            for root, dirs, files in os.walk(runlevels):
                for name in dirs + files:
                    if name not in _OPENRC_SERVICES:
                        continue
                    full = os.path.join(root, name)
                    if stat.S_ISDIR(os.lstat(full).st_mode):
                        continue
                    try:
                        os.remove(full)
                    except OSError as exc:
                        raise OSError(f"Failed to remove file {full!r}: {exc}") from exc

        cloud_dir = self.source_dir / "etc" / "cloud"
        cloud_dir.mkdir(parents=True, exist_ok=True)
        (cloud_dir / "cloud-init.disabled").write_bytes(b"")

    def run_lxd(self, img: LXDImage, target: DefinitionTargetLXD) -> None:
        """Write the cloud-init template named by the file entry."""
        templates_dir = self._templates_dir()
        name = self.def_file.name
        properties: dict[str, str] = {}

        if name in ("user-data", "vendor-data"):
            content = _data_template(name)
            properties["default"] = _DEFAULT_CLOUD_CONFIG
        elif name == "meta-data":
            content = _META_DATA_TEMPLATE
        elif name == "network-config":
            content = _network_template(self.def_file.content or _DEFAULT_NETWORK_CONFIG)
        else:
            raise ValueError(f"Unknown cloud-init configuration: {name}")

        if name != "network-config" and self.def_file.content:
            properties["default"] = self.def_file.content

        if not content.endswith("\n"):
            content += "\n"

        template = f"cloud-init-{name}.tpl"
        (templates_dir / template).write_text(content, encoding="utf-8")

        if self.def_file.template.properties:
            properties = dict(self.def_file.template.properties)

        target_path = self.def_file.path or f"{_SEED_DIR}/{name}"
        self._add_lxd_template(img, target_path, template, properties, ("create", "copy"))

    def run(self) -> None:
        """Do nothing for a plain root filesystem."""