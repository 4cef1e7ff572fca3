"""The lxd-agent generator."""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Optional, Sequence, Union

from imagebuilder.definition import DefinitionTargetLXC, DefinitionTargetLXD
from imagebuilder.generators.base import Generator, NotSupportedError
from imagebuilder.lxc import LXCImage
from imagebuilder.lxd import LXDImage

LXD_AGENT_SETUP_SCRIPT = """#!/bin/sh
# Copy the LXD agent from its config drive into a private tmpfs.
set -eu

prefix=/run/lxd_agent
mnt="$prefix.mnt"
cdrom=/dev/disk/by-id/scsi-0QEMU_QEMU_CD-ROM_lxd_agent

quiet() { "$@" >/dev/null 2>&1; }

try_9p() {
    quiet modprobe 9pnet_virtio || true
    quiet mount -t 9p config "$mnt" -o access=0,trans=virtio,size=1048576
}

try_virtiofs() { quiet mount -t virtiofs config "$mnt"; }

try_cdrom() { quiet mount "$cdrom" "$mnt"; }

give_up() {
    # An agent left over from an earlier start (cdrom setups) is good enough.
    if [ -x "$prefix/lxd-agent" ]; then
        echo "$1, re-using existing agent"
        exit 0
    fi

    quiet umount -l "$prefix" || true
    quiet eject "$cdrom" || true
    quiet rmdir "$prefix" || true
    echo "$1, failing"
    exit 1
}

mkdir -p "$mnt"
try_9p || try_virtiofs || try_cdrom || give_up "Couldn't mount 9p or cdrom"

quiet umount -l "$prefix" || true
mkdir -p "$prefix"
mount -t tmpfs tmpfs "$prefix" -o mode=0700,size=50M

cp -Ra "$mnt/"* "$prefix"

umount "$mnt"
rmdir "$mnt"
quiet eject "$cdrom" || true

chown -R root:root "$prefix"
quiet restorecon -R "$prefix" || true

exit 0
"""

_AGENT_SERVICE = "lxd-agent.service"


def _unit_file(sections: dict[str, Sequence[tuple[str, str]]]) -> str:
    """Render a systemd unit from its sections."""
    blocks = []
    for section, entries in sections.items():
        lines = [f"[{section}]"]
        lines.extend(f"{key}={value}" for key, value in entries)
        blocks.append("\n".join(lines) + "\n")
    return "\n".join(blocks)


def _service_unit(systemd_path: str) -> str:
    return _unit_file({
        "Unit": [
            ("Description", "LXD - agent"),
            ("Before", " ".join(["multi-user.target", "cloud-init.target",
                                 "cloud-init.service", "cloud-init-local.service"])),
            ("DefaultDependencies", "no"),
        ],
        "Service": [
            ("Type", "notify"),
            ("WorkingDirectory", "-/run/lxd_agent"),
            ("ExecStartPre", f"{systemd_path}/lxd-agent-setup"),
            ("ExecStart", "/run/lxd_agent/lxd-agent"),
            ("Restart", "on-failure"),
            ("RestartSec", "5s"),
            ("StartLimitInterval", "60"),
            ("StartLimitBurst", "10"),
        ],
    })


def _udev_rule(port: str) -> str:
    return (f'SYMLINK=="virtio-ports/{port}", TAG+="systemd", '
            f'ENV{{SYSTEMD_WANTS}}+="{_AGENT_SERVICE}"\n')


def _udev_rules() -> str:
    return _udev_rule("com.canonical.lxd") + "\n# Legacy.\n" + _udev_rule(
        "org.linuxcontainers.lxd")


def _openrc_script(variables: Sequence[tuple[str, str]],
                   depend: Sequence[str] = ()) -> str:
    """Render an OpenRC service script."""
    lines = ["#!/sbin/openrc-run", ""]
    for key, value in variables:
        lines.append(f'{key}="{value}"' if " " in value else f"{key}={value}")
    if depend:
        lines.append("")
        lines.append("depend() {")
        lines.extend(f"\t{item}" for item in depend)
        lines.append("}")
    return "\n".join(lines) + "\n"


def _openrc_agent_script() -> str:
    return _openrc_script(
        [
            ("description", "LXD - agent"),
            ("command", "/run/lxd_agent/lxd-agent"),
            ("command_background", "true"),
            ("pidfile", "/run/lxd-agent.pid"),
            ("start_stop_daemon_args", "--chdir /run/lxd_agent"),
            ("required_dirs", "/run/lxd_agent"),
        ],
        depend=[
            "need lxd-agent-setup",
            "after lxd-agent-setup",
            "before cloud-init",
            "before cloud-init-local",
        ],
    )


def _openrc_setup_script() -> str:
    return _openrc_script([
        ("description", "LXD - agent - setup"),
        ("command", "/usr/local/bin/lxd-agent-setup"),
        ("required_dirs", "/dev/virtio-ports/"),
    ])


def _write_file(path: Union[str, os.PathLike], content: str, mode: int) -> None:
    """Write a file, giving it ``mode`` when it is created."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content)


class LXDAgentGenerator(Generator):
    """Installs the services that start the LXD agent inside virtual machines."""

    def run_lxc(self, img: Optional[LXCImage], target: DefinitionTargetLXC) -> None:
        """Refuse: the agent only exists for LXD virtual machines."""
        raise NotSupportedError()

    def run_lxd(self, img: Optional[LXDImage], target: DefinitionTargetLXD) -> None:
        """Install the agent for the init system found in the root filesystem."""
        init_file = self.source_dir / "sbin" / "init"
        mode = os.lstat(init_file).st_mode

        if stat.S_ISLNK(mode):
            link_target = os.readlink(init_file)
            if "systemd" in link_target:
                self._handle_systemd()
            elif "busybox" in link_target:
                self._init_system_from_inittab()
            return

        self._init_system_from_inittab()

    def run(self) -> None:
        """Do nothing for a plain root filesystem."""

    def _handle_systemd(self) -> None:
        systemd_path = "/lib/systemd"
        if not self._in_rootfs(systemd_path).exists():
            systemd_path = "/usr/lib/systemd"

        systemd_dir = self._in_rootfs(systemd_path)
        _write_file(systemd_dir / "system" / _AGENT_SERVICE,
                    _service_unit(systemd_path), 0o644)
        _write_file(systemd_dir / "lxd-agent-setup", LXD_AGENT_SETUP_SCRIPT, 0o755)

        udev_path = "/lib/udev/rules.d"
        udev_dir = self.source_dir / "lib" / "udev"
        if udev_dir.is_symlink() or not self._in_rootfs(udev_path).parent.exists():
            udev_path = "/usr/lib/udev/rules.d"

        _write_file(self._in_rootfs(udev_path) / "99-lxd-agent.rules", _udev_rules(), 0o400)

    def _handle_openrc(self) -> None:
        for name, content in (("lxd-agent", _openrc_agent_script()),
                              ("lxd-agent-setup", _openrc_setup_script())):
            script = f"/etc/init.d/{name}"
            _write_file(self._in_rootfs(script), content, 0o755)
            os.symlink(script, self._in_rootfs(f"/etc/runlevels/default/{name}"))

        _write_file(self._in_rootfs("/usr/local/bin/lxd-agent-setup"),
                    LXD_AGENT_SETUP_SCRIPT, 0o755)

    def _init_system_from_inittab(self) -> None:
        inittab: Path = self.source_dir / "etc" / "inittab"
        with open(inittab, encoding="utf-8", errors="replace") as handle:
            for line in handle:
                if "sysinit" in line and "openrc" in line:
                    self._handle_openrc()
                    return

        raise RuntimeError("Failed to determine init system")