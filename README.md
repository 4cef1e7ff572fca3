# imagebuilder

A library for preparing LXC and LXD system images from a root filesystem
tree that is already on disk. It models image definitions, runs file
generators over the tree, and writes the image metadata.

## Contents

- `imagebuilder.definition`: dataclasses describing an image
  (`Definition`, `DefinitionImage`, `DefinitionFile`, `FileTemplate`,
  `LXCConfig`, `DefinitionTargets`, `DefinitionTargetLXC`,
  `DefinitionTargetLXD`, `DefinitionTargetLXDVM`) and helpers:
  - `render_template(template, definition)` renders a Jinja2 template
    against a `Definition` (or a plain mapping), re-rendering the result
    while it still holds placeholders, up to ten rounds. A `capfirst`
    filter is available. Errors raise `TemplateError`.
  - `get_expiry_date(start, expiry)` moves a `datetime` forward by an
    expiry such as `30d`, `2w`, `1y 6m` (units `s`, `min`, `h`, `d`, `w`,
    `m`, `y`); an empty expiry returns `start`, a malformed one raises
    `ValueError`.
  - `update_file_access(path, def_file)` applies the octal `mode`, `gid`
    and `uid` of a `DefinitionFile` to a path or open file descriptor.
- `imagebuilder.generators`: jobs that alter a root filesystem or emit
  image templates, looked up by name with
  `imagebuilder.generators.registry.load()`:

  | name         | class                | what it does |
  |--------------|----------------------|--------------|
  | `cloud-init` | `CloudInitGenerator` | LXC: removes OpenRC cloud-init links and creates `etc/cloud/cloud-init.disabled`. LXD: writes a `cloud-init-<name>.tpl` template for `user-data`, `meta-data`, `vendor-data` or `network-config`. |
  | `copy`       | `CopyGenerator`      | Copies a file, directory or wildcard match from the host into the tree, keeping symlinks. |
  | `dump`       | `DumpGenerator`      | Writes the entry's content to a file (with a final newline). |
  | `fstab`      | `FstabGenerator`     | LXD: writes `etc/fstab` for root and UEFI partitions (ext4 by default, `subvol=@` on btrfs). |
  | `hostname`   | `HostnameGenerator`  | Turns an existing hostname file into a template. |
  | `hosts`      | `HostsGenerator`     | Puts a hostname placeholder into an existing hosts file. |
  | `lxd-agent`  | `LXDAgentGenerator`  | LXD: installs systemd or OpenRC services that set up the LXD agent. |
  | `remove`     | `RemoveGenerator`    | Removes a path from the tree. |
  | `template`   | `TemplateGenerator`  | LXD: writes `<name>.tpl` from the entry's content. |

  Every generator has `run_lxc(img, target)`, `run_lxd(img, target)` and
  `run()`. `fstab` and `lxd-agent` raise `NotSupportedError` from
  `run_lxc`. `registry.available()` lists the names; an unknown name raises
  `UnknownGeneratorError`.
- `imagebuilder.lxc.LXCImage`: writes LXC metadata under
  `<cache_dir>/metadata` (config files per compatibility level 1 to 5,
  `create-message`, `expiry`, `excludes-user`, `templates`) and packs it.
  `build(compression)` writes `meta.tar.xz` and `rootfs.tar[.gz|.bz2|.xz]`
  into the target directory; compression is `none`, `gzip`, `bzip2` or
  `xz`, optionally with a level such as `gzip-9`.
- `imagebuilder.lxd.LXDImage`: collects `ImageMetadata` (architecture,
  dates, properties, templates). `create_metadata()` fills it from the
  definition; `write_metadata_file()` writes `<cache_dir>/metadata.yaml`.

## Installing

```
pip install .
pip install ".[test]"   # with pytest
pytest
```

## Example

```python
from imagebuilder.definition import Definition, DefinitionFile, DefinitionTargetLXD
from imagebuilder.generators.registry import available, load
from imagebuilder.lxd import LXDImage

definition = Definition()
image = LXDImage("/tmp/rootfs", "/tmp/out", "/tmp/cache", definition)

print(available())

gen = load("hostname", None, "/tmp/cache", "/tmp/rootfs",
           DefinitionFile(path="/etc/hostname"), definition)
gen.run_lxd(image, DefinitionTargetLXD())   # does nothing unless /tmp/rootfs/etc/hostname exists

print(image.metadata.to_dict()["templates"])
image.write_metadata_file()
```

When a `DefinitionFile` has `pongo=True`, its `content`, `path` and
`source` are rendered against the definition when the generator is created.

## What it does not do

There is no command-line tool. The package does not download distribution
sources, manage packages or repositories, enter a chroot, run hook scripts,
mount overlays or disk images, build squashfs or qcow2 root filesystems,
pack LXD image tarballs, or import images into an LXD server. It works on a
root filesystem tree and cache directory that the caller provides.