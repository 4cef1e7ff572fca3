import stat

import pytest

from imagebuilder.definition import (
    Definition,
    DefinitionFile,
    DefinitionImage,
    DefinitionTargetLXC,
    DefinitionTargetLXD,
    DefinitionTargetLXDVM,
    DefinitionTargets,
    FileTemplate,
)
from imagebuilder.generators.base import NotSupportedError
from imagebuilder.generators.simple import (
    DumpGenerator,
    FstabGenerator,
    RemoveGenerator,
    TemplateGenerator,
)
from imagebuilder.lxc import LXCImage
from imagebuilder.lxd import LXDImage


@pytest.fixture
def dirs(tmp_path):
    rootfs = tmp_path / "rootfs"
    rootfs.mkdir()
    return tmp_path, rootfs


def _ubuntu():
    return Definition(image=DefinitionImage(distribution="ubuntu", release="artful"))


def test_dump_run_lxc(dirs):
    cache_dir, rootfs = dirs
    definition = Definition(
        targets=DefinitionTargets(lxc=DefinitionTargetLXC(create_message="message"))
    )
    content = "hello {{ targets.lxc.create_message }}"

    generator = DumpGenerator(None, cache_dir, rootfs,
                              DefinitionFile(path="/hello/world", content=content, pongo=True),
                              definition)
    generator.run_lxc(None, DefinitionTargetLXC(create_message="message"))
    assert (rootfs / "hello" / "world").read_text() == "hello message\n"

    generator = DumpGenerator(None, cache_dir, rootfs,
                              DefinitionFile(path="/hello/world", content=content), definition)
    generator.run_lxc(None, DefinitionTargetLXC(create_message="message"))
    assert (rootfs / "hello" / "world").read_text() == "hello {{ targets.lxc.create_message }}\n"


def test_dump_run_lxd(dirs):
    cache_dir, rootfs = dirs
    target = DefinitionTargetLXD(vm=DefinitionTargetLXDVM(filesystem="ext4"))
    definition = Definition(targets=DefinitionTargets(lxd=target))
    content = "hello {{ targets.lxd.vm.filesystem }}"

    generator = DumpGenerator(None, cache_dir, rootfs,
                              DefinitionFile(path="/hello/world", content=content, pongo=True),
                              definition)
    generator.run_lxd(None, target)
    assert (rootfs / "hello" / "world").read_text() == "hello ext4\n"

    generator = DumpGenerator(None, cache_dir, rootfs,
                              DefinitionFile(path="/hello/world", content=content), definition)
    generator.run_lxd(None, target)
    assert (rootfs / "hello" / "world").read_text() == "hello {{ targets.lxd.vm.filesystem }}\n"


def test_dump_templated_registers_lxc_template(dirs):
    cache_dir, rootfs = dirs
    image = LXCImage(cache_dir, "", cache_dir, _ubuntu())
    generator = DumpGenerator(None, cache_dir, rootfs,
                              DefinitionFile(path="/etc/motd", content="hi", templated=True),
                              _ubuntu())
    generator.run_lxc(image, DefinitionTargetLXC())
    assert (cache_dir / "metadata" / "templates").read_text() == "/etc/motd\n"


def test_dump_applies_mode(dirs):
    cache_dir, rootfs = dirs
    generator = DumpGenerator(None, cache_dir, rootfs,
                              DefinitionFile(path="/etc/secret", content="x\n", mode="600"),
                              Definition())
    generator.run()
    path = rootfs / "etc" / "secret"
    assert path.read_text() == "x\n"
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_dump_invalid_mode(dirs):
    cache_dir, rootfs = dirs
    generator = DumpGenerator(None, cache_dir, rootfs,
                              DefinitionFile(path="/f", content="x", mode="9z"), Definition())
    with pytest.raises(ValueError, match="Failed to parse file mode"):
        generator.run()


def test_template_run_lxd(dirs):
    cache_dir, rootfs = dirs
    definition = _ubuntu()
    generator = TemplateGenerator(None, cache_dir, rootfs,
                                  DefinitionFile(generator="template", name="template",
                                                 content="==test==", path="/root/template"),
                                  definition)
    image = LXDImage(cache_dir, "", cache_dir, definition)

    (rootfs / "root").mkdir()
    (rootfs / "root" / "template").write_text("--test--")

    generator.run_lxd(image, DefinitionTargetLXD())

    assert (cache_dir / "templates" / "template.tpl").read_text() == "==test==\n"
    assert (rootfs / "root" / "template").read_text() == "--test--"
    assert image.metadata.templates["/root/template"].template == "template.tpl"


def test_template_run_lxd_default_when(dirs):
    cache_dir, rootfs = dirs
    definition = _ubuntu()
    image = LXDImage(cache_dir, "", cache_dir, definition)

    generator = TemplateGenerator(None, cache_dir, rootfs,
                                  DefinitionFile(generator="template", name="test-default-when",
                                                 content="==test==", path="test-default-when"),
                                  definition)
    generator.run_lxd(image, DefinitionTargetLXD())

    generator = TemplateGenerator(None, cache_dir, rootfs,
                                  DefinitionFile(generator="template", name="test-when",
                                                 content="==test==", path="test-when",
                                                 template=FileTemplate(when=["create"])),
                                  definition)
    generator.run_lxd(image, DefinitionTargetLXD())

    assert image.metadata.templates["test-default-when"].when == ["create", "copy"]
    assert image.metadata.templates["test-when"].when == ["create"]


def test_template_pongo_renders_definition(dirs):
    cache_dir, rootfs = dirs
    definition = _ubuntu()
    image = LXDImage(cache_dir, "", cache_dir, definition)
    generator = TemplateGenerator(None, cache_dir, rootfs,
                                  DefinitionFile(name="rel", content="{{ image.release }}",
                                                 path="/etc/rel", pongo=True),
                                  definition)
    generator.run_lxd(image, DefinitionTargetLXD())
    assert (cache_dir / "templates" / "rel.tpl").read_text() == "artful\n"


def test_fstab_default_ext4(dirs):
    cache_dir, rootfs = dirs
    (rootfs / "etc").mkdir()
    FstabGenerator(None, cache_dir, rootfs, DefinitionFile(), Definition()).run_lxd(
        None, DefinitionTargetLXD())
    assert (rootfs / "etc" / "fstab").read_text() == (
        "LABEL=rootfs  /         ext4  defaults  0 0\n"
        "LABEL=UEFI    /boot/efi vfat  defaults  0 0\n"
    )


def test_fstab_btrfs_subvolume(dirs):
    cache_dir, rootfs = dirs
    (rootfs / "etc").mkdir()
    target = DefinitionTargetLXD(vm=DefinitionTargetLXDVM(filesystem="btrfs"))
    FstabGenerator(None, cache_dir, rootfs, DefinitionFile(), Definition()).run_lxd(None, target)
    first = (rootfs / "etc" / "fstab").read_text().splitlines()[0]
    assert first == "LABEL=rootfs  /         btrfs  defaults,subvol=@  0 0"


def test_fstab_not_supported_for_lxc(dirs):
    cache_dir, rootfs = dirs
    generator = FstabGenerator(None, cache_dir, rootfs, DefinitionFile(), Definition())
    with pytest.raises(NotSupportedError, match="fstab generator not supported for LXC"):
        generator.run_lxc(None, DefinitionTargetLXC())


def test_remove_directory_and_file(dirs):
    cache_dir, rootfs = dirs
    (rootfs / "var" / "cache").mkdir(parents=True)
    (rootfs / "var" / "cache" / "item").write_text("x")
    (rootfs / "etc").mkdir()
    (rootfs / "etc" / "machine-id").write_text("id")

    RemoveGenerator(None, cache_dir, rootfs, DefinitionFile(path="/var/cache"),
                    Definition()).run_lxd(None, DefinitionTargetLXD())
    RemoveGenerator(None, cache_dir, rootfs, DefinitionFile(path="/etc/machine-id"),
                    Definition()).run_lxc(None, DefinitionTargetLXC())

    assert not (rootfs / "var" / "cache").exists()
    assert (rootfs / "var").is_dir()
    assert not (rootfs / "etc" / "machine-id").exists()


def test_remove_missing_path_is_fine(dirs):
    cache_dir, rootfs = dirs
    RemoveGenerator(None, cache_dir, rootfs, DefinitionFile(path="/nothing/here"),
                    Definition()).run()
    assert sorted(p.name for p in rootfs.iterdir()) == []


def test_remove_symlink_keeps_target(dirs):
    cache_dir, rootfs = dirs
    (rootfs / "real").mkdir()
    (rootfs / "link").symlink_to("real")
    RemoveGenerator(None, cache_dir, rootfs, DefinitionFile(path="/link"), Definition()).run()
    assert not (rootfs / "link").is_symlink()
    assert (rootfs / "real").is_dir()