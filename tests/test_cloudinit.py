import pytest

from imagebuilder.definition import (
    Definition,
    DefinitionFile,
    DefinitionImage,
    DefinitionTargetLXC,
    DefinitionTargetLXD,
    FileTemplate,
)
from imagebuilder.generators.cloudinit import CloudInitGenerator
from imagebuilder.lxd import LXDImage

SERVICES = ["cloud-init-local", "cloud-config", "cloud-init", "cloud-final"]


@pytest.fixture
def dirs(tmp_path):
    rootfs = tmp_path / "rootfs"
    rootfs.mkdir()
    return tmp_path, rootfs


@pytest.fixture
def image(dirs):
    cache_dir, _ = dirs
    definition = Definition(image=DefinitionImage(distribution="ubuntu", release="artful"))
    return LXDImage(cache_dir, "", cache_dir, definition)


def test_run_lxc_disables_cloud_init(dirs):
    cache_dir, rootfs = dirs
    generator = CloudInitGenerator(None, cache_dir, rootfs, DefinitionFile(), Definition())

    runlevels = rootfs / "etc" / "runlevels"
    runlevels.mkdir(parents=True)
    (rootfs / "etc" / "cloud").mkdir(parents=True)
    for name in SERVICES:
        (runlevels / name).symlink_to("/dev/null")
        assert (runlevels / name).exists()
    (runlevels / "other").write_text("keep")

    generator.run_lxc(None, DefinitionTargetLXC())

    for name in SERVICES:
        assert not (runlevels / name).is_symlink()
    assert (runlevels / "other").read_text() == "keep"
    assert (rootfs / "etc" / "cloud" / "cloud-init.disabled").is_file()


def test_run_lxc_creates_cloud_dir(dirs):
    cache_dir, rootfs = dirs
    generator = CloudInitGenerator(None, cache_dir, rootfs, DefinitionFile(), Definition())
    generator.run_lxc(None, DefinitionTargetLXC())
    assert (rootfs / "etc" / "cloud" / "cloud-init.disabled").read_bytes() == b""


EXPECTED = {
    "user-data": """{%- if config_get("cloud-init.user-data", properties.default) == properties.default -%}
{{ config_get("user.user-data", properties.default) }}
{%- else -%}
{{- config_get("cloud-init.user-data", properties.default) }}
{%- endif %}
""",
    "meta-data": """instance-id: {{ container.name }}
local-hostname: {{ container.name }}
{{ config_get("user.meta-data", "") }}
""",
    "vendor-data": """{%- if config_get("cloud-init.vendor-data", properties.default) == properties.default -%}
{{ config_get("user.vendor-data", properties.default) }}
{%- else -%}
{{- config_get("cloud-init.vendor-data", properties.default) }}
{%- endif %}
""",
    "network-config": """{%- if config_get("cloud-init.network-config", "") == "" -%}
{%- if config_get("user.network-config", "") == "" -%}
version: 1
config:
  - type: physical
    name: {% if instance.type == "virtual-machine" %}enp5s0{% else %}eth0{% endif %}
    subnets:
      - type: dhcp
        control: auto
{%- else -%}
{{- config_get("user.network-config", "") -}}
{%- endif -%}
{%- else -%}
{{- config_get("cloud-init.network-config", "") -}}
{%- endif %}
""",
}


@pytest.mark.parametrize("name", list(EXPECTED))
def test_run_lxd_writes_template(dirs, image, name):
    cache_dir, rootfs = dirs
    generator = CloudInitGenerator(
        None, cache_dir, rootfs, DefinitionFile(generator="cloud-init", name=name), Definition()
    )
    generator.run_lxd(image, DefinitionTargetLXD())

    written = (cache_dir / "templates" / f"cloud-init-{name}.tpl").read_text()
    assert written == EXPECTED[name]

    entry = image.metadata.templates[f"/var/lib/cloud/seed/nocloud-net/{name}"]
    assert entry.template == f"cloud-init-{name}.tpl"
    assert entry.when == ["create", "copy"]


def test_run_lxd_unknown_name(dirs, image):
    cache_dir, rootfs = dirs
    generator = CloudInitGenerator(
        None, cache_dir, rootfs, DefinitionFile(generator="cloud-init", name="foo"), Definition()
    )
    with pytest.raises(ValueError, match="Unknown cloud-init configuration: foo"):
        generator.run_lxd(image, DefinitionTargetLXD())


def test_user_data_default_property(dirs, image):
    cache_dir, rootfs = dirs
    generator = CloudInitGenerator(
        None, cache_dir, rootfs, DefinitionFile(name="user-data"), Definition()
    )
    generator.run_lxd(image, DefinitionTargetLXD())
    entry = image.metadata.templates["/var/lib/cloud/seed/nocloud-net/user-data"]
    assert entry.properties == {"default": "#cloud-config\n{}"}


def test_content_overrides_default_and_path(dirs, image):
    cache_dir, rootfs = dirs
    def_file = DefinitionFile(name="vendor-data", content="#cloud-config\nfoo: bar",
                              path="/custom/vendor")
    generator = CloudInitGenerator(None, cache_dir, rootfs, def_file, Definition())
    generator.run_lxd(image, DefinitionTargetLXD())
    entry = image.metadata.templates["/custom/vendor"]
    assert entry.properties == {"default": "#cloud-config\nfoo: bar"}


def test_template_properties_replace_defaults(dirs, image):
    cache_dir, rootfs = dirs
    def_file = DefinitionFile(name="user-data",
                              template=FileTemplate(properties={"key": "value"}))
    generator = CloudInitGenerator(None, cache_dir, rootfs, def_file, Definition())
    generator.run_lxd(image, DefinitionTargetLXD())
    entry = image.metadata.templates["/var/lib/cloud/seed/nocloud-net/user-data"]
    assert entry.properties == {"key": "value"}


def test_network_config_custom_default(dirs, image):
    cache_dir, rootfs = dirs
    def_file = DefinitionFile(name="network-config", content="version: 2")
    generator = CloudInitGenerator(None, cache_dir, rootfs, def_file, Definition())
    generator.run_lxd(image, DefinitionTargetLXD())
    written = (cache_dir / "templates" / "cloud-init-network-config.tpl").read_text()
    assert '== "" -%}\nversion: 2\n{%- else -%}' in written
    entry = image.metadata.templates["/var/lib/cloud/seed/nocloud-net/network-config"]
    assert entry.properties == {}