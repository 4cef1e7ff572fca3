"""Lookup of generators by name."""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

from imagebuilder.definition import Definition, DefinitionFile
from imagebuilder.generators.base import Generator
from imagebuilder.generators.cloudinit import CloudInitGenerator
from imagebuilder.generators.filecopy import CopyGenerator
from imagebuilder.generators.lxdagent import LXDAgentGenerator
from imagebuilder.generators.network import HostnameGenerator, HostsGenerator
from imagebuilder.generators.simple import (
    DumpGenerator,
    FstabGenerator,
    RemoveGenerator,
    TemplateGenerator,
)

StrPath = Union[str, os.PathLike]

_GENERATORS: dict[str, type[Generator]] = {
    "cloud-init": CloudInitGenerator,
    "copy": CopyGenerator,
    "dump": DumpGenerator,
    "fstab": FstabGenerator,
    "hostname": HostnameGenerator,
    "hosts": HostsGenerator,
    "lxd-agent": LXDAgentGenerator,
    "remove": RemoveGenerator,
    "template": TemplateGenerator,
}


class UnknownGeneratorError(LookupError):
    """Raised when no generator has the requested name."""


def load(name: str, logger: Optional[logging.Logger], cache_dir: StrPath,
         source_dir: StrPath, def_file: DefinitionFile,
         definition: Definition) -> Generator:
    """Create and initialise the generator called ``name``."""
    try:
        cls = _GENERATORS[name]
    except KeyError:
        raise UnknownGeneratorError(f"Unknown generator: {name!r}") from None
    return cls(logger, cache_dir, source_dir, def_file, definition)


def available() -> list[str]:
    """Return the names of all generators, sorted."""
    return sorted(_GENERATORS)