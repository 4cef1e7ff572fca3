"""Generators that modify a root filesystem or emit image templates."""

__all__ = ["base", "cloudinit", "simple", "filecopy", "network", "lxdagent", "registry"]