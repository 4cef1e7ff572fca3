"""Image definitions, root filesystem generators and LXC/LXD metadata assembly."""

__version__ = "0.1.0"