"""Provisioning collaborators — the resolver and engine contracts plus local implementations."""

from strata.provisioning.base import ArtifactResolver, ProvisioningEngine, ResolveOptions
from strata.provisioning.file_tree import FileTreeProvisioner
from strata.provisioning.resolver import ChannelResolver

__all__ = [
    "ArtifactResolver",
    "ChannelResolver",
    "FileTreeProvisioner",
    "ProvisioningEngine",
    "ResolveOptions",
]
