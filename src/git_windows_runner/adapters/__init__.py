"""パイプラインの外部コラボレータ実装群."""

from .base import ArtifactSource, Builder, Packager, Registry, StateStore, VersionSource
from .builders import Msys2Builder, MxeBuilder, PrebuiltBuilder, create_builder
from .git_state import GitSidecarStateStore, clone_repository
from .github import GitHubArchiveSource, GitHubReleaseAssetSource, GitHubTagsSource, create_client
from .nuget import NuGetPackager, NuGetRegistry

__all__ = [
    "VersionSource",
    "ArtifactSource",
    "Builder",
    "Packager",
    "Registry",
    "StateStore",
    "Msys2Builder",
    "MxeBuilder",
    "PrebuiltBuilder",
    "create_builder",
    "GitSidecarStateStore",
    "clone_repository",
    "GitHubTagsSource",
    "GitHubArchiveSource",
    "GitHubReleaseAssetSource",
    "create_client",
    "NuGetPackager",
    "NuGetRegistry",
]
