"""
Ad-hoc downloads as dependency-graph nodes.

``ad_hoc_download`` turns a one-off download location into something the
build can resolve and cache like a normal dependency: it synthesizes a
pattern repository for the URI, fences it off with an exclusive-content
boundary keyed on the URI authority, and returns a detached dependency on
the requested coordinate.
"""

from typing import TYPE_CHECKING, Optional

from .coordinate import ArtifactCoordinate
from .detached import DetachedDependency
from .repositories import ad_hoc_source, authority_of

if TYPE_CHECKING:
    from .project import Project


def ad_hoc_download(
    project: "Project",
    uri: str,
    name: str,
    version: Optional[str] = None,
    classifier: Optional[str] = None,
    ext: str = "",
) -> DetachedDependency:
    """
    Declare a download from an arbitrary HTTP(S) location.

    The artifact URL is ``<uri>/name(-version)(-classifier)(.ext)``; a
    segment whose field is absent (or empty) is left out together with its
    separator. Nothing is fetched here: the download happens the first time
    the returned dependency's files are read.

    Args:
        project: Project whose repository list receives the synthesized source
        uri: Base URI of the download location
        name: Artifact name
        version: Optional version, becomes ``-version``
        classifier: Optional classifier, becomes ``-classifier``
        ext: File extension

    Returns:
        DetachedDependency: Reference to the single matching file

    Raises:
        BuildConfigurationError: If the URI, name or extension is invalid, or
            the project has finished configuration
    """
    group = authority_of(uri)
    coordinate = ArtifactCoordinate(
        group=group,
        name=name,
        version=version,
        classifier=classifier,
        extension=ext,
    )

    # Registers the source and fences it in one step
    repository = ad_hoc_source(uri)
    project.repositories.exclusive_content(repository, include_group=group)

    return DetachedDependency(
        coordinate, project.resolver, before_resolve=project.finish_configuration
    )
