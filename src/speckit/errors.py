"""
Error types raised by the Specify core.

Every operation fails fast with one of these; the CLI layer decides how to
present them.
"""

from pathlib import Path
from typing import Optional


class SpecifyError(Exception):
    """Base exception for all Specify errors."""

    def __init__(self, message: str, *, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class TemplateError(SpecifyError):
    """Base for template download, cache and extraction failures."""
    pass


class TemplateNotFoundError(TemplateError):
    """Requested remote asset or cache entry does not exist."""
    pass


class TemplateDownloadError(TemplateError):
    """Transport or network failure while fetching templates."""
    pass


class TemplateExtractionError(TemplateError):
    """Archive malformed, traversal detected, or I/O failure while extracting."""
    pass


class TemplateCorruptedError(TemplateError):
    """Digest mismatch or unparseable manifest."""
    pass


class TemplateCacheError(TemplateError):
    """Cache root missing, unusable or out of date."""
    pass


class TemplateSubstitutionError(TemplateError):
    """One or more template files could not be rendered."""

    def __init__(self, message: str, *, failures: Optional[list[tuple[Path, str]]] = None, path: Optional[Path] = None):
        super().__init__(message, path=path)
        self.failures = failures or []


class MalformedSectionError(SpecifyError):
    """Delimited section markers are duplicated or unpaired."""
    pass


class ProjectError(SpecifyError):
    """Base for project target problems."""
    pass


class ProjectPathError(ProjectError):
    """Target path missing, not a directory, or outside expected bounds."""
    pass


class ProjectAccessDeniedError(ProjectError):
    """Target path is not writable."""
    pass


class ProjectExistsError(ProjectError):
    pass


class ProjectNameError(ProjectError):
    pass


class GitError(SpecifyError):
    """A git command failed."""
    pass


class FeatureError(SpecifyError):
    """Feature workflow precondition not met."""
    pass
