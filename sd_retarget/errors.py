"""Exceptions raised while preparing retargeted model bundles"""


class RetargetError(RuntimeError):
    """A bundle could not be prepared for the requested size."""


class BundleLayoutError(RetargetError):
    """A required submodule directory or program-text file is missing."""


class ResourceError(RetargetError):
    """A precompiled VAE metadata blob is missing or could not be copied."""


class MetadataError(RetargetError):
    """A sidecar did not have the expected structure."""


class CatalogError(RetargetError):
    """No shape table exists for an architecture family / submodule role pair."""
