# path: streetview-route-api/app/errors.py

from __future__ import annotations


class RouteImageryError(Exception):
    """Base class for every failure raised by the route imagery pipeline."""

    code = "route_imagery_error"


# Parsing / sampling are fatal to a pipeline run. They subclass ValueError so
# the API layer can treat them like any other bad input.


class ParseError(RouteImageryError, ValueError):
    code = "parse_error"


class MalformedDocumentError(ParseError):
    code = "malformed_document"


class NoTracksError(ParseError):
    code = "no_tracks"


class SamplingError(RouteImageryError, ValueError):
    code = "sampling_error"


class InsufficientPointsError(SamplingError):
    code = "insufficient_points"


class NoSamplesError(SamplingError):
    code = "no_samples"


# Resolution errors are per-viewpoint. Only the credential checks reach callers.


class ResolutionError(RouteImageryError):
    code = "resolution_error"


class MissingCredentialError(ResolutionError):
    code = "missing_credential"


class InvalidCredentialFormatError(ResolutionError):
    code = "invalid_credential_format"


class FetchFailedError(ResolutionError):
    code = "fetch_failed"


class InvalidTransitionError(RouteImageryError):
    code = "invalid_transition"


class ExportError(RouteImageryError):
    code = "export_error"


class NothingToExportError(ExportError):
    code = "nothing_to_export"


class ArchiveGenerationFailedError(ExportError):
    code = "archive_generation_failed"


# Reason recorded on a failed viewpoint; the upstream cause is only logged.
FETCH_FAILED_REASON = "FetchFailed"
