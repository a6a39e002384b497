class MergeError(Exception):
    status_code = 500


class ValidationError(MergeError):
    """Missing or unparseable request field."""

    status_code = 400


class SourceNotFoundError(MergeError):
    """No CSV sources matched the selection."""

    status_code = 404


class DownstreamError(MergeError):
    """Blob storage, Key Vault or HTTP call failed."""

    status_code = 502


class ProtocolError(MergeError):
    """A remote service answered without a field we depend on."""

    status_code = 500


class ConfigurationError(MergeError):
    status_code = 500
