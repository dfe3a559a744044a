# errors.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Fatal error types.

Everything that must stop the server (bad configuration, a route that cannot
be bound, an unreachable domain, missing certificates) is a PlaceError. The
library raises them; Place.serve() and the command-line entry point turn them
into a logged error line and exit status 1.
"""


class PlaceError(Exception):
    """Base class for configuration and startup failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidPortError(PlaceError):
    """The requested port is outside 0..49151."""


class InvalidPathToServeError(PlaceError):
    """The path to serve is missing, is a file, or is refused for safety."""


class RouteBindingError(PlaceError):
    """A dynamic route could not be imported or does not export a usable handler."""

    def __init__(self, route_path: str, message: str, hint: str = ""):
        self.route_path = route_path
        self.hint = hint
        full_message = f"Could not bind route {route_path}: {message}"
        if hint:
            full_message = f"{full_message}\n\n         Hint: {hint}"
        super().__init__(full_message)


class DomainUnreachableError(PlaceError):
    """A domain failed the pre-flight reachability check."""

    def __init__(self, domain: str, message: str):
        self.domain = domain
        super().__init__(message)


class UnexpectedResponseError(DomainUnreachableError):
    """Something other than our verifier answered at the domain."""

    def __init__(self, domain: str, preview: str):
        self.preview = preview
        super().__init__(domain, f"Got unexpected response from {domain} ({preview}).")


class DomainNetworkError(DomainUnreachableError):
    """DNS, connection or timeout failure while probing the domain."""

    def __init__(self, domain: str, reason: str):
        self.reason = reason
        super().__init__(domain, f"Domain {domain} is not reachable. ({reason})")


class CertificateError(PlaceError):
    """TLS certificates for the requested scope are missing or unusable."""


class ListenerError(PlaceError):
    """The listener could not bind its port or did not start in time."""


class ConfigurationError(PlaceError):
    """A file the server needs at startup (error page, wildcard page, settings, database) is unusable."""
