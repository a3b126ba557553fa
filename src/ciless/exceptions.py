class BridgeError(Exception):
    """Base class for all errors raised while handling a webhook delivery."""

    pass


class UnrecoverableError(BridgeError, ValueError):
    """Base class for errors that retrying the same delivery cannot fix."""

    pass


class AuthenticityError(UnrecoverableError):
    """Raised when a webhook signature is missing or does not match."""

    pass


class UnsupportedEventError(UnrecoverableError):
    """Raised when a webhook carries an event kind the bridge does not handle."""

    def __init__(self, event: str):
        super().__init__(f"Unsupported event: {event}")
        self.event = event


class ConfigNotFoundError(BridgeError):
    """Raised when the repository has no build config at the requested ref.

    This is the normal way for a repository to opt out of the pipeline.
    """

    def __init__(self, repo_slug: str, path: str, ref: str):
        super().__init__(f"{path} not found in {repo_slug} at {ref}")
        self.repo_slug = repo_slug
        self.path = path
        self.ref = ref


class ConfigDecodeError(UnrecoverableError):
    """Raised when the build config file cannot be turned into a build spec."""

    pass


class TransportError(BridgeError):
    """Raised when a collaborator cannot be reached, times out or refuses auth."""

    pass


class ConflictExhaustedError(UnrecoverableError):
    """Raised when an update lost the optimistic concurrency race too often."""

    def __init__(self, name: str, attempts: int):
        super().__init__(f"Gave up updating {name} after {attempts} conflicting attempts")
        self.name = name
        self.attempts = attempts


class ClusterError(BridgeError):
    """Base class for signals from the cluster build API."""

    def __init__(self, name: str, message: str = ""):
        super().__init__(message or name)
        self.name = name


class ResourceNotFoundError(ClusterError):
    """Raised when the named resource does not exist."""

    pass


class ResourceAlreadyExistsError(ClusterError):
    """Raised when creating a resource whose name is already taken."""

    pass


class ResourceConflictError(ClusterError):
    """Raised when a replace carried a stale resource version."""

    pass


class ResourceRejectedError(ClusterError):
    """Raised when the cluster refuses a manifest as invalid."""

    pass
