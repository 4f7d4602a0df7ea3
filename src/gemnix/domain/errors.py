from typing import Optional


class GemnixError(Exception):
    """base class for exceptions in gemnix."""
    pass


class UnresolvedDependencyError(GemnixError):
    """raised when a dependency edge names a gem missing from the lockfile."""
    def __init__(self, dep_name: str, lockfile_path: str):
        self.dep_name = dep_name
        self.lockfile_path = lockfile_path
        super().__init__(f"Gem dependency '{dep_name}' not specified in {lockfile_path}")


class UnknownPlatformError(GemnixError):
    """raised when a platform token or alias has no normalization rule."""
    def __init__(self, token: str, reason: str = "no normalization rule"):
        self.token = token
        super().__init__(f"Unknown platform '{token}': {reason}")


class FetchFailedError(GemnixError):
    """raised when neither the local cache nor a remote could produce a hash."""
    def __init__(self, name: str, version: str, source_kind: str, cause: Optional[BaseException] = None):
        self.name = name
        self.version = version
        self.source_kind = source_kind
        self.cause = cause
        message = f"couldn't fetch hash for {name}-{version} ({source_kind} source)"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class LockfileParseError(GemnixError):
    """raised when a Gemfile.lock cannot be parsed."""
    def __init__(self, path: str, line_number: int, message: str):
        self.path = path
        self.line_number = line_number
        super().__init__(f"{path}:{line_number}: {message}")


class GemfileLoadError(GemnixError):
    """raised when the Gemfile could not be evaluated."""
    pass


class CommandError(GemnixError):
    """raised when an external tool exits unsuccessfully."""
    def __init__(self, args, returncode: int, output: str = ""):
        self.args_list = list(args)
        self.returncode = returncode
        self.output = output
        super().__init__(f"command execution failed ({returncode}): {' '.join(self.args_list)}")
