class SubderiveException(Exception):
    pass


class InvalidAccountFormat(SubderiveException):
    """Raised when an account id is not exactly 32 bytes or cannot be decoded."""
    pass


class MalformedCall(SubderiveException):
    """Raised when a decoded call does not have the shape its module and function promise."""
    pass


class ConfigurationError(SubderiveException):
    pass
