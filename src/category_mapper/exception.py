from typing import Optional


def error_message_detail(error, error_detail) -> str:
    """Formats an error with the file name and line number it was raised from."""
    _, _, exc_tb = error_detail.exc_info()
    if exc_tb is None:
        return str(error)

    while exc_tb.tb_next is not None:
        exc_tb = exc_tb.tb_next

    file_name = exc_tb.tb_frame.f_code.co_filename
    return (
        f"Error occurred in python script [{file_name}] "
        f"line number [{exc_tb.tb_lineno}] error message [{error}]"
    )


class CustomException(Exception):
    """
    Base error for the package.

    Pass `sys` as the second argument inside an except block to record where
    the original error came from.
    """

    def __init__(self, error_message, error_detail: Optional[object] = None):
        if error_detail is not None:
            message = error_message_detail(error_message, error_detail)
        else:
            message = str(error_message)
        super().__init__(message)
        self.error_message = message

    def __str__(self):
        return self.error_message


class OracleContractError(CustomException):
    """The oracle answered with something outside the offered option set."""


class NavigationError(CustomException):
    """A drill-down walk hit an invariant violation and was aborted."""


class CacheError(CustomException):
    """The mapping store could not be read or written."""


class ConfigError(CustomException):
    """Missing or invalid configuration."""


__all__ = [
    "CustomException",
    "OracleContractError",
    "NavigationError",
    "CacheError",
    "ConfigError",
    "error_message_detail",
]
