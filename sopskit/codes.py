"""Exit statuses of the command line tool and the error that carries them."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit statuses returned by the command line tool."""

    ERROR_GENERIC = 1
    COULD_NOT_READ_INPUT_FILE = 2
    COULD_NOT_WRITE_OUTPUT_FILE = 3
    ERROR_DUMPING_TREE = 4
    ERROR_READING_CONFIG = 5
    ERROR_INVALID_KMS_ENCRYPTION_CONTEXT_FORMAT = 6
    ERROR_INVALID_SET_FORMAT = 7
    ERROR_CONFLICTING_PARAMETERS = 8
    ERROR_ENCRYPTING_MAC = 21
    ERROR_ENCRYPTING_TREE = 23
    ERROR_DECRYPTING_MAC = 24
    ERROR_DECRYPTING_TREE = 25
    CANNOT_CHANGE_KEYS_FROM_NON_EXISTENT_FILE = 49
    MAC_MISMATCH = 51
    MAC_NOT_FOUND = 52
    CONFIG_FILE_NOT_FOUND = 61
    KEYBOARD_INTERRUPT = 85
    INVALID_TREE_PATH_FORMAT = 91
    NO_FILE_SPECIFIED = 100
    NO_ENCRYPTION_KEY_FOUND = 111
    COULD_NOT_RETRIEVE_KEY = 128
    FILE_HAS_NOT_BEEN_MODIFIED = 200
    NO_EDITOR_FOUND = 201
    FAILED_TO_COMPARE_VERSIONS = 202
    FILE_ALREADY_ENCRYPTED = 203


class ExitError(Exception):
    """An error that ends the program with a specific exit status.

    If the message object offers a ``user_error()`` method, its friendlier
    text is used instead of ``str(message)``.
    """

    def __init__(self, message: object, exit_code: int = ExitCode.ERROR_GENERIC) -> None:
        user_error = getattr(message, "user_error", None)
        if callable(user_error):
            message = user_error()
        self.message = str(message)
        self.exit_code = exit_code
        super().__init__(self.message)