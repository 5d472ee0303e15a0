import fnmatch
import re
from typing import Union

REGEX_PREFIX = "regex:"


def path_is_match(path: Union[str, list[str]], request_path: str) -> bool:
    """
    Check if request path matches the specified path pattern(s).

    Supports:
    - Exact matching: "/api/users"
    - Glob patterns (fnmatch, where * also matches /): "/api/users/*", "/api/*/profile"
    - Regex patterns (prefix with 'regex:'): "regex:^/api/users/\\d+$"
    - List of any of the above

    Args:
        path: Path pattern(s) to match against. Can be a string or list of strings.
        request_path: Actual request path to check.

    Returns:
        bool: True if paths match, False otherwise
    """

    def single_path_match(pattern: str) -> bool:
        if pattern.startswith(REGEX_PREFIX):
            return re.match(pattern[len(REGEX_PREFIX) :], request_path) is not None

        if any(c in pattern for c in "*?["):
            return fnmatch.fnmatchcase(request_path, pattern)

        return pattern == request_path

    if isinstance(path, str):
        return single_path_match(path)
    elif isinstance(path, list):
        return any(single_path_match(p) for p in path)

    return False
