import inspect
import sys
from typing import Optional


def get_caller_location(depth: int = 2) -> inspect.Traceback:
    """
    The location of the code that called the caller of this function, i.e. the BUILD file line invoking a rule
    """
    # Skip source context lines
    return inspect.getframeinfo(sys._getframe(depth), 0)


def describe_location(location: Optional[inspect.Traceback]) -> str:
    if location is None:
        return "<unknown location>"
    return f"{location.filename}:{location.lineno}"
