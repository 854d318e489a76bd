# domain/exceptions.py
from __future__ import annotations


class CourierError(Exception):
    pass


class ValidationError(CourierError):
    pass


class NotFoundError(CourierError):
    pass


class RunStateError(CourierError):
    pass


class RequestTimeoutError(CourierError):
    pass


class RequestConnectionError(CourierError):
    pass


class ScriptError(CourierError):
    pass


class ScriptTimeoutError(ScriptError):
    pass


class ResourceExhaustedError(ScriptError):
    pass
