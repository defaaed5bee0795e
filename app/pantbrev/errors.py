from __future__ import annotations


class ApiError(RuntimeError):
    """
    Normalized failure from the backend API (or anything wrapped as one).

    `status` is HTTP-like: real response codes pass through, transport
    failures map to 503/504, anything unexpected to 500.
    """

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = int(status)
        self.message = message

    @property
    def is_unauthorized(self) -> bool:
        return self.status == 401

    def __repr__(self) -> str:
        return f"ApiError(status={self.status}, message={self.message!r})"


class RequestCancelled(RuntimeError):
    pass


class AuthError(RuntimeError):
    pass


def as_api_error(err: BaseException) -> ApiError:
    if isinstance(err, ApiError):
        return err
    return ApiError(500, str(err) or err.__class__.__name__)
