from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


class ImageStorageError(Exception):
    """Base class for image storage errors."""


class InvalidFilename(ImageStorageError, ValueError):
    def __init__(self, filename: str, reason: str = "invalid filename"):
        self.filename = filename
        self.reason = reason
        super().__init__(f"{reason}: {filename!r}")


class InvalidOwner(ImageStorageError, ValueError):
    pass


class UnrecognizedPath(ImageStorageError, ValueError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"path outside the managed layout: {path!r}")


class InvalidImage(ImageStorageError, ValueError):
    pass


class OwnershipMismatch(ImageStorageError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class PartialWriteFailure(ImageStorageError):
    """The original was committed but its thumbnail was not."""


class ReconcileActionFailure(ImageStorageError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ImageNotFound(ImageStorageError, LookupError):
    pass


def create_error_response(error_message: str, status_code: int = 400) -> dict:
    """Create a standardized error response"""
    return {
        "success": False,
        "data": None,
        "error": error_message
    }

async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Custom exception handler for HTTPException"""
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.detail, exc.status_code)
    )
