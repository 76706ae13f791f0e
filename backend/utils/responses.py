"""
Response envelope shared by every AutoPost Studio endpoint:
{"ok": bool, "data": ..., "error": code | None, "message": str}
"""
from fastapi.responses import JSONResponse


def success_response(data=None, message="OK", status=200):
    return JSONResponse(
        status_code=status,
        content={
            "ok": True,
            "data": data if data is not None else {},
            "error": None,
            "message": message,
        }
    )


def error_response(error_code, status=400, message="An error occurred", data=None):
    return JSONResponse(
        status_code=status,
        content={
            "ok": False,
            "data": data if data is not None else {},
            "error": error_code,
            "message": message,
        }
    )


def service_error_response(result: dict, status=400, default_code="request_failed", status_map=None):
    """Envelope for a service result of the form {"error", "message", "is_error": True}."""
    code = result.get("error") or default_code
    if status_map:
        status = status_map.get(code, status)
    return error_response(
        code,
        status=status,
        message=result.get("message") or "Request failed.",
        data=result.get("data"),
    )
