from fastapi import Request
from fastapi.responses import JSONResponse


def get_request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None)
    return str(rid) if rid else "-"


def error_response_payload(
    request: Request,
    *,
    message: str,
    details=None,
) -> dict:
    payload = {
        "success": False,
        "message": message,
        "request_id": get_request_id(request),
    }
    if details is not None:
        payload["details"] = details
    return payload


def success_response_payload(
    request: Request,
    *,
    message: str | None = None,
    **data,
) -> dict:
    payload: dict = {"success": True}
    if message is not None:
        payload["message"] = message
    payload.update(data)
    payload["request_id"] = get_request_id(request)
    return payload


def toggle_response(
    request: Request,
    *,
    added: bool,
    added_message: str,
    removed_message: str,
    **data,
):
    """201 when the toggle created its row, 200 when it removed one."""
    if added:
        return JSONResponse(
            status_code=201,
            content=success_response_payload(request, message=added_message, **data),
        )
    return success_response_payload(request, message=removed_message, **data)
