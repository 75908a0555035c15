from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response


def _envelope(ok: bool, message: str, data: Any = None, errors: Any = None) -> Dict[str, Any]:
    return {
        "success": ok,
        "message": message,
        "data": data,
        "errors": errors,
    }


def success(
    data: Optional[Any] = None,
    message: str = "Success",
    meta: Optional[Dict] = None,
):
    body = _envelope(True, message, data=data)
    if meta is not None:
        body["meta"] = meta

    # Decimals become JSON numbers, datetimes ISO strings
    return jsonable_encoder(body)


def error(
    message: str = "Error",
    errors: Optional[Any] = None,
    status_code: int = 400,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body = _envelope(False, message, errors=errors if errors is not None else [])
    body["timestamp"] = f"{datetime.utcnow().isoformat()}Z"
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


def paginated_response(items, total: int, page: int, limit: int):
    return success(
        data=items,
        meta={
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        },
    )


def attachment(content: bytes, file_name: str, content_type: str) -> Response:
    """Raw file body served as a download that browsers and proxies must not cache."""
    return Response(
        content=content,
        media_type=content_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(file_name)}",
            "Cache-Control": "no-store",
        },
    )
