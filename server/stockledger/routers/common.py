from fastapi import HTTPException

from stockledger.transactions import ActionResult

STATUS_BY_CODE = {
    "validation": 400,
    "forbidden": 403,
    "not_found": 404,
    "state_conflict": 409,
    "insufficient_stock": 409,
    "integrity": 422,
    "transient": 503,
    "error": 500,
}


def status_for(code: str | None) -> int:
    return STATUS_BY_CODE.get(code or "error", 400)


def unwrap(result: ActionResult):
    """Return the action's data or raise the matching ``HTTPException``."""
    if result.success:
        return result.data
    headers = {"X-Error-Code": result.code or "error"}
    if result.field:
        headers["X-Error-Field"] = result.field
    if result.retryable:
        headers["Retry-After"] = "1"
    raise HTTPException(status_code=status_for(result.code), detail=result.error, headers=headers)
