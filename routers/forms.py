# routers/forms.py
import json
from typing import Optional, Type, TypeVar

from fastapi import HTTPException
from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    field = ".".join(str(part) for part in err.get("loc", ()))
    msg = err.get("msg", "Invalid value").removeprefix("Value error, ")
    return f"{field}: {msg}" if field else msg


def build_model(model: Type[ModelT], **values) -> ModelT:
    """Validate multipart form values with a pydantic model, 400 on failure."""
    try:
        return model(**values)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_first_error(exc))


def parse_json_field(
    raw: Optional[str],
    model: Type[ModelT],
    field_name: str,
) -> Optional[ModelT]:
    """
    Multipart clients send nested objects (location, availability) as
    JSON-encoded strings. Returns None when the field was not sent.
    """
    if raw is None or raw == "":
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(
            status_code=400, detail=f"{field_name} must be a JSON object"
        )
    if not isinstance(data, dict):
        raise HTTPException(
            status_code=400, detail=f"{field_name} must be a JSON object"
        )
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {field_name}: {_first_error(exc)}",
        )
