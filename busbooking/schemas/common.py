from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Request bodies reject unknown fields."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


def ok(data=None) -> dict:
    return {"ok": True, "data": data}
