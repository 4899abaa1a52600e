from pydantic import BaseModel
from typing import Optional

class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
    code: Optional[str] = None
