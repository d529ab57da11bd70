"""Models for the /upload-to-drive endpoints."""

import base64
import binascii
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadRequest(CamelModel):
    """Request payload for /upload-to-drive."""

    file: str = Field(min_length=1)  # base64
    file_name: str = Field(min_length=1)
    mime_type: str = Field(min_length=1)

    def decoded_file(self) -> bytes:
        """
        Decode the base64 file content.

        Raises:
            ValueError: If file is not valid base64
        """
        data = self.file
        # Browsers often send FileReader data URLs as-is
        if data.startswith("data:") and "," in data:
            data = data.split(",", 1)[1]
        try:
            return base64.b64decode(data, validate=True)
        except binascii.Error as e:
            raise ValueError(f"file is not valid base64: {e}") from e


class UploadSuccessResponse(CamelModel):
    """Successful upload response."""

    success: Literal[True] = True
    file_id: str
    public_url: str


class UploadErrorResponse(CamelModel):
    """Failed upload response; partial failures still carry the file id."""

    success: Literal[False] = False
    error: str
    file_id: Optional[str] = None
    partial: Optional[bool] = None
    reauthenticate: Optional[bool] = None
