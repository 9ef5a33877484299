"""Search query model for GET /patients."""
from typing import Dict, Optional

from pydantic import BaseModel


class PatientQuery(BaseModel):
    name: Optional[str] = None
    id: Optional[str] = None
    tagId: Optional[str] = None

    def normalized(self) -> Dict[str, str]:
        """Drop absent and blank fields; trim the rest."""
        out = {}
        for field in ("name", "id", "tagId"):
            value = getattr(self, field)
            if value is None:
                continue
            value = value.strip()
            if value:
                out[field] = value
        return out
