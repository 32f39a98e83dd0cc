"""JSON utilities for CLI output."""

import json
from datetime import date, datetime

from pydantic import BaseModel


class ProxmonJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles datetimes and pydantic models."""
    def default(self, obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json")
        # Let the base class handle everything else
        return json.JSONEncoder.default(self, obj)

def dumps(obj, indent: int | None = 2):
    """Dump object to JSON string using our custom encoder."""
    return json.dumps(obj, cls=ProxmonJSONEncoder, indent=indent)
