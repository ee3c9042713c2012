# common.py
from typing import Any, Dict, Set

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from models.models import PROTECTED_FIELDS


class RequestModel(BaseModel):
    """Request body: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UpdateRequest(RequestModel):
    """
    Partial update body.

    Unknown keys are kept in ``model_extra`` so role checks can see every key
    the caller sent; only declared fields are ever written.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def provided_keys(self) -> Set[str]:
        declared = {type(self).model_fields[name].alias or name for name in self.model_fields_set
                    if name in type(self).model_fields}
        return declared | set((self.model_extra or {}).keys())

    def changes(self) -> Dict[str, Any]:
        """Declared fields the caller set, keyed by their stored (camelCase) names."""
        data = self.model_dump(by_alias=True, exclude_unset=True)
        for key in set(self.model_extra or {}) | PROTECTED_FIELDS:
            data.pop(key, None)
        return data
