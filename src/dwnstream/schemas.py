from pydantic import BaseModel, Field
from typing import Any, Dict, List, Union

Scalar = Union[bool, int, float, str]
IndexValue = Union[Scalar, List[Scalar]]


class EventEnvelope(BaseModel):
    tenant: str
    event: Dict[str, Any]
    indexes: Dict[str, IndexValue] = Field(default_factory=dict)


class DataStorePutResult(BaseModel):
    data_cid: str
    data_size: int


class DataStoreGetResult(BaseModel):
    data_cid: str
    data_size: int
    data: bytes
