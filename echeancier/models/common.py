from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
import uuid

def gen_id() -> str:
    return str(uuid.uuid4())

def utcnow() -> datetime:
    return datetime.utcnow()

class Record(BaseModel):
    """Base des enregistrements persistés : tolère d'anciennes clés dans les JSON."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=gen_id)
