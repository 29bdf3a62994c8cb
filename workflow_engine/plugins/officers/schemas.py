"""
Officers trigger payloads.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _OfficerPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class HireRequestedPayload(_OfficerPayload):
    """Officers.HireRequested"""

    member_id: int = Field(..., description="ID del miembro a nombrar")
    office_id: int = Field(..., description="ID del oficio")
    branch_id: int = Field(..., description="ID de la rama")
    start_on: datetime | None = Field(None, description="Inicio del mandato")
    expires_on: datetime | None = Field(None, description="Fin del mandato")
    deputy_to_id: int | None = Field(None, description="Oficial al que asiste como suplente")
    email_address: str | None = Field(None, description="Email del oficio")
    deputy_description: str | None = Field(None, description="Descripción del suplente")


class ReleasedPayload(_OfficerPayload):
    """Officers.Released"""

    officer_id: int = Field(..., description="ID del oficial liberado")
    reason: str = Field("", description="Motivo de la liberación")


class WarrantRequiredPayload(_OfficerPayload):
    """Officers.WarrantRequired"""

    officer_id: int = Field(..., description="ID del oficial")
    office_id: int = Field(..., description="ID del oficio")
    member_id: int = Field(..., description="ID del miembro")
