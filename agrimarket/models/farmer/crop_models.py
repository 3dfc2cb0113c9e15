from pydantic import BaseModel, ConfigDict, Field, WrapValidator
from typing import Optional, Union
from typing_extensions import Annotated

from agrimarket.models.marketplace.marketplace_models import (
    GeoPoint,
    LenientFloat,
    LenientStr,
    none_if_invalid,
)


# Sub-event collections hanging off a crop record
PESTS_DISEASES_COLLECTION = "pestsDiseasesEncountered"
FERTILIZATION_COLLECTION = "fertilizationHistory"


class CropModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., description="Crop record ID")
    farmId: Optional[str] = None
    cropType: LenientStr = None
    datePlanted: LenientStr = None
    harvestDate: LenientStr = None


class FarmModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    ownerId: LenientStr = None
    name: LenientStr = None
    # older farm records keep a free-text location
    location: Annotated[Optional[Union[GeoPoint, str]], WrapValidator(none_if_invalid)] = None
    sizeAcres: LenientFloat = None
