"""FAQ schemas"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime


class UrduTranslation(BaseModel):
    question: Optional[str] = None
    answer: Optional[str] = None


class FAQCreate(BaseModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    urdu_translation: Optional[UrduTranslation] = None
    related_laws: List[str] = Field(default_factory=list)


class FAQUpdate(BaseModel):
    question: Optional[str] = Field(default=None, min_length=1)
    answer: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    urdu_translation: Optional[UrduTranslation] = None
    related_laws: Optional[List[str]] = None


class FAQVerify(BaseModel):
    approved: bool = True


class FAQRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    question: str
    answer: str
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    urdu_translation: Optional[UrduTranslation] = None
    related_laws: List[str] = Field(default_factory=list)
    is_approved: bool
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
