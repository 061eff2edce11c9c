from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

# A text is either one string or one string per section
SourceText = Union[str, List[str]]


class TextResponse(BaseModel):
    """Fields of a Sefaria texts response the service depends on"""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    ref: str = ""
    he_ref: Optional[str] = Field(None, alias="heRef")
    text: Union[str, List[Any]] = ""
    he: Union[str, List[Any]] = ""
    versions: List[Any] = []
    commentary: Optional[List[Any]] = None


class CollectiveTitle(BaseModel):
    en: Optional[str] = None
    he: Optional[str] = None


class CommentaryLink(BaseModel):
    """A link between a reference and another text (Sefaria links API)"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source_ref: str = Field("", alias="sourceRef")
    source_he_ref: Optional[str] = Field(None, alias="sourceHeRef")
    target_ref: str = Field("", alias="ref")
    he_ref: Optional[str] = Field(None, alias="heRef")
    type: str = ""
    category: str = ""
    index_title: Optional[str] = None
    collective_title: Optional[CollectiveTitle] = Field(None, alias="collectiveTitle")
    commentator: Optional[str] = None

    @property
    def title(self) -> str:
        """Display title - collective English title, falling back to the index title"""
        if self.collective_title and self.collective_title.en:
            return self.collective_title.en
        return self.index_title or self.target_ref


class LinkPartition(BaseModel):
    """Links of a reference split into commentary and other connections"""

    commentary: List[CommentaryLink] = []
    connection: List[CommentaryLink] = []


class TranslationRecord(BaseModel):
    """A persisted translation, unique per reference"""

    reference: str
    source_text: str
    translated_text: str
    model_identifier: str
    cost: float = 0.0
    created_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


class TranslationDelta(BaseModel):
    """One increment of translator output; `cost` arrives with the usage frame"""

    content: str = ""
    cost: Optional[float] = None


class ChunkEvent(BaseModel):
    type: Literal["chunk"] = "chunk"
    content: str


class CachedEvent(BaseModel):
    type: Literal["cached"] = "cached"
    translation: str
    model: str
    cost: float = 0


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    translation: str
    model: str
    cost: float


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


StreamEvent = Annotated[
    Union[ChunkEvent, CachedEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]
