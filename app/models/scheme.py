"""
Pydantic models for the document-to-decision pipeline.
Requests, per-document extraction results, rankings and the final report.
"""

from enum import Enum
from typing import Optional, List, Dict, Any, Set
from pydantic import BaseModel, Field, validator
from datetime import datetime


# ========================================================================
# ENUMS
# ========================================================================

class DocumentType(str, Enum):
    QUOTE = "Quote"
    POLICY_WORDING = "PolicyWording"


class ExtractionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class ComparisonMode(str, Enum):
    STRUCTURED = "structured"
    NARRATIVE = "narrative"
    COMPARISON_REPORT = "comparison_report"


class CoverageSection(str, Enum):
    PROFESSIONAL_INDEMNITY = "professional_indemnity"
    CYBER = "cyber"
    CRIME = "crime"
    PUBLIC_PRODUCTS_LIABILITY = "public_products_liability"
    EMPLOYERS_LIABILITY = "employers_liability"
    PROPERTY = "property"
    DIRECTORS_OFFICERS = "directors_officers"

    @property
    def display_name(self) -> str:
        return COVERAGE_SECTION_NAMES[self]


COVERAGE_SECTION_NAMES: Dict[CoverageSection, str] = {
    CoverageSection.PROFESSIONAL_INDEMNITY: "Professional Indemnity",
    CoverageSection.CYBER: "Cyber & Data",
    CoverageSection.CRIME: "Crime",
    CoverageSection.PUBLIC_PRODUCTS_LIABILITY: "Public & Products Liability",
    CoverageSection.EMPLOYERS_LIABILITY: "Employers' Liability",
    CoverageSection.PROPERTY: "Property",
    CoverageSection.DIRECTORS_OFFICERS: "Directors & Officers (D&O)",
}


class RecommendationCategory(str, Enum):
    HIGHLY_RECOMMENDED = "Highly Recommended"
    RECOMMENDED = "Recommended"
    CONSIDER_WITH_CAUTION = "Consider with Caution"
    NOT_RECOMMENDED = "Not Recommended"


class ProgressLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# ========================================================================
# DOCUMENTS & EXTRACTION
# ========================================================================

class DocumentReference(BaseModel):
    """Stored document metadata. Immutable once created."""

    id: str = Field(..., description="Document identifier in the document store")
    filename: str
    storage_path: str = Field(..., description="Object path inside the storage bucket")
    mime_type: str = "application/pdf"
    size_bytes: Optional[int] = Field(None, description="Declared size, used to reject oversize files early")
    carrier_name: Optional[str] = None
    document_type: DocumentType = DocumentType.QUOTE

    class Config:
        frozen = True


class RequestedDocument(BaseModel):
    """One document as named in a comparison request."""

    document_id: str
    carrier_name: Optional[str] = None
    document_type: DocumentType = DocumentType.QUOTE
    filename: Optional[str] = None


class ExtractionResult(BaseModel):
    document_id: str
    filename: str
    document_type: DocumentType
    carrier_name: Optional[str] = None
    status: ExtractionStatus = ExtractionStatus.SUCCESS
    structured_payload: Dict[str, Any] = Field(default_factory=dict)
    error_reason: Optional[str] = None
    cached: bool = False
    fingerprint: str
    schema_version: str
    extracted_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status == ExtractionStatus.SUCCESS

    class Config:
        json_encoders = {
            datetime: lambda v: v.isoformat()
        }


class FailedDocument(BaseModel):
    """A document that could not be processed, with a scoped retry affordance."""

    document_id: str
    filename: str
    document_type: DocumentType
    carrier: Optional[str] = None
    error_code: str = Field(..., description="Stable error code, e.g. payload_too_large")
    message: str = Field(..., description="User-facing explanation")


# ========================================================================
# REQUEST
# ========================================================================

class ComparisonRequest(BaseModel):
    client_name: str
    industry: Optional[str] = None
    jurisdiction: Optional[str] = None
    selected_coverage_sections: Set[CoverageSection] = Field(default_factory=set)
    documents: List[RequestedDocument]
    mode: ComparisonMode = ComparisonMode.STRUCTURED

    @validator("documents")
    def validate_documents(cls, v):
        if not v:
            raise ValueError("At least one document is required")
        return v


# ========================================================================
# SCORING
# ========================================================================

class QuoteInput(BaseModel):
    """Scoring input: one quote's premium and parsed coverage limits."""

    quote_id: str
    insurer_name: str
    premium_amount: float = Field(..., ge=0)
    coverage_limits: Dict[str, float] = Field(
        default_factory=dict,
        description="Limit per coverage category key, already parsed to numbers"
    )


class QuoteRanking(BaseModel):
    quote_id: str
    insurer_name: str
    premium_amount: float
    coverage_limits: Dict[str, float] = Field(default_factory=dict)
    coverage_raw: float = Field(..., ge=0, le=60)
    price_raw: float = Field(..., ge=0, le=40)
    coverage_score: int = Field(..., ge=0, le=100)
    price_score: int = Field(..., ge=0, le=100)
    overall_score: int = Field(..., ge=1, le=100)
    rank_position: int = Field(..., ge=1)
    recommendation_category: RecommendationCategory
    strengths: List[str] = Field(default_factory=list)
    concerns: List[str] = Field(default_factory=list)


# ========================================================================
# POLICY WORDINGS
# ========================================================================

class PolicyWording(BaseModel):
    insurer_name: Optional[str] = None
    product_name: Optional[str] = None
    jurisdiction: Optional[str] = None
    territory: Optional[str] = None
    claims_basis: Optional[str] = None
    coverage_sections: List[str] = Field(default_factory=list)
    limits: List[Any] = Field(default_factory=list)
    deductibles: List[Any] = Field(default_factory=list)
    exclusions: List[str] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list)
    notable_terms: List[str] = Field(default_factory=list)
    definitions: List[str] = Field(default_factory=list)
    citations: List[str] = Field(default_factory=list)
    completeness_score: int = 0


class WordingAnalysis(BaseModel):
    wordings: List[PolicyWording] = Field(default_factory=list)
    common_exclusions: List[str] = Field(default_factory=list)
    unique_exclusions: Dict[str, List[str]] = Field(default_factory=dict)
    best_wording: Optional[str] = Field(None, description="Insurer name of the most complete wording")


# ========================================================================
# REPORT
# ========================================================================

class ProcessedDocument(BaseModel):
    """Pointer from a report back to a cached extraction."""

    document_id: str
    filename: str
    document_type: DocumentType
    carrier_name: Optional[str] = None
    fingerprint: str


class ComparisonReport(BaseModel):
    comparison_id: str
    mode: ComparisonMode
    client_name: Optional[str] = None
    insurers: List[Dict[str, Any]] = Field(default_factory=list)
    product_comparisons: List[Dict[str, Any]] = Field(default_factory=list)
    comparison_summary: List[Any] = Field(default_factory=list)
    overall_findings: List[Any] = Field(default_factory=list)
    failed_documents: List[FailedDocument] = Field(default_factory=list)
    markdown_report: Optional[str] = None
    citations: List[str] = Field(default_factory=list)
    rankings: List[QuoteRanking] = Field(default_factory=list)
    wording_analysis: Optional[WordingAnalysis] = None
    documents_processed: List[ProcessedDocument] = Field(
        default_factory=list,
        description="Successfully extracted documents behind this report"
    )
    request: Optional[ComparisonRequest] = Field(None, description="Request that produced the report")
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_encoders = {
            datetime: lambda v: v.isoformat()
        }


# ========================================================================
# PROGRESS
# ========================================================================

class ProgressEvent(BaseModel):
    stage: str
    message: str
    level: ProgressLevel = ProgressLevel.INFO
    document_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    version: str
    timestamp: str
    storage_enabled: bool
    ai_model: str
