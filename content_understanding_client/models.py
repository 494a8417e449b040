from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ServiceModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        protected_namespaces=(),
    )

    def to_wire(self, exclude: Optional[set] = None) -> dict:
        return self.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude=exclude
        )


class OperationState(str, Enum):
    not_started = "NotStarted"
    running = "Running"
    succeeded = "Succeeded"
    failed = "Failed"
    canceled = "Canceled"


class ResourceStatus(str, Enum):
    creating = "creating"
    ready = "ready"
    deleting = "deleting"
    failed = "failed"


class PollerState(str, Enum):
    initial = "initial"
    polling = "polling"
    succeeded = "succeeded"
    failed = "failed"
    canceled = "canceled"


class ResourceLocation(str, Enum):
    operation_location = "operation-location"
    original_uri = "original-uri"
    body_field = "body-field"


class ErrorDetail(ServiceModel):
    code: Optional[str] = None
    message: Optional[str] = None
    target: Optional[str] = None
    details: Optional[List["ErrorDetail"]] = None
    innererror: Optional[Dict[str, Any]] = None


class ContentSpan(ServiceModel):
    offset: int
    length: int


# Analyzer definition


class ContentFieldDefinition(ServiceModel):
    method: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    items: Optional["ContentFieldDefinition"] = None
    properties: Optional[Dict[str, "ContentFieldDefinition"]] = None
    examples: Optional[List[str]] = None
    enum: Optional[List[str]] = None
    enum_descriptions: Optional[Dict[str, str]] = None
    ref: Optional[str] = Field(default=None, alias="$ref")
    estimate_source_and_confidence: Optional[bool] = None


class FieldSchema(ServiceModel):
    name: Optional[str] = None
    description: Optional[str] = None
    fields: Dict[str, ContentFieldDefinition] = Field(default_factory=dict)
    definitions: Optional[Dict[str, ContentFieldDefinition]] = None


class ContentCategoryDefinition(ServiceModel):
    description: Optional[str] = None
    analyzer_id: Optional[str] = None
    analyzer: Optional["ContentAnalyzer"] = None


class ContentAnalyzerConfig(ServiceModel):
    return_details: Optional[bool] = None
    locales: Optional[List[str]] = None
    enable_ocr: Optional[bool] = None
    enable_layout: Optional[bool] = None
    enable_figure_description: Optional[bool] = None
    enable_figure_analysis: Optional[bool] = None
    enable_formula: Optional[bool] = None
    enable_annotation: Optional[bool] = None
    table_format: Optional[str] = None
    chart_format: Optional[str] = None
    annotation_format: Optional[str] = None
    disable_face_blurring: Optional[bool] = None
    estimate_field_source_and_confidence: Optional[bool] = None
    content_categories: Optional[Dict[str, ContentCategoryDefinition]] = None
    enable_segment: Optional[bool] = None
    segment_per_page: Optional[bool] = None
    omit_content: Optional[bool] = None


class LabeledDataKnowledgeSource(ServiceModel):
    kind: Literal["labeledData"] = "labeledData"
    container_url: str
    prefix: Optional[str] = None
    file_list_path: Optional[str] = None


# Only one kind exists today; widen to a discriminated union when more arrive.
KnowledgeSource = LabeledDataKnowledgeSource


class ContentAnalyzer(ServiceModel):
    # Assigned by the service; never sent back on create or update.
    analyzer_id: Optional[str] = None
    status: Optional[ResourceStatus] = None
    created_at: Optional[str] = None
    last_modified_at: Optional[str] = None
    warnings: Optional[List[ErrorDetail]] = None

    description: Optional[str] = None
    tags: Optional[Dict[str, str]] = None
    base_analyzer_id: Optional[str] = None
    config: Optional[ContentAnalyzerConfig] = None
    field_schema: Optional[FieldSchema] = None
    dynamic_field_schema: Optional[bool] = None
    knowledge_sources: Optional[List[KnowledgeSource]] = None
    models: Optional[Dict[str, str]] = None

    READ_ONLY: ClassVar[set] = {
        "analyzer_id",
        "status",
        "created_at",
        "last_modified_at",
        "warnings",
    }

    def to_request_body(self) -> dict:
        return self.to_wire(exclude=self.READ_ONLY)


class UsageDetails(ServiceModel):
    document_pages: Optional[int] = None
    audio_hours: Optional[float] = None
    video_hours: Optional[float] = None
    tokens: Optional[Dict[str, int]] = None


# Extracted fields, tagged by ``type``


class _ContentFieldBase(ServiceModel):
    spans: Optional[List[ContentSpan]] = None
    confidence: Optional[float] = None
    source: Optional[str] = None


class StringField(_ContentFieldBase):
    type: Literal["string"] = "string"
    value_string: Optional[str] = None

    @property
    def value(self):
        return self.value_string


class DateField(_ContentFieldBase):
    type: Literal["date"] = "date"
    value_date: Optional[str] = None

    @property
    def value(self):
        return self.value_date


class TimeField(_ContentFieldBase):
    type: Literal["time"] = "time"
    value_time: Optional[str] = None

    @property
    def value(self):
        return self.value_time


class NumberField(_ContentFieldBase):
    type: Literal["number"] = "number"
    value_number: Optional[float] = None

    @property
    def value(self):
        return self.value_number


class IntegerField(_ContentFieldBase):
    type: Literal["integer"] = "integer"
    value_integer: Optional[int] = None

    @property
    def value(self):
        return self.value_integer


class BooleanField(_ContentFieldBase):
    type: Literal["boolean"] = "boolean"
    value_boolean: Optional[bool] = None

    @property
    def value(self):
        return self.value_boolean


class ArrayField(_ContentFieldBase):
    type: Literal["array"] = "array"
    value_array: Optional[List["ContentField"]] = None

    @property
    def value(self):
        return self.value_array


class ObjectField(_ContentFieldBase):
    type: Literal["object"] = "object"
    value_object: Optional[Dict[str, "ContentField"]] = None

    @property
    def value(self):
        return self.value_object


class JsonField(_ContentFieldBase):
    type: Literal["json"] = "json"
    value_json: Optional[Any] = None

    @property
    def value(self):
        return self.value_json


ContentField = Annotated[
    Union[
        StringField,
        DateField,
        TimeField,
        NumberField,
        IntegerField,
        BooleanField,
        ArrayField,
        ObjectField,
        JsonField,
    ],
    Field(discriminator="type"),
]


# Document content


class DocumentWord(ServiceModel):
    content: str
    source: Optional[str] = None
    span: Optional[ContentSpan] = None
    confidence: Optional[float] = None


class DocumentLine(ServiceModel):
    content: str
    source: Optional[str] = None
    span: Optional[ContentSpan] = None


class DocumentBarcode(ServiceModel):
    kind: str
    value: str
    source: Optional[str] = None
    span: Optional[ContentSpan] = None
    confidence: Optional[float] = None


class DocumentFormula(ServiceModel):
    kind: str
    value: str
    source: Optional[str] = None
    span: Optional[ContentSpan] = None
    confidence: Optional[float] = None


class DocumentPage(ServiceModel):
    page_number: int
    width: Optional[float] = None
    height: Optional[float] = None
    spans: Optional[List[ContentSpan]] = None
    angle: Optional[float] = None
    words: Optional[List[DocumentWord]] = None
    lines: Optional[List[DocumentLine]] = None
    barcodes: Optional[List[DocumentBarcode]] = None
    formulas: Optional[List[DocumentFormula]] = None


class DocumentParagraph(ServiceModel):
    role: Optional[str] = None
    content: str
    source: Optional[str] = None
    span: Optional[ContentSpan] = None


class DocumentSection(ServiceModel):
    span: Optional[ContentSpan] = None
    elements: Optional[List[str]] = None


class DocumentCaption(ServiceModel):
    content: str
    source: Optional[str] = None
    span: Optional[ContentSpan] = None
    elements: Optional[List[str]] = None


class DocumentFootnote(DocumentCaption):
    pass


class DocumentTableCell(ServiceModel):
    kind: Optional[str] = None
    row_index: int
    column_index: int
    row_span: Optional[int] = None
    column_span: Optional[int] = None
    content: str
    source: Optional[str] = None
    span: Optional[ContentSpan] = None
    elements: Optional[List[str]] = None


class DocumentTable(ServiceModel):
    row_count: int
    column_count: int
    cells: List[DocumentTableCell] = Field(default_factory=list)
    source: Optional[str] = None
    span: Optional[ContentSpan] = None
    caption: Optional[DocumentCaption] = None
    footnotes: Optional[List[DocumentFootnote]] = None
    role: Optional[str] = None


class _DocumentFigureBase(ServiceModel):
    id: str
    source: Optional[str] = None
    span: Optional[ContentSpan] = None
    elements: Optional[List[str]] = None
    caption: Optional[DocumentCaption] = None
    footnotes: Optional[List[DocumentFootnote]] = None
    description: Optional[str] = None
    role: Optional[str] = None


class DocumentChartFigure(_DocumentFigureBase):
    kind: Literal["chart"] = "chart"
    content: Optional[Any] = None


class DocumentMermaidFigure(_DocumentFigureBase):
    kind: Literal["mermaid"] = "mermaid"
    content: Optional[str] = None


DocumentFigure = Annotated[
    Union[DocumentChartFigure, DocumentMermaidFigure], Field(discriminator="kind")
]


class DocumentHyperlink(ServiceModel):
    content: str
    url: str
    span: Optional[ContentSpan] = None
    source: Optional[str] = None


class DocumentContentSegment(ServiceModel):
    segment_id: str
    category: str
    span: Optional[ContentSpan] = None
    start_page_number: Optional[int] = None
    end_page_number: Optional[int] = None


class _MediaContentBase(ServiceModel):
    mime_type: Optional[str] = None
    analyzer_id: Optional[str] = None
    category: Optional[str] = None
    path: Optional[str] = None
    markdown: Optional[str] = None
    fields: Optional[Dict[str, ContentField]] = None


class DocumentContent(_MediaContentBase):
    kind: Literal["document"] = "document"
    start_page_number: Optional[int] = None
    end_page_number: Optional[int] = None
    unit: Optional[str] = None
    pages: Optional[List[DocumentPage]] = None
    paragraphs: Optional[List[DocumentParagraph]] = None
    sections: Optional[List[DocumentSection]] = None
    tables: Optional[List[DocumentTable]] = None
    figures: Optional[List[DocumentFigure]] = None
    hyperlinks: Optional[List[DocumentHyperlink]] = None
    segments: Optional[List[DocumentContentSegment]] = None


# Audio / video content


class KeyFrame(ServiceModel):
    frame_time_ms: int


class TranscriptWord(ServiceModel):
    start_time_ms: int
    end_time_ms: int
    text: str
    span: Optional[ContentSpan] = None


class TranscriptPhrase(ServiceModel):
    speaker: Optional[str] = None
    start_time_ms: int
    end_time_ms: int
    locale: Optional[str] = None
    text: str
    confidence: Optional[float] = None
    span: Optional[ContentSpan] = None
    words: List[TranscriptWord] = Field(default_factory=list)


class AudioVisualContentSegment(ServiceModel):
    segment_id: str
    category: str
    span: Optional[ContentSpan] = None
    start_time_ms: int
    end_time_ms: int


class AudioVisualContent(_MediaContentBase):
    kind: Literal["audioVisual"] = "audioVisual"
    start_time_ms: Optional[int] = None
    end_time_ms: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    camera_shot_times_ms: Optional[List[int]] = None
    key_frames: Optional[List[KeyFrame]] = None
    transcript_phrases: Optional[List[TranscriptPhrase]] = None
    segments: Optional[List[AudioVisualContentSegment]] = None

    def key_frame_paths(self) -> List[str]:
        """Result file paths of the key frames, for ``get_result_file``."""
        return [f"keyframes/{frame.frame_time_ms}" for frame in self.key_frames or []]


MediaContent = Annotated[
    Union[DocumentContent, AudioVisualContent], Field(discriminator="kind")
]


class AnalyzeResult(ServiceModel):
    analyzer_id: Optional[str] = None
    api_version: Optional[str] = None
    created_at: Optional[str] = None
    warnings: Optional[List[ErrorDetail]] = None
    string_encoding: Optional[str] = None
    contents: List[MediaContent] = Field(default_factory=list)


# Requests


class AnalyzeInput(ServiceModel):
    url: Optional[str] = None
    data: Optional[str] = None
    name: Optional[str] = None
    mime_type: Optional[str] = None
    range: Optional[str] = None


class AnalyzeRequest(ServiceModel):
    inputs: Optional[List[AnalyzeInput]] = None
    model_deployments: Optional[Dict[str, str]] = None


# Operation status and other responses


class ContentAnalyzerOperationStatus(ServiceModel):
    id: str
    status: OperationState
    error: Optional[ErrorDetail] = None
    result: Optional[ContentAnalyzer] = None
    usage: Optional[UsageDetails] = None


class ContentAnalyzerAnalyzeOperationStatus(ServiceModel):
    id: str
    status: OperationState
    error: Optional[ErrorDetail] = None
    result: Optional[AnalyzeResult] = None
    usage: Optional[UsageDetails] = None


class CopyAuthorization(ServiceModel):
    source: str
    target_azure_resource_id: str
    expires_at: str


class ContentUnderstandingDefaults(ServiceModel):
    model_deployments: Dict[str, str] = Field(default_factory=dict)


# Client-side polling types


class PollingConfig(BaseModel):
    interval: float = 1.0
    backoff_factor: float = 1.0
    max_interval: float = 32.0
    jitter: bool = False
    honor_retry_after: bool = True


class PollStatus(BaseModel):
    """Snapshot of an operation as observed by one poll."""

    operation_id: Optional[str] = None
    status: OperationState
    raw_response: dict
    elapsed_time: float
    error: Optional[ErrorDetail] = None
    usage: Optional[UsageDetails] = None


ErrorDetail.model_rebuild()
ContentFieldDefinition.model_rebuild()
ContentCategoryDefinition.model_rebuild()
ContentAnalyzerConfig.model_rebuild()
ContentAnalyzer.model_rebuild()
ArrayField.model_rebuild()
ObjectField.model_rebuild()
