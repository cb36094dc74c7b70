"""
Request, option and result models for the conversion service.

Pydantic models describe what clients send over HTTP. ``RenderRequest`` is
the immutable unit of work handed to the conversion core once a payload has
been decoded and its page geometry resolved.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple

from pydantic import BaseModel, Field, field_validator


class ConversionType(str, Enum):
    """Conversion labels, also used as metrics keys."""
    HTML = "html"
    URL = "url"
    MARKDOWN = "markdown"
    IMAGE = "image"
    IMAGES = "images"
    MERGE = "merge"
    TEMPLATE = "template"
    TABLE = "table"


class Orientation(str, Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


# Named page sizes in inches (width, height), portrait
PAGE_SIZES: Dict[str, Tuple[float, float]] = {
    "a4": (8.27, 11.69),
    "a3": (11.69, 16.54),
    "letter": (8.5, 11.0),
    "legal": (8.5, 14.0),
    "tabloid": (11.0, 17.0),
}

DEFAULT_PAGE_SIZE = "A4"
MIN_SCALE = 0.1
MAX_SCALE = 2.0
DEFAULT_SCALE = 1.0


class PageDimensions(BaseModel):
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


class Margins(BaseModel):
    """Page margins in inches."""
    top: float = Field(0.0, ge=0)
    bottom: float = Field(0.0, ge=0)
    left: float = Field(0.0, ge=0)
    right: float = Field(0.0, ge=0)

    @classmethod
    def uniform(cls, value: float) -> "Margins":
        return cls(top=value, bottom=value, left=value, right=value)


class PDFSecurity(BaseModel):
    user_password: Optional[str] = None
    owner_password: Optional[str] = None
    allow_printing: bool = False
    allow_copying: bool = False
    allow_modifying: bool = False
    encryption_bits: int = 256

    @field_validator("encryption_bits")
    @classmethod
    def normalize_bits(cls, value: int) -> int:
        # Anything other than 128 falls back to AES-256
        return 128 if value == 128 else 256

    @property
    def enabled(self) -> bool:
        return bool(self.user_password or self.owner_password)


class PDFMetadata(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    keywords: Optional[str] = None
    creator: Optional[str] = None


class Watermark(BaseModel):
    text: str = ""
    font_size: float = 48.0
    opacity: float = 0.3
    rotation: float = 45.0
    color: str = "gray"

    @field_validator("opacity")
    @classmethod
    def clamp_opacity(cls, value: float) -> float:
        if value <= 0 or value > 1:
            return 0.3
        return value

    @field_validator("font_size")
    @classmethod
    def default_font_size(cls, value: float) -> float:
        return value if value > 0 else 48.0


class HeaderFooter(BaseModel):
    header_left: str = ""
    header_center: str = ""
    header_right: str = ""
    footer_left: str = ""
    footer_center: str = ""
    footer_right: str = ""
    font_size: float = 9.0


class PDFOptions(BaseModel):
    """Client-facing PDF options shared by every conversion endpoint."""
    page_size: str = DEFAULT_PAGE_SIZE
    custom_dimensions: Optional[PageDimensions] = None
    orientation: Orientation = Orientation.PORTRAIT
    margins: Optional[Margins] = None
    security: Optional[PDFSecurity] = None
    metadata: Optional[PDFMetadata] = None
    watermark: Optional[Watermark] = None
    header_footer: Optional[HeaderFooter] = None
    print_background: bool = True
    scale: float = DEFAULT_SCALE
    grayscale: bool = False
    compression: Optional[str] = None
    pdfa: bool = False

    @field_validator("orientation", mode="before")
    @classmethod
    def lower_orientation(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower() or Orientation.PORTRAIT.value
        return value

    @property
    def needs_post_processing(self) -> bool:
        return (
            self.metadata is not None
            or (self.security is not None and self.security.enabled)
            or bool(self.compression)
            or self.pdfa
        )


def page_dimensions(
    page_size: Optional[str],
    orientation: Orientation = Orientation.PORTRAIT,
    custom: Optional[PageDimensions] = None,
) -> Tuple[float, float]:
    """
    Resolve a named page size to (width, height) in inches.

    Matching is case-insensitive. Unknown names fall back to A4; ``Custom``
    uses the supplied dimensions (A4 when none are given). Landscape swaps
    width and height.
    """
    name = (page_size or DEFAULT_PAGE_SIZE).strip().lower()
    if name == "custom" and custom is not None:
        width, height = custom.width, custom.height
    else:
        width, height = PAGE_SIZES.get(name, PAGE_SIZES["a4"])

    if orientation == Orientation.LANDSCAPE:
        width, height = height, width
    return width, height


def clamp_scale(scale: Optional[float]) -> float:
    """Out-of-range scales are replaced by 1.0 rather than clipped."""
    if scale is None or not (MIN_SCALE <= scale <= MAX_SCALE):
        return DEFAULT_SCALE
    return scale


@dataclass(frozen=True)
class RenderRequest:
    """
    One conversion handed to the core. Exactly one of ``html`` and ``url``
    is set; the core consumes it once.
    """
    conversion_type: str
    width: float
    height: float
    margin_top: float = 0.0
    margin_bottom: float = 0.0
    margin_left: float = 0.0
    margin_right: float = 0.0
    print_background: bool = True
    scale: float = DEFAULT_SCALE
    html: Optional[str] = None
    url: Optional[str] = None
    settle_seconds: float = 0.0
    timeout_seconds: float = 60.0
    header_template: Optional[str] = None
    footer_template: Optional[str] = None
    extra_css: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return self.url is not None

    def pdf_options(self) -> Dict[str, Any]:
        """Keyword arguments for Playwright's ``page.pdf``."""
        options = {
            "width": f"{self.width}in",
            "height": f"{self.height}in",
            "print_background": self.print_background,
            "scale": self.scale,
            "margin": {
                "top": f"{self.margin_top}in",
                "bottom": f"{self.margin_bottom}in",
                "left": f"{self.margin_left}in",
                "right": f"{self.margin_right}in",
            },
        }
        if self.header_template is not None or self.footer_template is not None:
            options["display_header_footer"] = True
            options["header_template"] = self.header_template or "<span></span>"
            options["footer_template"] = self.footer_template or "<span></span>"
        return options


# ---------------------------------------------------------------------------
# HTTP payloads
# ---------------------------------------------------------------------------

class ConversionRequest(BaseModel):
    type: ConversionType
    html: Optional[str] = None
    is_base64: bool = False
    url: Optional[str] = None
    markdown: Optional[str] = None
    image: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    pdfs: List[str] = Field(default_factory=list)
    options: Optional[PDFOptions] = None

    @field_validator("type", mode="before")
    @classmethod
    def lower_type(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class HTMLRequest(BaseModel):
    html: str = ""
    is_base64: bool = False
    options: Optional[PDFOptions] = None


class URLRequest(BaseModel):
    url: str = ""
    options: Optional[PDFOptions] = None


class ImageRequest(BaseModel):
    image: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    options: Optional[PDFOptions] = None


class MarkdownRequest(BaseModel):
    markdown: str = ""
    options: Optional[PDFOptions] = None


class MergeRequest(BaseModel):
    pdfs: List[str] = Field(default_factory=list)
    options: Optional[PDFOptions] = None


class TemplateRequest(BaseModel):
    template: str = ""
    custom_html: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    options: Optional[PDFOptions] = None


class TableData(BaseModel):
    headers: List[str] = Field(default_factory=list)
    rows: List[List[Any]] = Field(default_factory=list)
    title: Optional[str] = None
    footer: Optional[str] = None


class TableRequest(BaseModel):
    data: TableData
    options: Optional[PDFOptions] = None


class ManipulateOptions(BaseModel):
    split_type: str = "all"
    every_n: int = 1
    pages: str = ""
    rotation: int = 90
    compression_level: str = "ebook"
    new_order: List[int] = Field(default_factory=list)
    image_format: str = "jpeg"
    dpi: int = 150


class ManipulateRequest(BaseModel):
    operation: str = ""
    pdf: str = ""
    options: ManipulateOptions = Field(default_factory=ManipulateOptions)


class PDFInfo(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    keywords: Optional[str] = None
    creator: Optional[str] = None
    producer: Optional[str] = None
    page_count: int = 0
    page_size: Optional[str] = None
    pdf_version: Optional[str] = None
    encrypted: bool = False
    file_size: int = 0


class ManipulateResult(BaseModel):
    operation: str
    success: bool = True
    message: Optional[str] = None
    pdf: Optional[str] = None
    files: List[str] = Field(default_factory=list)
    count: int = 0
    info: Optional[PDFInfo] = None
    original_size: Optional[int] = None
    compressed_size: Optional[int] = None
    savings_percent: Optional[int] = None


class WebhookConfig(BaseModel):
    url: str
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    secret: Optional[str] = None
    retry_count: int = 0
    include_pdf: bool = False


class StorageConfig(BaseModel):
    provider: str
    bucket: str = ""
    path: str = ""
    filename: Optional[str] = None
    content_type: Optional[str] = None
    acl: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    region: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    endpoint: Optional[str] = None


class StorageResult(BaseModel):
    provider: str
    bucket: str
    path: str
    url: Optional[str] = None
    size: int = 0


class AsyncRequest(BaseModel):
    request: ConversionRequest
    webhook: Optional[WebhookConfig] = None
    storage: Optional[StorageConfig] = None


class BatchRequest(BaseModel):
    requests: List[ConversionRequest] = Field(default_factory=list)
    merge: bool = False


class BatchItemResult(BaseModel):
    index: int
    success: bool
    error: Optional[str] = None
    pdf: Optional[str] = None
    size: Optional[int] = None


class BatchResult(BaseModel):
    request_id: str
    total: int
    completed: int = 0
    failed: int = 0
    results: List[BatchItemResult] = Field(default_factory=list)
    merged_pdf: Optional[str] = None
