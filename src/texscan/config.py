"""
Configuration and constants for the document reconstruction pipeline.

This module provides:
- Processing parameters (rendering, cropping, export)
- Transcription backend configuration
- Environment overrides
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


# ============================================================================
# Processing Configuration
# ============================================================================

@dataclass
class RenderConfig:
    """PDF rasterization configuration."""
    dpi: int = 144  # 2x the 72 DPI PDF user space
    jpeg_quality: int = 95


@dataclass
class TranscriberConfig:
    """Transcription backend configuration."""
    engine: str = "gemini"  # gemini, replay
    model: str = "gemini-2.5-flash"
    api_key: Optional[str] = None
    temperature: float = 0.1
    timeout: float = 120.0  # seconds per page request


@dataclass
class CropConfig:
    """Figure cropping configuration."""
    jpeg_quality: int = 100
    max_workers: int = 4  # concurrent crops per page


@dataclass
class ExportConfig:
    """Export configuration."""
    # DOCX settings
    docx_max_image_width: int = 600  # px, about 6.25 inches
    docx_fallback_image_size: Tuple[int, int] = (400, 300)
    docx_font_name: str = "Times New Roman"
    docx_font_size_pt: int = 12
    # Clipboard/HTML settings
    html_image_max_width: int = 400
    html_font_family: str = "'Times New Roman', serif"
    html_font_size_pt: int = 12


@dataclass
class PipelineConfig:
    """Main pipeline configuration."""
    render: RenderConfig = field(default_factory=RenderConfig)
    transcriber: TranscriberConfig = field(default_factory=TranscriberConfig)
    crop: CropConfig = field(default_factory=CropConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    # Global settings
    debug_mode: bool = False
    max_pages: Optional[int] = None  # None = process all pages


# ============================================================================
# Default Configuration Instance
# ============================================================================

def get_config() -> PipelineConfig:
    """Get the default pipeline configuration with environment overrides."""
    config = PipelineConfig()

    if os.environ.get("TEXSCAN_DEBUG", "").lower() == "true":
        config.debug_mode = True

    # API credentials from environment
    config.transcriber.api_key = (
        os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY")
    )

    model = os.environ.get("TEXSCAN_MODEL")
    if model:
        config.transcriber.model = model

    return config


# ============================================================================
# JSON Schema Version
# ============================================================================

JSON_SCHEMA_VERSION = "1.0"
