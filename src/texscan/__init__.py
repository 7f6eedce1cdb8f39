"""
texscan
=======

Turns scanned math documents (PDFs and photos of worksheets, exams and
textbook pages) into editable Markdown with LaTeX math.

Main components:
- Page rasterization and image loading
- Transcription through a multimodal backend (Gemini)
- Response parsing and figure cropping from 0-1000 bounding boxes
- LaTeX delimiter and notation normalization
- Markdown assembly
- Export to Markdown, DOCX, HTML and the rich clipboard
"""

__version__ = "1.0.0"
__author__ = "texscan developers"
