"""
Exam Question Recognition Pipeline
==================================

Turns photographs of single exam questions into structured question records.

Main components:
- Image enhancement (scaling, denoising, contrast, deskew, binarization)
- Multi-configuration text recognition with candidate fusion
- Rule-based correction of systematic recognition errors
- Subject/question-type classification
- Structural parsing (number, stem, options, composite sub-questions)
"""

__version__ = "1.0.0"
__author__ = "Exam Recognition Team"
