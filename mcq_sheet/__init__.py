"""
MCQ Sheet
=========
Extracts multiple-choice questions from DOCX and PDF documents and lays them
out as an .xlsx question sheet.

Architecture:
    - Block Extractor: Normalizes markup or positioned page content into Blocks
    - State Machine: Segments Blocks into Questions via question/option markers
    - Image Mapper: Associates images with the question body or an option
    - Layout Engine: Computes row heights and image placements
    - Spreadsheet Writer: Serializes the layout into a workbook

Version: 1.0.0
"""

__version__ = "1.0.0"
