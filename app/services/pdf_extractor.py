"""
PDF Extraction Service
======================
Turns fetched document bytes into page-tagged text for the AI prompts.
"""

import asyncio
import logging

import fitz  # PyMuPDF

from app.core.exceptions import UnreadableDocumentError

logger = logging.getLogger(__name__)


class PDFExtractor:
    """Service for extracting text from PDF bytes"""

    @staticmethod
    def extract_text(content: bytes, filename: str, mime_type: str = "application/pdf") -> str:
        """
        Extract text content from a document.

        Every page is prefixed with a ``[Page N]`` marker so the model can
        cite page numbers.

        Args:
            content: Raw document bytes
            filename: Name used in log messages
            mime_type: Declared MIME type; text/* documents are decoded as UTF-8

        Returns:
            Extracted text content

        Raises:
            UnreadableDocumentError: If the document cannot be opened or holds no text
        """
        if mime_type.startswith("text/"):
            text = content.decode("utf-8", errors="replace")
            if not text.strip():
                raise UnreadableDocumentError(f"{filename} is empty")
            return text

        try:
            doc = fitz.open(stream=content, filetype="pdf")
        except Exception as e:
            logger.error(f"Error opening PDF {filename}: {str(e)}")
            raise UnreadableDocumentError(f"Failed to open {filename}: {str(e)}") from e

        try:
            if doc.needs_pass:
                raise UnreadableDocumentError(f"{filename} is password protected")

            pages = []
            for page_num in range(len(doc)):
                text = doc[page_num].get_text()
                if text.strip():
                    pages.append(f"[Page {page_num + 1}]\n{text.strip()}")
        finally:
            doc.close()

        if not pages:
            logger.warning(f"No text found in PDF: {filename}")
            raise UnreadableDocumentError(f"No extractable text found in {filename}")

        full_text = "\n\n".join(pages)
        logger.info(f"Extracted {len(full_text)} characters from {len(pages)} pages of {filename}")
        return full_text

    async def extract_text_async(self, content: bytes, filename: str, mime_type: str = "application/pdf") -> str:
        """Run extraction in a worker thread so the event loop stays free."""
        return await asyncio.to_thread(self.extract_text, content, filename, mime_type)


# Create singleton instance
pdf_extractor = PDFExtractor()
