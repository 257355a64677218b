"""Text extraction for knowledge sources: files, directories and URLs."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import httpx
import trafilatura
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

MAX_DOWNLOAD_BYTES = 5 * 1024 * 1024  # 5 MB
MAX_FILE_BYTES = 5 * 1024 * 1024
DEFAULT_USER_AGENT = "rbchat/1.0 (Knowledge Indexer)"


@dataclass
class SourceDocument:
    """Extracted text of one source (a file path or a URL)."""

    source: str
    text: str


# -- Document formats ----------------------------------------------------------


def _extract_pdf(file_path: Path) -> str | None:
    """Extract text from a PDF file using PyMuPDF."""
    import pymupdf

    doc = pymupdf.open(file_path)
    try:
        pages = [page.get_text().strip() for page in doc]
        pages = [p for p in pages if p]
        return "\n\n".join(pages) if pages else None
    finally:
        doc.close()


def _extract_docx(file_path: Path) -> str | None:
    """Extract text from a DOCX file using python-docx."""
    import docx

    doc = docx.Document(file_path)
    paragraphs = [p.text for p in doc.paragraphs if p.text.strip()]
    return "\n\n".join(paragraphs) if paragraphs else None


def _extract_xlsx(file_path: Path) -> str | None:
    """Extract text from an XLSX file using openpyxl, one CSV block per sheet."""
    import openpyxl

    wb = openpyxl.load_workbook(file_path, read_only=True, data_only=True)
    try:
        parts: list[str] = []
        for name in wb.sheetnames:
            lines = []
            for row in wb[name].iter_rows(values_only=True):
                cells = [str(c) if c is not None else "" for c in row]
                if any(cells):
                    lines.append(",".join(cells))
            if lines:
                parts.append(f"## Sheet: {name}\n" + "\n".join(lines))
        return "\n\n".join(parts) if parts else None
    finally:
        wb.close()


_EXTRACTORS = {
    "application/pdf": _extract_pdf,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": _extract_docx,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": _extract_xlsx,
}


def _read_text(file_path: Path) -> str | None:
    if file_path.stat().st_size > MAX_FILE_BYTES:
        msg = f"File too large to index: {file_path}"
        raise ValueError(msg)
    try:
        return file_path.read_text("utf-8")
    except UnicodeDecodeError:
        return None


async def extract_file(file_path: Path) -> str | None:
    """Extract text from a file.

    Office documents and PDFs go through their extractors in a worker
    thread; everything else is read as UTF-8. Returns None for binary
    files and documents without text.
    """
    mime_type = mimetypes.guess_type(file_path)[0]
    extractor = _EXTRACTORS.get(mime_type or "")
    if extractor is not None:
        text = await asyncio.to_thread(extractor, file_path)
    else:
        text = await asyncio.to_thread(_read_text, file_path)
    return text if text and text.strip() else None


# -- URLs ----------------------------------------------------------------------


def is_url(source: str) -> bool:
    return urlparse(source).scheme in ("http", "https")


def _is_html(content_type: str) -> bool:
    ct = content_type.lower().split(";")[0].strip()
    return ct in ("text/html", "application/xhtml+xml")


def _fallback_html_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    container = soup.find("main") or soup.find("article") or soup.find("body") or soup
    return container.get_text("\n\n", strip=True)


async def fetch_url(url: str, client: httpx.AsyncClient | None = None) -> str:
    """Fetch a web page (or plain-text resource) and return its main text.

    Raises ``ValueError`` when the page cannot be fetched or has no text.
    """
    try:
        if client is not None:
            resp = await client.get(url)
        else:
            async with httpx.AsyncClient(
                timeout=20,
                follow_redirects=True,
                headers={"User-Agent": DEFAULT_USER_AGENT},
                max_redirects=5,
            ) as owned:
                resp = await owned.get(url)
    except httpx.HTTPError as exc:
        msg = f"Failed to fetch {url}: {exc}"
        raise ValueError(msg) from exc

    if resp.status_code != 200:
        msg = f"HTTP {resp.status_code} fetching {url}"
        raise ValueError(msg)
    if len(resp.content) > MAX_DOWNLOAD_BYTES:
        msg = f"Page too large ({len(resp.content)} bytes, max {MAX_DOWNLOAD_BYTES})"
        raise ValueError(msg)

    content_type = resp.headers.get("content-type", "")
    if not _is_html(content_type):
        text = resp.text
    else:
        html = resp.text
        # trafilatura is CPU-bound and synchronous
        text = await asyncio.to_thread(trafilatura.extract, html)
        if not text:
            text = _fallback_html_text(html)

    if not text or not text.strip():
        msg = f"No text content at {url}"
        raise ValueError(msg)
    return text


# -- Entry point ---------------------------------------------------------------


def _walk_files(root: Path) -> list[Path]:
    files: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        files.extend(Path(dirpath) / f for f in sorted(filenames) if not f.startswith("."))
    return files


async def load_source(source: str) -> list[SourceDocument]:
    """Resolve *source* into one or more documents.

    A directory yields one document per readable file; files that fail
    to extract are logged and skipped. A single file or URL that yields
    no text raises ``ValueError``.
    """
    if is_url(source):
        return [SourceDocument(source=source, text=await fetch_url(source))]

    path = Path(source).expanduser()
    if not path.exists():
        msg = f"No such file or directory: {source}"
        raise FileNotFoundError(msg)

    if path.is_dir():
        documents = []
        for file_path in _walk_files(path):
            try:
                text = await extract_file(file_path)
            except Exception:
                logger.exception("Failed to extract text from %s", file_path)
                continue
            if text is None:
                logger.info("Skipping %s: no text content", file_path)
                continue
            documents.append(SourceDocument(source=str(file_path.resolve()), text=text))
        return documents

    text = await extract_file(path)
    if text is None:
        msg = f"No text content in {source}"
        raise ValueError(msg)
    return [SourceDocument(source=str(path.resolve()), text=text)]
